"""Lifecycle events consumed by the workflow engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, get_args

WorkflowEventType = Literal["CLIENT_CREATED", "CLIENT_ACTIVATED", "DELIVERABLE_COMPLETED", "DELIVERABLE_OVERDUE", "PLAN_COMPLETED", "MONTH_TRANSITION", "MILESTONE_REACHED"]
WORKFLOW_EVENT_TYPES: tuple[WorkflowEventType, ...] = get_args(WorkflowEventType)


@dataclass(frozen=True)
class WorkflowEvent:
  """An ephemeral domain event; `subject_id` is the client the event concerns."""

  type: WorkflowEventType
  subject_id: str
  actor_id: str | None = None
  metadata: dict[str, Any] = field(default_factory=dict)
