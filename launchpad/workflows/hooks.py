"""Entry points for raising workflow events from application code and finished jobs."""

from __future__ import annotations

import logging
from typing import Any

from launchpad.jobs.models import JobRecord
from launchpad.workflows.dispatcher import WorkflowDispatcher
from launchpad.workflows.events import WorkflowEvent, WorkflowEventType

logger = logging.getLogger(__name__)


def trigger_workflow(dispatcher: WorkflowDispatcher, event_type: WorkflowEventType, client_id: str, actor_id: str | None = None, **metadata: Any) -> None:
  """Fire-and-forget: failures are logged and never reach the caller."""
  try:
    dispatcher.publish(WorkflowEvent(type=event_type, subject_id=client_id, actor_id=actor_id, metadata=metadata))
  except Exception:  # noqa: BLE001
    logger.error("Failed to trigger workflow %s for client %s", event_type, client_id, exc_info=True)


class JobCompletionBridge:
  """Completion listener that turns finished generation jobs into workflow events."""

  def __init__(self, dispatcher: WorkflowDispatcher, *, auto_advance: bool = False) -> None:
    self._dispatcher = dispatcher
    self._auto_advance = auto_advance

  async def __call__(self, job: JobRecord) -> None:
    client_id = job.payload.get("clientId")
    if not client_id:
      return

    result = job.result or {}
    actor_id = job.payload.get("userId")
    if job.job_type == "GENERATE_BUSINESS_PLAN":
      trigger_workflow(self._dispatcher, "PLAN_COMPLETED", client_id, actor_id, jobId=job.job_id, businessPlanId=result.get("businessPlanId"))
    elif job.job_type == "GENERATE_DELIVERABLE" and self._auto_advance:
      trigger_workflow(self._dispatcher, "DELIVERABLE_COMPLETED", client_id, actor_id, jobId=job.job_id, month=job.payload.get("month"), deliverableId=result.get("deliverableId"))
