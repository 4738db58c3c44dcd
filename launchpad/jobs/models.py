"""Domain models for queued pipeline jobs."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import IntEnum
from typing import Any, Literal, get_args

JobStatus = Literal["QUEUED", "PROCESSING", "COMPLETED", "FAILED", "CANCELLED"]
JobType = Literal[
  "GENERATE_BUSINESS_PLAN",
  "GENERATE_DELIVERABLE",
  "GENERATE_PDF",
  "BACKUP_DATABASE",
  "CLEANUP_FILES",
  "CLEANUP_OLD_JOBS",
  "CLEANUP_CACHE",
  "RESET_BUDGET_PERIODS",
  "SEND_EMAIL",
  "SEND_REMINDER_EMAILS",
  "UPDATE_CLIENT_METRICS",
]
JobErrorCode = Literal["transient", "budget_exceeded", "unknown_job_type", "permanent"]
Lane = Literal["generation", "rendering", "file_ops", "database_ops", "scheduled"]

JOB_STATUSES: tuple[JobStatus, ...] = get_args(JobStatus)
JOB_TYPES: tuple[JobType, ...] = get_args(JobType)
LANES: tuple[Lane, ...] = get_args(Lane)
ACTIVE_STATUSES: tuple[JobStatus, ...] = ("QUEUED", "PROCESSING")
TERMINAL_STATUSES: tuple[JobStatus, ...] = ("COMPLETED", "FAILED", "CANCELLED")

_LANE_BY_TYPE: dict[str, Lane] = {
  "GENERATE_BUSINESS_PLAN": "generation",
  "GENERATE_DELIVERABLE": "generation",
  "GENERATE_PDF": "rendering",
  "CLEANUP_FILES": "file_ops",
  "BACKUP_DATABASE": "database_ops",
}


class JobPriority(IntEnum):
  """Numeric job priority; lower values run first."""

  CRITICAL = 1
  HIGH = 3
  NORMAL = 5
  LOW = 7


def lane_for(job_type: str) -> Lane:
  """Return the execution lane for a job type."""
  return _LANE_BY_TYPE.get(job_type, "scheduled")


def generate_id() -> str:
  """Return a new random identifier for jobs and journey records."""
  return str(uuid.uuid4())


def utc_now() -> datetime:
  return datetime.now(UTC)


@dataclass
class JobRecord:
  """Represents one unit of queued pipeline work."""

  job_id: str
  job_type: str
  payload: dict[str, Any]
  status: JobStatus
  created_at: datetime
  updated_at: datetime
  priority: int = JobPriority.NORMAL
  lane: Lane = "scheduled"
  attempts: int = 0
  error: str | None = None
  error_code: JobErrorCode | None = None
  result: dict[str, Any] | None = None
  idempotency_key: str | None = None
  run_at: datetime | None = None
  started_at: datetime | None = None
  completed_at: datetime | None = None

  @property
  def is_terminal(self) -> bool:
    return self.status in TERMINAL_STATUSES


@dataclass
class LaneMetrics:
  """Point-in-time job counts for one lane."""

  waiting: int = 0
  active: int = 0
  completed: int = 0
  failed: int = 0
  delayed: int = 0
  cancelled: int = 0

  def add(self, status: str, *, delayed: bool = False, amount: int = 1) -> None:
    """Add `amount` jobs in `status` to the matching counter."""
    if status == "QUEUED":
      if delayed:
        self.delayed += amount
      else:
        self.waiting += amount
    elif status == "PROCESSING":
      self.active += amount
    elif status == "COMPLETED":
      self.completed += amount
    elif status == "FAILED":
      self.failed += amount
    elif status == "CANCELLED":
      self.cancelled += amount

  def as_dict(self) -> dict[str, int]:
    return {"waiting": self.waiting, "active": self.active, "completed": self.completed, "failed": self.failed, "delayed": self.delayed, "cancelled": self.cancelled}


@dataclass(frozen=True)
class EnqueueOptions:
  """Per-enqueue scheduling hints."""

  priority: int = JobPriority.NORMAL
  delay_seconds: float = 0.0
  idempotency_key: str | None = None
  metadata: dict[str, Any] = field(default_factory=dict)
