"""Storage interfaces for pipeline jobs."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from typing import Any, Protocol

from launchpad.jobs.models import JobErrorCode, JobRecord, JobStatus, LaneMetrics


class JobsRepository(Protocol):
  """
  Repository contract for job persistence.

  Status changes go through `update_job` with `expected_statuses`, which turns the write into a compare-and-set:
  the update applies only while the stored status is one of the expected values and returns None otherwise.
  """

  async def create_job(self, record: JobRecord) -> JobRecord:
    """Persist a new job, or return the live job already holding its idempotency key."""

  async def get_job(self, job_id: str) -> JobRecord | None:
    """Fetch a job by identifier."""

  async def update_job(
    self,
    job_id: str,
    *,
    expected_statuses: Sequence[JobStatus] | None = None,
    status: JobStatus | None = None,
    attempts: int | None = None,
    error: str | None = None,
    error_code: JobErrorCode | None = None,
    clear_error: bool = False,
    result: dict[str, Any] | None = None,
    run_at: datetime | None = None,
    clear_run_at: bool = False,
    started_at: datetime | None = None,
    completed_at: datetime | None = None,
    clear_completed_at: bool = False,
  ) -> JobRecord | None:
    """Apply partial updates to a job."""

  async def find_queued(self, limit: int = 5, *, lane: str | None = None, due_before: datetime | None = None) -> list[JobRecord]:
    """Return the oldest queued jobs, optionally restricted to one lane and to jobs due by a timestamp."""

  async def find_stalled(self, started_before: datetime, limit: int = 100) -> list[JobRecord]:
    """Return PROCESSING jobs that started (or last changed, when never started) before a cutoff."""

  async def find_by_idempotency_key(self, idempotency_key: str) -> JobRecord | None:
    """Return the newest queued, processing or completed job created with a key."""

  async def list_jobs(self, limit: int, offset: int, status: JobStatus | None = None, job_type: str | None = None) -> tuple[list[JobRecord], int]:
    """Return a paginated list of jobs (newest first) with optional filters, and total count."""

  async def delete_completed_before(self, cutoff: datetime) -> int:
    """Delete completed jobs finished before a cutoff and return the number removed."""

  async def lane_metrics(self, now: datetime) -> dict[str, LaneMetrics]:
    """Return per-lane status counts; queued jobs with a future run_at count as delayed."""
