"""Job queue contract and the bookkeeping shared by every backend."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any, Protocol

from launchpad.jobs.errors import InvalidJobTransitionError, JobNotFoundError
from launchpad.jobs.executor import CompletionListener, JobExecutor
from launchpad.jobs.models import EnqueueOptions, JobRecord, JobStatus, LaneMetrics, generate_id, lane_for, utc_now
from launchpad.storage.jobs_repo import JobsRepository

logger = logging.getLogger(__name__)

DEFAULT_STALL_TIMEOUT_SECONDS = 30 * 60.0


class JobQueue(Protocol):
  """Queue contract shared by the in-process and Redis backends."""

  backend_name: str

  async def enqueue(self, job_type: str, payload: dict[str, Any], options: EnqueueOptions | None = None) -> str:
    """Persist a job and schedule it for execution."""

  async def get_job(self, job_id: str) -> JobRecord | None:
    """Fetch a job from the Job Store."""

  async def find_by_idempotency_key(self, key: str) -> JobRecord | None:
    """Return the queued, running or completed job holding an idempotency key."""

  async def cancel(self, job_id: str) -> JobRecord:
    """Cancel a queued or processing job."""

  async def retry(self, job_id: str) -> JobRecord:
    """Reset a failed or cancelled job to QUEUED with a fresh attempt count."""

  async def get_jobs_by_status(self, status: JobStatus, limit: int = 100) -> list[JobRecord]:
    """List jobs in one status, newest first."""

  async def get_metrics(self) -> dict[str, LaneMetrics]:
    """Return per-lane job counts."""

  def add_completion_listener(self, listener: CompletionListener) -> None:
    """Register a coroutine called with each job that reaches COMPLETED."""

  async def start(self) -> None:
    """Start pulling work."""

  async def shutdown(self) -> None:
    """Stop pulling work and wait for in-flight jobs."""


class BaseJobQueue:
  """Job Store bookkeeping; subclasses decide how queued jobs reach a worker."""

  backend_name = "base"

  def __init__(self, jobs_repo: JobsRepository, executor: JobExecutor, *, stall_timeout: float = DEFAULT_STALL_TIMEOUT_SECONDS, clock: Callable[[], datetime] = utc_now) -> None:
    self._jobs_repo = jobs_repo
    self._executor = executor
    self._stall_timeout = stall_timeout
    self._clock = clock
    # Ids of jobs this process is executing right now.
    self._running: set[str] = set()

  async def enqueue(self, job_type: str, payload: dict[str, Any], options: EnqueueOptions | None = None) -> str:
    options = options or EnqueueOptions()
    # Short-circuit duplicates before creating a second record.
    if options.idempotency_key:
      existing = await self._jobs_repo.find_by_idempotency_key(options.idempotency_key)
      if existing is not None:
        logger.info("Enqueue of %s deduplicated by key=%s -> job %s (%s)", job_type, options.idempotency_key, existing.job_id, existing.status)
        return existing.job_id

    now = self._clock()
    record = JobRecord(
      job_id=generate_id(),
      job_type=job_type,
      payload=dict(payload),
      status="QUEUED",
      created_at=now,
      updated_at=now,
      priority=int(options.priority),
      lane=lane_for(job_type),
      idempotency_key=options.idempotency_key,
      run_at=self._initial_run_at(now, options),
    )
    # The Job Store record exists before the backend sees the job.
    stored = await self._jobs_repo.create_job(record)
    if stored.job_id != record.job_id:
      logger.info("Enqueue of %s raced an existing job %s for key=%s", job_type, stored.job_id, options.idempotency_key)
      return stored.job_id

    logger.info("Enqueued job %s type=%s lane=%s priority=%d", stored.job_id, job_type, stored.lane, stored.priority)
    await self._schedule(stored)
    return stored.job_id

  async def get_job(self, job_id: str) -> JobRecord | None:
    return await self._jobs_repo.get_job(job_id)

  async def find_by_idempotency_key(self, key: str) -> JobRecord | None:
    return await self._jobs_repo.find_by_idempotency_key(key)

  async def cancel(self, job_id: str) -> JobRecord:
    record = await self._jobs_repo.get_job(job_id)
    if record is None:
      raise JobNotFoundError(job_id)
    if record.is_terminal:
      logger.info("Cancel ignored for job %s already %s", job_id, record.status)
      return record

    cancelled = await self._jobs_repo.update_job(job_id, expected_statuses=("QUEUED", "PROCESSING"), status="CANCELLED", completed_at=self._clock())
    if cancelled is None:
      # Finished between the read and the write.
      latest = await self._jobs_repo.get_job(job_id)
      if latest is None:
        raise JobNotFoundError(job_id)
      return latest

    await self._unschedule(cancelled)
    logger.info("Cancelled job %s (was %s)", job_id, record.status)
    return cancelled

  async def retry(self, job_id: str) -> JobRecord:
    record = await self._jobs_repo.get_job(job_id)
    if record is None:
      raise JobNotFoundError(job_id)
    if record.status not in ("FAILED", "CANCELLED"):
      raise InvalidJobTransitionError(f"Job {job_id} is {record.status}; only FAILED or CANCELLED jobs can be retried")

    requeued = await self._jobs_repo.update_job(job_id, expected_statuses=("FAILED", "CANCELLED"), status="QUEUED", attempts=0, clear_error=True, clear_run_at=True, clear_completed_at=True)
    if requeued is None:
      raise InvalidJobTransitionError(f"Job {job_id} changed state during retry")

    logger.info("Job %s manually requeued", job_id)
    await self._schedule(requeued)
    return requeued

  async def get_jobs_by_status(self, status: JobStatus, limit: int = 100) -> list[JobRecord]:
    records, _ = await self._jobs_repo.list_jobs(limit=limit, offset=0, status=status)
    return records

  async def get_metrics(self) -> dict[str, LaneMetrics]:
    return await self._jobs_repo.lane_metrics(self._clock())

  def add_completion_listener(self, listener: CompletionListener) -> None:
    self._executor.add_completion_listener(listener)

  async def recover_stalled(self, limit: int = 100) -> int:
    """Requeue or fail PROCESSING jobs whose worker went away; returns how many were settled."""
    cutoff = self._clock() - timedelta(seconds=self._stall_timeout)
    recovered = 0
    for job in await self._jobs_repo.find_stalled(cutoff, limit=limit):
      if job.job_id in self._running:
        continue
      outcome = await self._executor.recover_stalled(job)
      if outcome.will_retry:
        await self._schedule(outcome.record)
      elif outcome.record is not None and outcome.record.status == "FAILED":
        await self._unschedule(outcome.record)
      else:
        continue
      recovered += 1
    if recovered:
      logger.warning("Recovered %d stalled job(s)", recovered)
    return recovered

  def _initial_run_at(self, now: datetime, options: EnqueueOptions) -> datetime | None:
    if options.delay_seconds > 0:
      return now + timedelta(seconds=options.delay_seconds)
    return None

  async def _schedule(self, record: JobRecord) -> None:
    raise NotImplementedError

  async def _unschedule(self, record: JobRecord) -> None:
    raise NotImplementedError
