"""Shared claim/execute/settle logic for both queue backends."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from launchpad.jobs.backoff import RetryPolicy
from launchpad.jobs.dispatch import JobHandlerRegistry
from launchpad.jobs.errors import JobStalledError, PermanentJobError
from launchpad.jobs.models import JobRecord, utc_now
from launchpad.storage.jobs_repo import JobsRepository

logger = logging.getLogger(__name__)

CompletionListener = Callable[[JobRecord], Awaitable[None]]


@dataclass(frozen=True)
class ExecutionOutcome:
  """What happened to one execution attempt."""

  record: JobRecord | None
  retry_at: datetime | None = None

  @property
  def will_retry(self) -> bool:
    return self.retry_at is not None


class JobExecutor:
  """Claim, run and settle jobs against the Job Store."""

  def __init__(self, jobs_repo: JobsRepository, registry: JobHandlerRegistry, *, retry_policy: RetryPolicy | None = None, clock: Callable[[], datetime] = utc_now) -> None:
    self._jobs_repo = jobs_repo
    self._registry = registry
    self._retry_policy = retry_policy or RetryPolicy()
    self._clock = clock
    self._listeners: list[CompletionListener] = []

  @property
  def retry_policy(self) -> RetryPolicy:
    return self._retry_policy

  def add_completion_listener(self, listener: CompletionListener) -> None:
    self._listeners.append(listener)

  async def claim(self, job_id: str) -> JobRecord | None:
    """Move a queued job to PROCESSING; returns None when another worker or a cancel got there first."""
    current = await self._jobs_repo.get_job(job_id)
    if current is None or current.status != "QUEUED":
      return None
    return await self._jobs_repo.update_job(job_id, expected_statuses=("QUEUED",), status="PROCESSING", attempts=current.attempts + 1, started_at=self._clock(), clear_run_at=True)

  async def execute(self, job: JobRecord) -> ExecutionOutcome:
    """Run a claimed job and persist the outcome."""
    try:
      handler = self._registry.resolve(job.job_type)
      result = await handler.process(job)
    except PermanentJobError as exc:
      logger.warning("Job %s (%s) failed permanently code=%s: %s", job.job_id, job.job_type, exc.error_code, exc)
      failed = await self._fail(job, str(exc), exc.error_code)
      return ExecutionOutcome(record=failed)
    except Exception as exc:  # noqa: BLE001
      return await self._handle_transient(job, exc)

    completed = await self._jobs_repo.update_job(job.job_id, expected_statuses=("PROCESSING",), status="COMPLETED", result=result or {}, completed_at=self._clock(), clear_error=True)
    if completed is None:
      # Cancelled while running; the result is dropped and no completion event fires.
      logger.info("Job %s finished after cancellation; result discarded", job.job_id)
      return ExecutionOutcome(record=await self._jobs_repo.get_job(job.job_id))

    logger.info("Job %s (%s) completed after %d attempt(s)", job.job_id, job.job_type, completed.attempts)
    await self._notify(completed)
    return ExecutionOutcome(record=completed)

  async def recover_stalled(self, job: JobRecord) -> ExecutionOutcome:
    """
    Settle a job whose worker disappeared while it was PROCESSING.

    The lost run already counted as an attempt when it was claimed, so the job goes through the same retry
    decision as a transient failure. A job that moved on in the meantime is left untouched.
    """
    logger.warning("Job %s (%s) stalled in PROCESSING since %s", job.job_id, job.job_type, job.started_at or job.updated_at)
    return await self._handle_transient(job, JobStalledError(f"Worker lost while processing (attempt {job.attempts})"))

  async def _handle_transient(self, job: JobRecord, exc: Exception) -> ExecutionOutcome:
    message = str(exc) or type(exc).__name__
    if not self._retry_policy.should_retry(job.attempts):
      logger.error("Job %s (%s) failed after %d attempts: %s", job.job_id, job.job_type, job.attempts, message)
      failed = await self._fail(job, message, "transient")
      return ExecutionOutcome(record=failed)

    delay = self._retry_policy.delay_for(job.attempts)
    retry_at = self._clock() + timedelta(seconds=delay)
    # PROCESSING -> QUEUED only; a cancel recorded meanwhile wins and the job is not requeued.
    requeued = await self._jobs_repo.update_job(job.job_id, expected_statuses=("PROCESSING",), status="QUEUED", error=message, error_code="transient", run_at=retry_at)
    if requeued is None:
      logger.info("Job %s was cancelled before its retry could be scheduled", job.job_id)
      return ExecutionOutcome(record=await self._jobs_repo.get_job(job.job_id))

    logger.warning("Job %s (%s) attempt %d failed; retrying in %.1fs: %s", job.job_id, job.job_type, job.attempts, delay, message)
    return ExecutionOutcome(record=requeued, retry_at=retry_at)

  async def _fail(self, job: JobRecord, message: str, error_code: str) -> JobRecord | None:
    return await self._jobs_repo.update_job(job.job_id, expected_statuses=("PROCESSING",), status="FAILED", error=message, error_code=error_code, completed_at=self._clock())  # type: ignore[arg-type]

  async def _notify(self, record: JobRecord) -> None:
    for listener in self._listeners:
      try:
        await listener(record)
      except Exception:  # noqa: BLE001
        logger.warning("Completion listener failed for job %s", record.job_id, exc_info=True)
