"""Job failure taxonomy shared by both queue backends."""

from __future__ import annotations

from launchpad.jobs.models import JobErrorCode


class JobError(RuntimeError):
  """Base class for job execution and queue errors."""

  error_code: JobErrorCode = "transient"


class PermanentJobError(JobError):
  """Failure that retrying cannot fix; the job fails on the first attempt."""

  error_code: JobErrorCode = "permanent"


class UnknownJobTypeError(PermanentJobError):
  """Raised when no handler is registered for a job type."""

  error_code: JobErrorCode = "unknown_job_type"

  def __init__(self, job_type: str) -> None:
    super().__init__(f"Unknown job type: {job_type}")
    self.job_type = job_type


class BudgetExceededError(PermanentJobError):
  """Raised when admission control denies a generation call."""

  error_code: JobErrorCode = "budget_exceeded"

  def __init__(self, reason: str, *, period: str | None = None) -> None:
    super().__init__(reason)
    self.reason = reason
    self.period = period


class ArtifactExistsError(PermanentJobError):
  """Raised when the artifact a job would produce already exists."""


class InvalidPayloadError(PermanentJobError):
  """Raised when a job payload is missing required fields."""


class JobNotFoundError(JobError, LookupError):
  """Raised when a queue operation targets an unknown job id."""

  def __init__(self, job_id: str) -> None:
    super().__init__(f"Job not found: {job_id}")
    self.job_id = job_id


class InvalidJobTransitionError(JobError):
  """Raised when a cancel/retry request does not fit the job's current status."""


class JobStalledError(JobError):
  """Recorded on a job whose worker stopped without settling it."""


class CronPatternError(ValueError):
  """Raised when a schedule pattern cannot be evaluated by the active scheduler."""
