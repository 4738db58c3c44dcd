"""Retry policy for failed jobs."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

DEFAULT_BACKOFF_SECONDS: tuple[float, ...] = (2.0, 4.0, 8.0)
MAX_JOB_RETRIES = 3


@dataclass(frozen=True)
class RetryPolicy:
  """
  Exponential retry schedule applied by both queue backends.

  `attempts` counts executions, so a job runs at most `max_retries + 1` times.
  """

  max_retries: int = MAX_JOB_RETRIES
  delays: tuple[float, ...] = DEFAULT_BACKOFF_SECONDS

  @classmethod
  def from_delays(cls, max_retries: int, delays: Sequence[float]) -> RetryPolicy:
    return cls(max_retries=max_retries, delays=tuple(float(delay) for delay in delays) or DEFAULT_BACKOFF_SECONDS)

  def should_retry(self, attempts: int) -> bool:
    return attempts <= self.max_retries

  def delay_for(self, attempts: int) -> float:
    """Return the wait before the retry that follows execution number `attempts`."""
    index = min(max(attempts, 1), len(self.delays)) - 1
    return self.delays[index]
