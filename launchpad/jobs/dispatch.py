"""Job type to handler dispatch."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any, Protocol

from launchpad.jobs.errors import UnknownJobTypeError
from launchpad.jobs.models import JobRecord


class JobHandler(Protocol):
  """Processor contract for one or more job types."""

  job_types: tuple[str, ...]

  async def process(self, job: JobRecord) -> dict[str, Any] | None:
    """Execute one claimed job and return its result payload."""


class JobHandlerRegistry:
  """Registry mapping job types to handlers."""

  def __init__(self, handlers: Iterable[JobHandler] = ()) -> None:
    self._handlers: dict[str, JobHandler] = {}
    for handler in handlers:
      self.register(handler)

  def register(self, handler: JobHandler) -> None:
    for job_type in handler.job_types:
      self._handlers[job_type] = handler

  def resolve(self, job_type: str) -> JobHandler:
    """Resolve the handler for a job type."""
    handler = self._handlers.get(job_type)
    if handler is None:
      raise UnknownJobTypeError(job_type)
    return handler

  def job_types(self) -> list[str]:
    return sorted(self._handlers)
