"""Maintenance services for scheduled background cleanup tasks."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any, Protocol

from launchpad.jobs.models import utc_now
from launchpad.storage.jobs_repo import JobsRepository

logger = logging.getLogger(__name__)


class PdfRenderer(Protocol):
  async def render(self, *, business_plan_id: str | None, deliverable_id: str | None, quality: str) -> dict[str, Any]:
    """Render a plan or deliverable to PDF and return its location."""


class BackupRunner(Protocol):
  async def run(self) -> dict[str, Any]:
    """Take a database backup and describe the artifact."""


class TempFileCleaner(Protocol):
  async def clean(self) -> dict[str, Any]:
    """Remove stale temporary files."""


class ClientMetricsUpdater(Protocol):
  async def update(self) -> dict[str, Any]:
    """Refresh derived per-client metrics."""


class NullPdfRenderer(PdfRenderer):
  async def render(self, *, business_plan_id: str | None, deliverable_id: str | None, quality: str) -> dict[str, Any]:
    logger.info("PDF rendering not configured; skipped plan=%s deliverable=%s", business_plan_id, deliverable_id)
    return {"skipped": True, "reason": "pdf renderer not configured"}


class NullBackupRunner(BackupRunner):
  async def run(self) -> dict[str, Any]:
    logger.info("Database backup not configured; skipped")
    return {"skipped": True, "reason": "backup runner not configured"}


class NullTempFileCleaner(TempFileCleaner):
  async def clean(self) -> dict[str, Any]:
    logger.info("Temp file cleanup not configured; skipped")
    return {"skipped": True, "reason": "temp file cleaner not configured"}


class NullClientMetricsUpdater(ClientMetricsUpdater):
  async def update(self) -> dict[str, Any]:
    logger.info("Client metrics update not configured; skipped")
    return {"skipped": True, "reason": "metrics updater not configured"}


async def purge_completed_jobs(jobs_repo: JobsRepository, *, older_than_days: int, clock: Callable[[], datetime] = utc_now) -> int:
  """Delete COMPLETED jobs whose completion is older than the retention window."""
  if older_than_days <= 0:
    raise ValueError("older_than_days must be positive")

  cutoff = clock() - timedelta(days=older_than_days)
  deleted = await jobs_repo.delete_completed_before(cutoff)
  logger.info("Deleted %d completed jobs older than %s", deleted, cutoff.isoformat())
  return deleted
