"""In-memory job repository used when no database is configured."""

from __future__ import annotations

import asyncio
import dataclasses
from collections.abc import Sequence
from datetime import datetime
from typing import Any

from launchpad.jobs.models import LANES, JobErrorCode, JobRecord, JobStatus, LaneMetrics, utc_now
from launchpad.storage.jobs_repo import JobsRepository


class InMemoryJobsRepository(JobsRepository):
  """Keep job records in a process-local dict guarded by one lock."""

  def __init__(self) -> None:
    self._jobs: dict[str, JobRecord] = {}
    self._lock = asyncio.Lock()

  async def create_job(self, record: JobRecord) -> JobRecord:
    async with self._lock:
      if record.idempotency_key:
        existing = self._live_by_key(record.idempotency_key)
        if existing is not None:
          return dataclasses.replace(existing)
      self._jobs[record.job_id] = dataclasses.replace(record)
      return dataclasses.replace(record)

  async def get_job(self, job_id: str) -> JobRecord | None:
    async with self._lock:
      record = self._jobs.get(job_id)
      return dataclasses.replace(record) if record else None

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
    async with self._lock:
      record = self._jobs.get(job_id)
      if record is None:
        return None
      if expected_statuses is not None and record.status not in expected_statuses:
        return None
      changes: dict[str, Any] = {"updated_at": utc_now()}
      if status is not None:
        changes["status"] = status
      if attempts is not None:
        changes["attempts"] = attempts
      if clear_error:
        changes["error"] = None
        changes["error_code"] = None
      if error is not None:
        changes["error"] = error
      if error_code is not None:
        changes["error_code"] = error_code
      if result is not None:
        changes["result"] = result
      if clear_run_at:
        changes["run_at"] = None
      if run_at is not None:
        changes["run_at"] = run_at
      if started_at is not None:
        changes["started_at"] = started_at
      if clear_completed_at:
        changes["completed_at"] = None
      if completed_at is not None:
        changes["completed_at"] = completed_at
      updated = dataclasses.replace(record, **changes)
      self._jobs[job_id] = updated
      return dataclasses.replace(updated)

  async def find_queued(self, limit: int = 5, *, lane: str | None = None, due_before: datetime | None = None) -> list[JobRecord]:
    async with self._lock:
      queued = [record for record in self._jobs.values() if record.status == "QUEUED" and (lane is None or record.lane == lane)]
      if due_before is not None:
        queued = [record for record in queued if record.run_at is None or record.run_at <= due_before]
      queued.sort(key=lambda record: record.created_at)
      return [dataclasses.replace(record) for record in queued[:limit]]

  async def find_stalled(self, started_before: datetime, limit: int = 100) -> list[JobRecord]:
    async with self._lock:
      stalled = [record for record in self._jobs.values() if record.status == "PROCESSING" and (record.started_at or record.updated_at) < started_before]
      stalled.sort(key=lambda record: record.started_at or record.updated_at)
      return [dataclasses.replace(record) for record in stalled[:limit]]

  async def find_by_idempotency_key(self, idempotency_key: str) -> JobRecord | None:
    async with self._lock:
      record = self._live_by_key(idempotency_key)
      return dataclasses.replace(record) if record else None

  async def list_jobs(self, limit: int, offset: int, status: JobStatus | None = None, job_type: str | None = None) -> tuple[list[JobRecord], int]:
    async with self._lock:
      matches = [record for record in self._jobs.values() if (status is None or record.status == status) and (job_type is None or record.job_type == job_type)]
      matches.sort(key=lambda record: record.created_at, reverse=True)
      return [dataclasses.replace(record) for record in matches[offset : offset + limit]], len(matches)

  async def delete_completed_before(self, cutoff: datetime) -> int:
    async with self._lock:
      doomed = [job_id for job_id, record in self._jobs.items() if record.status == "COMPLETED" and record.completed_at is not None and record.completed_at < cutoff]
      for job_id in doomed:
        del self._jobs[job_id]
      return len(doomed)

  async def lane_metrics(self, now: datetime) -> dict[str, LaneMetrics]:
    async with self._lock:
      metrics = {lane: LaneMetrics() for lane in LANES}
      for record in self._jobs.values():
        metrics.setdefault(record.lane, LaneMetrics()).add(record.status, delayed=record.run_at is not None and record.run_at > now)
      return metrics

  def _live_by_key(self, idempotency_key: str) -> JobRecord | None:
    candidates = [record for record in self._jobs.values() if record.idempotency_key == idempotency_key and record.status in ("QUEUED", "PROCESSING", "COMPLETED")]
    if not candidates:
      return None
    return max(candidates, key=lambda record: record.created_at)

