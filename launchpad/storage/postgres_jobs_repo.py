"""Postgres-backed repository for pipeline jobs using SQLAlchemy."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from typing import Any

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError

from launchpad.core.database import require_session_factory
from launchpad.jobs.models import LANES, JobErrorCode, JobRecord, JobStatus, LaneMetrics, utc_now
from launchpad.schema.jobs import Job
from launchpad.storage.jobs_repo import JobsRepository


class PostgresJobsRepository(JobsRepository):
  """Persist jobs to Postgres using SQLAlchemy."""

  def __init__(self) -> None:
    self._session_factory = require_session_factory()

  async def create_job(self, record: JobRecord) -> JobRecord:
    async with self._session_factory() as session:
      job = Job(
        job_id=record.job_id,
        job_type=record.job_type,
        lane=record.lane,
        status=record.status,
        priority=int(record.priority),
        payload_json=record.payload,
        result_json=record.result,
        attempts=record.attempts,
        error=record.error,
        error_code=record.error_code,
        idempotency_key=record.idempotency_key,
        run_at=record.run_at,
        created_at=record.created_at,
        updated_at=record.updated_at,
      )
      session.add(job)
      try:
        await session.commit()
      except IntegrityError:
        # The partial unique index rejects a second live job for the same idempotency key.
        await session.rollback()
        if not record.idempotency_key:
          raise
        existing = await self.find_by_idempotency_key(record.idempotency_key)
        if existing is None:
          raise
        return existing
      return self._model_to_record(job)

  async def get_job(self, job_id: str) -> JobRecord | None:
    async with self._session_factory() as session:
      row = await session.get(Job, job_id)
      if row is None:
        return None
      return self._model_to_record(row)

  async def update_job(  # pylint: disable=too-many-arguments
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
    values: dict[str, Any] = {"updated_at": utc_now()}
    if status is not None:
      values["status"] = status
    if attempts is not None:
      values["attempts"] = attempts
    if clear_error:
      values["error"] = None
      values["error_code"] = None
    if error is not None:
      values["error"] = error
    if error_code is not None:
      values["error_code"] = error_code
    if result is not None:
      values["result_json"] = result
    if clear_run_at:
      values["run_at"] = None
    if run_at is not None:
      values["run_at"] = run_at
    if started_at is not None:
      values["started_at"] = started_at
    if clear_completed_at:
      values["completed_at"] = None
    if completed_at is not None:
      values["completed_at"] = completed_at

    conditions = [Job.job_id == job_id]
    # Guard the write with the expected status so concurrent workers cannot both win a transition.
    if expected_statuses is not None:
      conditions.append(Job.status.in_(list(expected_statuses)))

    async with self._session_factory() as session:
      stmt = update(Job).where(*conditions).values(**values).returning(Job).execution_options(synchronize_session=False)
      row = (await session.execute(stmt)).scalars().one_or_none()
      await session.commit()
      if row is None:
        return None
      return self._model_to_record(row)

  async def find_queued(self, limit: int = 5, *, lane: str | None = None, due_before: datetime | None = None) -> list[JobRecord]:
    async with self._session_factory() as session:
      stmt = select(Job).where(Job.status == "QUEUED")
      if lane is not None:
        stmt = stmt.where(Job.lane == lane)
      if due_before is not None:
        stmt = stmt.where(or_(Job.run_at.is_(None), Job.run_at <= due_before))
      stmt = stmt.order_by(Job.created_at.asc()).limit(limit)
      rows = (await session.execute(stmt)).scalars().all()
      return [self._model_to_record(row) for row in rows]

  async def find_stalled(self, started_before: datetime, limit: int = 100) -> list[JobRecord]:
    async with self._session_factory() as session:
      last_started = func.coalesce(Job.started_at, Job.updated_at)
      stmt = select(Job).where(Job.status == "PROCESSING", last_started < started_before).order_by(last_started.asc()).limit(limit)
      rows = (await session.execute(stmt)).scalars().all()
      return [self._model_to_record(row) for row in rows]

  async def find_by_idempotency_key(self, idempotency_key: str) -> JobRecord | None:
    async with self._session_factory() as session:
      stmt = select(Job).where(Job.idempotency_key == idempotency_key, Job.status.in_(["QUEUED", "PROCESSING", "COMPLETED"])).order_by(Job.created_at.desc()).limit(1)
      row = (await session.execute(stmt)).scalar_one_or_none()
      if row is None:
        return None
      return self._model_to_record(row)

  async def list_jobs(self, limit: int, offset: int, status: JobStatus | None = None, job_type: str | None = None) -> tuple[list[JobRecord], int]:
    async with self._session_factory() as session:
      filters = []
      if status:
        filters.append(Job.status == status)
      if job_type:
        filters.append(Job.job_type == job_type)
      where_clause = and_(*filters) if filters else None

      count_stmt = select(func.count()).select_from(Job)
      stmt = select(Job).order_by(Job.created_at.desc()).offset(offset).limit(limit)
      if where_clause is not None:
        count_stmt = count_stmt.where(where_clause)
        stmt = stmt.where(where_clause)

      total = (await session.execute(count_stmt)).scalar_one()
      rows = (await session.execute(stmt)).scalars().all()
      return [self._model_to_record(row) for row in rows], int(total)

  async def delete_completed_before(self, cutoff: datetime) -> int:
    async with self._session_factory() as session:
      stmt = delete(Job).where(Job.status == "COMPLETED", Job.completed_at < cutoff)
      result = await session.execute(stmt)
      await session.commit()
      return int(result.rowcount or 0)

  async def lane_metrics(self, now: datetime) -> dict[str, LaneMetrics]:
    async with self._session_factory() as session:
      delayed = and_(Job.run_at.is_not(None), Job.run_at > now).label("delayed")
      stmt = select(Job.lane, Job.status, delayed, func.count()).group_by(Job.lane, Job.status, delayed)
      rows = (await session.execute(stmt)).all()

    metrics = {lane: LaneMetrics() for lane in LANES}
    for lane, status, is_delayed, count in rows:
      metrics.setdefault(lane, LaneMetrics()).add(status, delayed=bool(is_delayed), amount=int(count))
    return metrics

  def _model_to_record(self, row: Job) -> JobRecord:
    return JobRecord(
      job_id=row.job_id,
      job_type=row.job_type,
      payload=dict(row.payload_json or {}),
      status=row.status,  # type: ignore[arg-type]
      created_at=row.created_at,
      updated_at=row.updated_at,
      priority=row.priority,
      lane=row.lane,  # type: ignore[arg-type]
      attempts=row.attempts,
      error=row.error,
      error_code=row.error_code,  # type: ignore[arg-type]
      result=row.result_json,
      idempotency_key=row.idempotency_key,
      run_at=row.run_at,
      started_at=row.started_at,
      completed_at=row.completed_at,
    )
