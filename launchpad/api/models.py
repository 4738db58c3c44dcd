from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, StrictStr

from launchpad.jobs.models import JobErrorCode, JobRecord, JobStatus, JobType, Lane
from launchpad.jobs.scheduler import ScheduledTask
from launchpad.storage.budgets_repo import BudgetAlertRecord, BudgetConfig, BudgetPeriod


class JobResponse(BaseModel):
  """Job Store record as exposed to operators."""

  job_id: str
  job_type: str
  status: JobStatus
  lane: Lane
  priority: int
  attempts: int
  payload: dict[str, Any]
  result: dict[str, Any] | None = None
  error: str | None = None
  error_code: JobErrorCode | None = None
  idempotency_key: str | None = None
  run_at: datetime | None = None
  created_at: datetime
  updated_at: datetime
  started_at: datetime | None = None
  completed_at: datetime | None = None

  @classmethod
  def from_record(cls, record: JobRecord) -> JobResponse:
    return cls(
      job_id=record.job_id,
      job_type=record.job_type,
      status=record.status,
      lane=record.lane,
      priority=record.priority,
      attempts=record.attempts,
      payload=record.payload,
      result=record.result,
      error=record.error,
      error_code=record.error_code,
      idempotency_key=record.idempotency_key,
      run_at=record.run_at,
      created_at=record.created_at,
      updated_at=record.updated_at,
      started_at=record.started_at,
      completed_at=record.completed_at,
    )


class JobListResponse(BaseModel):
  items: list[JobResponse]
  total: int
  limit: int
  offset: int


class EnqueueJobRequest(BaseModel):
  """Request payload for enqueuing a job by hand."""

  job_type: JobType
  payload: dict[str, Any] = Field(default_factory=dict)
  priority: int = Field(default=5, ge=1, le=10, description="Lower runs first.")
  delay_seconds: float = Field(default=0.0, ge=0.0)
  idempotency_key: StrictStr | None = Field(default=None, min_length=1)
  model_config = ConfigDict(extra="forbid")


class EnqueueJobResponse(BaseModel):
  job_id: str


class QueueMetricsResponse(BaseModel):
  backend: str
  lanes: dict[str, dict[str, int]]


class BudgetUpsertRequest(BaseModel):
  period: BudgetPeriod
  token_limit: int = Field(ge=0)
  cost_limit: float = Field(default=0.0, ge=0.0)
  alert_at_50: bool = True
  alert_at_75: bool = True
  alert_at_90: bool = True
  alert_at_100: bool = True
  auto_pause_at_limit: bool = False
  is_active: bool = True
  model_config = ConfigDict(extra="forbid")

  def to_config(self) -> BudgetConfig:
    return BudgetConfig(**self.model_dump())


class BudgetPauseRequest(BaseModel):
  paused: bool


class BudgetAlertResponse(BaseModel):
  period: BudgetPeriod
  threshold: int
  percentage: float
  tokens_used: int
  cost_used: float
  created_at: datetime

  @classmethod
  def from_record(cls, record: BudgetAlertRecord) -> BudgetAlertResponse:
    return cls(period=record.period, threshold=record.threshold, percentage=round(record.percentage, 2), tokens_used=record.tokens_used, cost_used=record.cost_used, created_at=record.created_at)


class ScheduledTaskModel(BaseModel):
  name: StrictStr = Field(min_length=1, max_length=100)
  pattern: StrictStr = Field(min_length=1, description="5-field cron pattern: minute hour day-of-month month day-of-week.")
  job_type: JobType
  payload: dict[str, Any] = Field(default_factory=dict)
  enabled: bool = True
  priority: int = Field(default=5, ge=1, le=10)
  description: str = ""
  model_config = ConfigDict(extra="forbid")

  def to_task(self) -> ScheduledTask:
    return ScheduledTask(name=self.name, pattern=self.pattern, job_type=self.job_type, payload=dict(self.payload), enabled=self.enabled, priority=self.priority, description=self.description)

  @classmethod
  def from_task(cls, task: ScheduledTask) -> ScheduledTaskModel:
    return cls(name=task.name, pattern=task.pattern, job_type=task.job_type, payload=dict(task.payload), enabled=task.enabled, priority=task.priority, description=task.description)


class CacheStatsResponse(BaseModel):
  total_entries: int
  total_hits: int
  total_tokens_saved: int
  cache_hit_rate: float
