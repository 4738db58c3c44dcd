"""Operator endpoints for jobs, budgets, schedules and the response cache."""

from __future__ import annotations

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Query, status

from launchpad.api.deps import get_pipeline, require_admin_secret
from launchpad.api.models import (
  BudgetAlertResponse,
  BudgetPauseRequest,
  BudgetUpsertRequest,
  CacheStatsResponse,
  EnqueueJobRequest,
  EnqueueJobResponse,
  JobListResponse,
  JobResponse,
  QueueMetricsResponse,
  ScheduledTaskModel,
)
from launchpad.jobs.errors import JobNotFoundError
from launchpad.jobs.models import EnqueueOptions, JobStatus
from launchpad.pipeline import Pipeline
from launchpad.storage.budgets_repo import BudgetPeriod

router = APIRouter(dependencies=[Depends(require_admin_secret)])
logger = logging.getLogger(__name__)

PipelineDep = Annotated[Pipeline, Depends(get_pipeline)]


@router.post("/jobs", response_model=EnqueueJobResponse, status_code=status.HTTP_202_ACCEPTED)
async def enqueue_job(payload: EnqueueJobRequest, pipeline: PipelineDep) -> EnqueueJobResponse:
  options = EnqueueOptions(priority=payload.priority, delay_seconds=payload.delay_seconds, idempotency_key=payload.idempotency_key)
  job_id = await pipeline.queue.enqueue(payload.job_type, payload.payload, options)
  return EnqueueJobResponse(job_id=job_id)


@router.get("/jobs", response_model=JobListResponse)
async def list_jobs(
  pipeline: PipelineDep, status_filter: Annotated[JobStatus | None, Query(alias="status")] = None, job_type: str | None = None, limit: Annotated[int, Query(ge=1, le=200)] = 50, offset: Annotated[int, Query(ge=0)] = 0
) -> JobListResponse:
  """List jobs newest first."""
  records, total = await pipeline.repositories.jobs.list_jobs(limit=limit, offset=offset, status=status_filter, job_type=job_type)
  return JobListResponse(items=[JobResponse.from_record(record) for record in records], total=total, limit=limit, offset=offset)


@router.get("/jobs/{job_id}", response_model=JobResponse)
async def get_job(job_id: str, pipeline: PipelineDep) -> JobResponse:
  record = await pipeline.queue.get_job(job_id)
  if record is None:
    raise JobNotFoundError(job_id)
  return JobResponse.from_record(record)


@router.post("/jobs/{job_id}/cancel", response_model=JobResponse)
async def cancel_job(job_id: str, pipeline: PipelineDep) -> JobResponse:
  return JobResponse.from_record(await pipeline.queue.cancel(job_id))


@router.post("/jobs/{job_id}/retry", response_model=JobResponse)
async def retry_job(job_id: str, pipeline: PipelineDep) -> JobResponse:
  """Requeue a FAILED or CANCELLED job with a fresh attempt count."""
  return JobResponse.from_record(await pipeline.queue.retry(job_id))


@router.get("/queue/metrics", response_model=QueueMetricsResponse)
async def queue_metrics(pipeline: PipelineDep) -> QueueMetricsResponse:
  metrics = await pipeline.queue.get_metrics()
  return QueueMetricsResponse(backend=pipeline.queue.backend_name, lanes={lane: counts.as_dict() for lane, counts in metrics.items()})


@router.get("/budgets")
async def budget_status(pipeline: PipelineDep) -> dict[str, Any]:
  snapshots = await pipeline.budget.get_status()
  admission = await pipeline.budget.check_admission()
  return {"allowed": admission.allowed, "reason": admission.reason, "budgets": {period: snapshot.as_dict() for period, snapshot in snapshots.items()}}


@router.put("/budgets")
async def upsert_budget(payload: BudgetUpsertRequest, pipeline: PipelineDep) -> dict[str, Any]:
  record = await pipeline.budget.upsert_budget(payload.to_config())
  logger.info("Budget %s configured token_limit=%d cost_limit=%.2f", record.period, record.token_limit, record.cost_limit)
  return {"period": record.period, "tokenLimit": record.token_limit, "costLimit": record.cost_limit, "autoPauseAtLimit": record.auto_pause_at_limit, "isActive": record.is_active}


@router.post("/budgets/{period}/reset")
async def reset_budget(period: BudgetPeriod, pipeline: PipelineDep) -> dict[str, Any]:
  record = await pipeline.budget.reset(period)
  if record is None:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"No active {period} budget.")
  return {"period": record.period, "tokensUsed": record.tokens_used, "isPaused": record.is_paused}


@router.post("/budgets/{period}/pause")
async def pause_budget(period: BudgetPeriod, payload: BudgetPauseRequest, pipeline: PipelineDep) -> dict[str, Any]:
  record = await pipeline.budget.set_paused(period, payload.paused)
  if record is None:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"No active {period} budget.")
  return {"period": record.period, "isPaused": record.is_paused}


@router.get("/budgets/alerts", response_model=list[BudgetAlertResponse])
async def budget_alerts(pipeline: PipelineDep, limit: Annotated[int, Query(ge=1, le=200)] = 50) -> list[BudgetAlertResponse]:
  return [BudgetAlertResponse.from_record(alert) for alert in await pipeline.budget.list_alerts(limit)]


@router.get("/usage/stats")
async def usage_stats(pipeline: PipelineDep) -> dict[str, Any]:
  stats = await pipeline.budget.get_token_stats()
  return {
    "totalRequests": stats.total_requests,
    "totalTokens": stats.total_tokens,
    "totalCost": round(stats.total_cost, 6),
    "cacheHits": stats.cache_hits,
    "cacheHitRate": round(stats.cache_hit_rate, 2),
    "byOperation": stats.by_operation,
    "byModel": stats.by_model,
  }


@router.get("/schedules", response_model=list[ScheduledTaskModel])
async def list_schedules(pipeline: PipelineDep) -> list[ScheduledTaskModel]:
  return [ScheduledTaskModel.from_task(task) for task in await pipeline.scheduler.list_tasks()]


@router.post("/schedules", status_code=status.HTTP_201_CREATED)
async def add_schedule(payload: ScheduledTaskModel, pipeline: PipelineDep) -> dict[str, Any]:
  registered = await pipeline.scheduler.add_task(payload.to_task())
  return {"name": payload.name, "registered": registered}


@router.delete("/schedules/{name}")
async def remove_schedule(name: str, pipeline: PipelineDep) -> dict[str, Any]:
  if not await pipeline.scheduler.remove_task(name):
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Scheduled task not found: {name}")
  return {"name": name, "removed": True}


@router.get("/cache/stats", response_model=CacheStatsResponse)
async def cache_stats(pipeline: PipelineDep) -> CacheStatsResponse:
  stats = await pipeline.cache_stats()
  return CacheStatsResponse(total_entries=stats.total_entries, total_hits=stats.total_hits, total_tokens_saved=stats.total_tokens_saved, cache_hit_rate=round(stats.cache_hit_rate, 2))
