"""Handlers for every known job type."""

from __future__ import annotations

import logging
from typing import Any

from launchpad.ai.budget import BudgetGuard
from launchpad.ai.cache import ResponseCache
from launchpad.ai.client import GenerationClient
from launchpad.ai.prompts import build_business_plan_prompt, build_deliverable_prompt, month_title
from launchpad.jobs.dispatch import JobHandler
from launchpad.jobs.errors import ArtifactExistsError, InvalidPayloadError
from launchpad.jobs.models import JobRecord
from launchpad.notifications.contracts import UnknownTemplateError
from launchpad.notifications.service import NotificationService
from launchpad.services.maintenance import BackupRunner, ClientMetricsUpdater, PdfRenderer, TempFileCleaner, purge_completed_jobs
from launchpad.storage.journey_repo import ActivityRecord, ClientProfile, JourneyRepository
from launchpad.storage.jobs_repo import JobsRepository
from launchpad.workflows.engine import WorkflowEngine

logger = logging.getLogger(__name__)


def _require(payload: dict[str, Any], key: str) -> Any:
  value = payload.get(key)
  if value is None or value == "":
    raise InvalidPayloadError(f"Payload is missing '{key}'")
  return value


async def _load_client(journey: JourneyRepository, client_id: str) -> ClientProfile:
  client = await journey.get_client(client_id)
  if client is None:
    raise InvalidPayloadError(f"Client not found: {client_id}")
  return client


class BusinessPlanJobHandler(JobHandler):
  job_types = ("GENERATE_BUSINESS_PLAN",)

  def __init__(self, generator: GenerationClient, journey: JourneyRepository) -> None:
    self._generator = generator
    self._journey = journey

  async def process(self, job: JobRecord) -> dict[str, Any] | None:
    client_id = str(_require(job.payload, "clientId"))
    user_id = job.payload.get("userId")
    client = await _load_client(self._journey, client_id)

    system_prompt, prompt = build_business_plan_prompt(client)
    generated = await self._generator.generate(prompt, operation="BUSINESS_PLAN_GENERATION", system_prompt=system_prompt, client_id=client_id, user_id=user_id)

    plan = await self._journey.create_business_plan(client_id=client_id, content=generated.text, generated_by=user_id)
    await self._journey.record_activity(ActivityRecord(activity_type="BUSINESS_PLAN_GENERATED", description=f"Generated business plan v{plan.version}", actor_id=user_id, client_id=client_id))
    return {"businessPlanId": plan.plan_id, "version": plan.version, "cached": generated.cached, "tokens": generated.total_tokens}


class DeliverableJobHandler(JobHandler):
  job_types = ("GENERATE_DELIVERABLE",)

  def __init__(self, generator: GenerationClient, journey: JourneyRepository, *, journey_months: int = 8) -> None:
    self._generator = generator
    self._journey = journey
    self._journey_months = journey_months

  async def process(self, job: JobRecord) -> dict[str, Any] | None:
    client_id = str(_require(job.payload, "clientId"))
    user_id = job.payload.get("userId")
    try:
      month = int(_require(job.payload, "month"))
    except (TypeError, ValueError) as exc:
      raise InvalidPayloadError("Payload 'month' must be an integer") from exc
    if month < 1 or month > self._journey_months:
      raise InvalidPayloadError(f"Month must be between 1 and {self._journey_months}")

    client = await _load_client(self._journey, client_id)
    if await self._journey.get_deliverable(client_id, month) is not None:
      raise ArtifactExistsError(f"Deliverable for Month {month} already exists")

    previous = await self._journey.list_deliverables(client_id)
    system_prompt, prompt = build_deliverable_prompt(client, month, previous)
    generated = await self._generator.generate(prompt, operation="DELIVERABLE_GENERATION", system_prompt=system_prompt, client_id=client_id, user_id=user_id)

    title = month_title(month)
    deliverable = await self._journey.create_deliverable(client_id=client_id, month=month, title=title, content=generated.text, generated_by=user_id)
    await self._journey.record_activity(ActivityRecord(activity_type="DELIVERABLE_GENERATED", description=f"Generated {title}", actor_id=user_id, client_id=client_id))
    return {"deliverableId": deliverable.deliverable_id, "month": month, "cached": generated.cached, "tokens": generated.total_tokens}


class PdfJobHandler(JobHandler):
  job_types = ("GENERATE_PDF",)

  def __init__(self, renderer: PdfRenderer) -> None:
    self._renderer = renderer

  async def process(self, job: JobRecord) -> dict[str, Any] | None:
    business_plan_id = job.payload.get("businessPlanId")
    deliverable_id = job.payload.get("deliverableId")
    if not business_plan_id and not deliverable_id:
      raise InvalidPayloadError("Payload needs 'businessPlanId' or 'deliverableId'")
    return await self._renderer.render(business_plan_id=business_plan_id, deliverable_id=deliverable_id, quality=str(job.payload.get("quality") or "draft"))


class EmailJobHandler(JobHandler):
  job_types = ("SEND_EMAIL",)

  def __init__(self, notifications: NotificationService) -> None:
    self._notifications = notifications

  async def process(self, job: JobRecord) -> dict[str, Any] | None:
    template_id = str(_require(job.payload, "template"))
    to_address = str(_require(job.payload, "to"))
    try:
      result = await self._notifications.send_template(template_id=template_id, to_address=to_address, to_name=job.payload.get("toName"), variables=dict(job.payload.get("context") or {}))
    except UnknownTemplateError as exc:
      raise InvalidPayloadError(str(exc)) from exc
    return {"template": template_id, **result}


class ReminderJobHandler(JobHandler):
  job_types = ("SEND_REMINDER_EMAILS",)

  def __init__(self, engine: WorkflowEngine) -> None:
    self._engine = engine

  async def process(self, job: JobRecord) -> dict[str, Any] | None:
    found = await self._engine.check_overdue_deliverables(actor_id=job.payload.get("userId"))
    return {"overdue": found}


class MaintenanceJobHandler(JobHandler):
  """Scheduled housekeeping jobs."""

  job_types = ("BACKUP_DATABASE", "CLEANUP_FILES", "CLEANUP_OLD_JOBS", "CLEANUP_CACHE", "RESET_BUDGET_PERIODS", "UPDATE_CLIENT_METRICS")

  def __init__(
    self, jobs_repo: JobsRepository, cache: ResponseCache, budget: BudgetGuard, *, backup_runner: BackupRunner, file_cleaner: TempFileCleaner, metrics_updater: ClientMetricsUpdater, default_retention_days: int = 30
  ) -> None:
    self._jobs_repo = jobs_repo
    self._cache = cache
    self._budget = budget
    self._backup_runner = backup_runner
    self._file_cleaner = file_cleaner
    self._metrics_updater = metrics_updater
    self._default_retention_days = default_retention_days

  async def process(self, job: JobRecord) -> dict[str, Any] | None:
    if job.job_type == "BACKUP_DATABASE":
      return await self._backup_runner.run()
    if job.job_type == "CLEANUP_FILES":
      return await self._file_cleaner.clean()
    if job.job_type == "UPDATE_CLIENT_METRICS":
      return await self._metrics_updater.update()
    if job.job_type == "CLEANUP_OLD_JOBS":
      try:
        older_than_days = int(job.payload.get("olderThanDays") or self._default_retention_days)
      except (TypeError, ValueError) as exc:
        raise InvalidPayloadError("Payload 'olderThanDays' must be an integer") from exc
      if older_than_days <= 0:
        raise InvalidPayloadError("Payload 'olderThanDays' must be positive")
      deleted = await purge_completed_jobs(self._jobs_repo, older_than_days=older_than_days)
      return {"deleted": deleted, "olderThanDays": older_than_days}
    if job.job_type == "CLEANUP_CACHE":
      expired = await self._cache.sweep_expired()
      evicted = await self._cache.evict()
      return {"expired": expired, "evicted": evicted}
    if job.job_type == "RESET_BUDGET_PERIODS":
      rolled = await self._budget.rollover_periods()
      return {"reset": list(rolled)}
    raise InvalidPayloadError(f"Maintenance handler cannot process {job.job_type}")
