"""Wire repositories, queue backend, scheduler, cost controls and workflows into one pipeline."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from launchpad.ai.budget import BudgetGuard
from launchpad.ai.cache import CacheStats, ResponseCache
from launchpad.ai.client import GenerationClient
from launchpad.ai.providers import ChatCompletionProvider, Provider
from launchpad.config import Settings
from launchpad.jobs.backoff import RetryPolicy
from launchpad.jobs.dispatch import JobHandlerRegistry
from launchpad.jobs.executor import JobExecutor
from launchpad.jobs.factory import QueueBackend, build_queue_backend
from launchpad.jobs.handlers import BusinessPlanJobHandler, DeliverableJobHandler, EmailJobHandler, MaintenanceJobHandler, PdfJobHandler, ReminderJobHandler
from launchpad.jobs.queue import BaseJobQueue
from launchpad.jobs.scheduler import Scheduler
from launchpad.notifications.factory import build_notification_service
from launchpad.notifications.service import NotificationService
from launchpad.services.maintenance import BackupRunner, ClientMetricsUpdater, NullBackupRunner, NullClientMetricsUpdater, NullPdfRenderer, NullTempFileCleaner, PdfRenderer, TempFileCleaner
from launchpad.storage.budgets_repo import BudgetRepository, InMemoryBudgetRepository, InMemoryUsageRepository, UsageRepository
from launchpad.storage.cache_repo import CacheRepository, InMemoryCacheRepository
from launchpad.storage.jobs_repo import JobsRepository
from launchpad.storage.journey_repo import InMemoryJourneyRepository, JourneyRepository
from launchpad.storage.memory_jobs_repo import InMemoryJobsRepository
from launchpad.workflows.dispatcher import WorkflowDispatcher
from launchpad.workflows.engine import WorkflowEngine
from launchpad.workflows.hooks import JobCompletionBridge

logger = logging.getLogger(__name__)


@dataclass
class Repositories:
  jobs: JobsRepository
  cache: CacheRepository
  budgets: BudgetRepository
  usage: UsageRepository


def build_repositories(settings: Settings) -> Repositories:
  """Use Postgres when a DSN is configured, process memory otherwise."""
  if settings.pg_dsn:
    from launchpad.storage.postgres_budgets_repo import PostgresBudgetRepository, PostgresUsageRepository
    from launchpad.storage.postgres_cache_repo import PostgresCacheRepository
    from launchpad.storage.postgres_jobs_repo import PostgresJobsRepository

    return Repositories(jobs=PostgresJobsRepository(), cache=PostgresCacheRepository(), budgets=PostgresBudgetRepository(), usage=PostgresUsageRepository())

  logger.warning("No Postgres DSN configured; jobs, cache and budgets live in process memory")
  return Repositories(jobs=InMemoryJobsRepository(), cache=InMemoryCacheRepository(), budgets=InMemoryBudgetRepository(), usage=InMemoryUsageRepository())


def build_provider(settings: Settings) -> Provider | None:
  if not settings.generation_api_key:
    logger.warning("No generation API key configured; generation jobs will fail until one is set")
    return None
  return ChatCompletionProvider(
    settings.generation_provider, api_key=settings.generation_api_key, base_url=settings.generation_base_url, timeout_seconds=settings.generation_timeout_seconds, default_max_tokens=settings.generation_max_tokens
  )


@dataclass
class Pipeline:
  settings: Settings
  repositories: Repositories
  backend: QueueBackend
  scheduler: Scheduler
  cache: ResponseCache
  budget: BudgetGuard
  generator: GenerationClient
  engine: WorkflowEngine
  dispatcher: WorkflowDispatcher
  registry: JobHandlerRegistry

  @property
  def queue(self) -> BaseJobQueue:
    return self.backend.queue

  async def start(self) -> None:
    await self.dispatcher.start()
    await self.queue.start()
    if self.settings.scheduler_enabled:
      await self.scheduler.register_defaults()
      await self.scheduler.start()
    logger.info("Pipeline started backend=%s handlers=%s", self.queue.backend_name, ",".join(self.registry.job_types()))

  async def shutdown(self) -> None:
    await self.scheduler.shutdown()
    await self.queue.shutdown()
    await self.dispatcher.shutdown()
    await self.backend.close()
    logger.info("Pipeline stopped")

  async def cache_stats(self) -> CacheStats:
    try:
      hit_rate = (await self.budget.get_token_stats()).cache_hit_rate
    except Exception:  # noqa: BLE001
      logger.warning("Usage stats unavailable; reporting cache hit rate as 0", exc_info=True)
      hit_rate = 0.0
    return await self.cache.stats(cache_hit_rate=hit_rate)


async def build_pipeline(
  settings: Settings,
  *,
  repositories: Repositories | None = None,
  journey: JourneyRepository | None = None,
  provider: Provider | None = None,
  notifications: NotificationService | None = None,
  pdf_renderer: PdfRenderer | None = None,
  backup_runner: BackupRunner | None = None,
  file_cleaner: TempFileCleaner | None = None,
  metrics_updater: ClientMetricsUpdater | None = None,
) -> Pipeline:
  """Build every component from settings; collaborators default to their no-op variants."""
  repos = repositories or build_repositories(settings)
  journey = journey or InMemoryJourneyRepository()

  cache = ResponseCache(repos.cache, max_entries=settings.cache_max_entries, ttl_hours=settings.cache_ttl_hours, strip_stop_words=settings.cache_strip_stop_words)
  budget = BudgetGuard(repos.budgets, repos.usage)
  generator = GenerationClient(
    provider if provider is not None else build_provider(settings), cache, budget, default_model=settings.generation_model, default_max_tokens=settings.generation_max_tokens, pricing=settings.generation_pricing
  )

  # Handlers that need the workflow engine are registered once the queue exists.
  registry = JobHandlerRegistry()
  executor = JobExecutor(repos.jobs, registry, retry_policy=RetryPolicy.from_delays(settings.job_max_retries, settings.job_backoff_seconds))
  backend = await build_queue_backend(settings, repos.jobs, executor)

  engine = WorkflowEngine(backend.queue, journey, email_workflows_enabled=settings.email_workflows_enabled, auto_generate_pdf=settings.auto_generate_pdf, journey_months=settings.journey_months, app_url=settings.app_url)
  dispatcher = WorkflowDispatcher(engine)
  backend.queue.add_completion_listener(JobCompletionBridge(dispatcher, auto_advance=settings.workflow_auto_advance))

  registry.register(BusinessPlanJobHandler(generator, journey))
  registry.register(DeliverableJobHandler(generator, journey, journey_months=settings.journey_months))
  registry.register(PdfJobHandler(pdf_renderer or NullPdfRenderer()))
  registry.register(EmailJobHandler(notifications or build_notification_service(settings)))
  registry.register(ReminderJobHandler(engine))
  registry.register(
    MaintenanceJobHandler(
      repos.jobs,
      cache,
      budget,
      backup_runner=backup_runner or NullBackupRunner(),
      file_cleaner=file_cleaner or NullTempFileCleaner(),
      metrics_updater=metrics_updater or NullClientMetricsUpdater(),
      default_retention_days=settings.job_retention_days,
    )
  )

  scheduler = Scheduler(backend.queue, backend.schedule_driver)
  return Pipeline(settings=settings, repositories=repos, backend=backend, scheduler=scheduler, cache=cache, budget=budget, generator=generator, engine=engine, dispatcher=dispatcher, registry=registry)
