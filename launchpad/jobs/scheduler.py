"""Recurring task registration on top of the job queue."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field, replace
from typing import Any, Protocol

from launchpad.jobs.errors import CronPatternError
from launchpad.jobs.models import EnqueueOptions, JobPriority
from launchpad.jobs.queue import JobQueue

logger = logging.getLogger(__name__)

SCHEDULES: dict[str, str] = {
  "EVERY_MINUTE": "* * * * *",
  "EVERY_5_MINUTES": "*/5 * * * *",
  "EVERY_15_MINUTES": "*/15 * * * *",
  "EVERY_30_MINUTES": "*/30 * * * *",
  "EVERY_HOUR": "0 * * * *",
  "EVERY_6_HOURS": "0 */6 * * *",
  "EVERY_12_HOURS": "0 */12 * * *",
  "DAILY_AT_MIDNIGHT": "0 0 * * *",
  "DAILY_AT_2AM": "0 2 * * *",
  "DAILY_AT_NOON": "0 12 * * *",
  "WEEKLY_SUNDAY": "0 0 * * 0",
  "WEEKLY_MONDAY": "0 0 * * 1",
  "MONTHLY_FIRST": "0 0 1 * *",
}

_MINUTE = 60.0
_HOUR = 60 * _MINUTE
_DAY = 24 * _HOUR

# Fixed-interval stand-ins used when no distributed scheduler is available.
SCHEDULE_INTERVALS: dict[str, float] = {
  SCHEDULES["EVERY_MINUTE"]: _MINUTE,
  SCHEDULES["EVERY_5_MINUTES"]: 5 * _MINUTE,
  SCHEDULES["EVERY_15_MINUTES"]: 15 * _MINUTE,
  SCHEDULES["EVERY_30_MINUTES"]: 30 * _MINUTE,
  SCHEDULES["EVERY_HOUR"]: _HOUR,
  SCHEDULES["EVERY_6_HOURS"]: 6 * _HOUR,
  SCHEDULES["EVERY_12_HOURS"]: 12 * _HOUR,
  SCHEDULES["DAILY_AT_MIDNIGHT"]: _DAY,
  SCHEDULES["DAILY_AT_2AM"]: _DAY,
  SCHEDULES["DAILY_AT_NOON"]: _DAY,
  SCHEDULES["WEEKLY_SUNDAY"]: 7 * _DAY,
  SCHEDULES["WEEKLY_MONDAY"]: 7 * _DAY,
  SCHEDULES["MONTHLY_FIRST"]: 30 * _DAY,
}


@dataclass(frozen=True)
class ScheduledTask:
  """A named recurrence rule that enqueues one job type."""

  name: str
  pattern: str
  job_type: str
  payload: dict[str, Any] = field(default_factory=dict)
  enabled: bool = True
  priority: int = JobPriority.NORMAL
  description: str = ""
  # Set for tasks registered through register_defaults.
  managed: bool = False


DEFAULT_SCHEDULED_TASKS: tuple[ScheduledTask, ...] = (
  ScheduledTask(name="cleanup-temp-files", pattern=SCHEDULES["DAILY_AT_2AM"], job_type="CLEANUP_FILES", priority=JobPriority.LOW, description="Remove stale temporary files"),
  ScheduledTask(name="database-backup", pattern=SCHEDULES["DAILY_AT_MIDNIGHT"], job_type="BACKUP_DATABASE", payload={"label": "scheduled-daily-backup"}, description="Nightly database backup"),
  ScheduledTask(name="cleanup-old-jobs", pattern=SCHEDULES["WEEKLY_SUNDAY"], job_type="CLEANUP_OLD_JOBS", payload={"olderThanDays": 30}, priority=JobPriority.LOW, description="Delete completed jobs past retention"),
  ScheduledTask(name="send-reminder-emails", pattern=SCHEDULES["DAILY_AT_NOON"], job_type="SEND_REMINDER_EMAILS", enabled=False, description="Remind clients about overdue deliverables"),
  ScheduledTask(name="update-client-metrics", pattern=SCHEDULES["EVERY_6_HOURS"], job_type="UPDATE_CLIENT_METRICS", enabled=False, priority=JobPriority.LOW, description="Refresh client metrics"),
  ScheduledTask(name="cleanup-expired-cache", pattern=SCHEDULES["EVERY_HOUR"], job_type="CLEANUP_CACHE", priority=JobPriority.LOW, description="Sweep expired response cache entries"),
  ScheduledTask(name="reset-budget-periods", pattern=SCHEDULES["EVERY_HOUR"], job_type="RESET_BUDGET_PERIODS", description="Reset budgets whose period rolled over"),
)

FireCallback = Callable[[ScheduledTask], Awaitable[None]]


class ScheduleDriver(Protocol):
  """Timing backend that calls `fire` whenever a registered task is due."""

  def validate(self, pattern: str) -> None:
    """Raise CronPatternError if the driver cannot evaluate a pattern."""

  async def register(self, task: ScheduledTask, fire: FireCallback) -> None:
    """Start firing a task."""

  async def unregister(self, name: str) -> bool:
    """Stop firing a task; returns False when no task had that name."""

  async def tasks(self) -> list[ScheduledTask]:
    """Return every task the driver currently fires."""

  async def start(self, fire: FireCallback) -> None:
    """Begin timing registered tasks."""

  async def stop(self) -> None:
    """Stop all timers."""


class IntervalScheduleDriver:
  """
  In-process driver that maps known cron patterns to fixed intervals.

  Intervals count from registration, not from wall-clock boundaries, so "daily at 2am" fires every 24h after
  startup. Patterns missing from SCHEDULE_INTERVALS are rejected.
  """

  def __init__(self, intervals: dict[str, float] | None = None) -> None:
    self._intervals = dict(SCHEDULE_INTERVALS if intervals is None else intervals)
    self._timers: dict[str, asyncio.Task[None]] = {}
    self._registered: dict[str, ScheduledTask] = {}

  def validate(self, pattern: str) -> None:
    if pattern not in self._intervals:
      raise CronPatternError(f"Pattern '{pattern}' has no fixed-interval equivalent; supported: {sorted(self._intervals)}")

  async def register(self, task: ScheduledTask, fire: FireCallback) -> None:
    self.validate(task.pattern)
    await self.unregister(task.name)
    interval = self._intervals[task.pattern]
    self._registered[task.name] = task
    self._timers[task.name] = asyncio.create_task(self._loop(task, interval, fire), name=f"launchpad-schedule-{task.name}")

  async def unregister(self, name: str) -> bool:
    self._registered.pop(name, None)
    timer = self._timers.pop(name, None)
    if timer is None:
      return False
    timer.cancel()
    with contextlib.suppress(asyncio.CancelledError):
      await timer
    return True

  async def tasks(self) -> list[ScheduledTask]:
    return list(self._registered.values())

  async def start(self, fire: FireCallback) -> None:
    # Timers start at registration.
    return None

  async def stop(self) -> None:
    for name in list(self._timers):
      await self.unregister(name)

  async def _loop(self, task: ScheduledTask, interval: float, fire: FireCallback) -> None:
    while True:
      await asyncio.sleep(interval)
      await fire(task)


class Scheduler:
  """
  Turn each tick of a registered task into an enqueue.

  The driver owns the task set. Under Redis that set is shared by every process and survives restarts.
  """

  def __init__(self, queue: JobQueue, driver: ScheduleDriver) -> None:
    self._queue = queue
    self._driver = driver
    self._started = False

  async def add_task(self, task: ScheduledTask) -> bool:
    """Register a task; returns False when the task is disabled and was skipped."""
    if not task.enabled:
      # Disabling also clears a registration made earlier or by another process.
      if await self._driver.unregister(task.name):
        logger.info("Unregistered disabled scheduled task: %s", task.name)
      else:
        logger.info("Skipping disabled scheduled task: %s", task.name)
      return False
    self._driver.validate(task.pattern)
    await self._driver.register(task, self._fire)
    logger.info("Scheduled task: %s (%s) -> %s", task.name, task.pattern, task.job_type)
    return True

  async def remove_task(self, name: str) -> bool:
    if not await self._driver.unregister(name):
      return False
    logger.info("Removed scheduled task: %s", name)
    return True

  async def list_tasks(self) -> list[ScheduledTask]:
    return sorted(await self._driver.tasks(), key=lambda task: task.name)

  async def register_defaults(self, tasks: Iterable[ScheduledTask] = DEFAULT_SCHEDULED_TASKS) -> None:
    """Register the built-in tasks and drop built-in registrations that are no longer configured."""
    configured = [replace(task, managed=True) for task in tasks]
    for task in configured:
      try:
        await self.add_task(task)
      except CronPatternError:
        logger.error("Could not register scheduled task %s", task.name, exc_info=True)

    names = {task.name for task in configured}
    for task in await self._driver.tasks():
      # Admin-added tasks are left alone.
      if task.managed and task.name not in names:
        await self._driver.unregister(task.name)
        logger.info("Pruned scheduled task no longer configured: %s", task.name)

  async def start(self) -> None:
    if self._started:
      return
    await self._driver.start(self._fire)
    self._started = True

  async def shutdown(self) -> None:
    await self._driver.stop()
    self._started = False

  async def _fire(self, task: ScheduledTask) -> None:
    try:
      job_id = await self._queue.enqueue(task.job_type, dict(task.payload), EnqueueOptions(priority=task.priority))
    except Exception:  # noqa: BLE001
      logger.error("Scheduled task %s failed to enqueue %s", task.name, task.job_type, exc_info=True)
      return
    logger.info("Scheduled task %s enqueued job %s", task.name, job_id)
