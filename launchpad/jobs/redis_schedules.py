"""Exact-cron recurring tasks stored in Redis."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import msgspec
from redis.asyncio import Redis

from launchpad.jobs.cron import CronExpression
from launchpad.jobs.models import utc_now
from launchpad.jobs.scheduler import FireCallback, ScheduledTask

logger = logging.getLogger(__name__)

SCHEDULES_KEY = "launchpad:schedules"
SCHEDULES_DUE_KEY = "launchpad:schedules:due"


class ScheduleEntry(msgspec.Struct, frozen=True):
  """Serialized recurring task definition."""

  name: str
  pattern: str
  job_type: str
  payload: dict[str, Any]
  priority: int
  description: str = ""
  managed: bool = False

  @classmethod
  def from_task(cls, task: ScheduledTask) -> ScheduleEntry:
    return cls(name=task.name, pattern=task.pattern, job_type=task.job_type, payload=dict(task.payload), priority=int(task.priority), description=task.description, managed=task.managed)

  def to_task(self) -> ScheduledTask:
    return ScheduledTask(name=self.name, pattern=self.pattern, job_type=self.job_type, payload=dict(self.payload), priority=self.priority, description=self.description, managed=self.managed)


_ENTRY_ENCODER = msgspec.json.Encoder()
_ENTRY_DECODER = msgspec.json.Decoder(ScheduleEntry)


def _to_ms(value: datetime) -> int:
  return int(value.timestamp() * 1000)


class RedisScheduleDriver:
  """
  Fire tasks on exact cron boundaries (UTC), coordinated through Redis.

  Definitions live in a hash and next fire times in a sorted set. Every process polls the set; the one whose
  ZREM succeeds owns that firing and writes the following fire time, so a tick enqueues once across the fleet.
  """

  def __init__(self, redis_client: Redis, *, poll_interval: float = 1.0, clock: Callable[[], datetime] = utc_now) -> None:
    self._redis = redis_client
    self._poll_interval = poll_interval
    self._clock = clock
    self._loop_task: asyncio.Task[None] | None = None
    self._fire: FireCallback | None = None

  def validate(self, pattern: str) -> None:
    CronExpression.parse(pattern)

  async def register(self, task: ScheduledTask, fire: FireCallback) -> None:
    expression = CronExpression.parse(task.pattern)
    entry = ScheduleEntry.from_task(task)
    previous = await self._load(task.name)
    await self._redis.hset(SCHEDULES_KEY, task.name, _ENTRY_ENCODER.encode(entry).decode())
    next_fire = _to_ms(expression.next_after(self._clock().astimezone(UTC)))
    # Keep an existing fire time across restarts unless the pattern changed.
    keep_existing = previous is not None and previous.pattern == task.pattern
    await self._redis.zadd(SCHEDULES_DUE_KEY, {task.name: next_fire}, nx=keep_existing)

  async def unregister(self, name: str) -> bool:
    removed = await self._redis.hdel(SCHEDULES_KEY, name)
    await self._redis.zrem(SCHEDULES_DUE_KEY, name)
    return bool(removed)

  async def tasks(self) -> list[ScheduledTask]:
    entries = await self._redis.hgetall(SCHEDULES_KEY)
    tasks: list[ScheduledTask] = []
    for name, raw in entries.items():
      try:
        tasks.append(_ENTRY_DECODER.decode(raw).to_task())
      except msgspec.DecodeError:
        logger.warning("Skipping undecodable schedule entry %s", name)
    return tasks

  async def start(self, fire: FireCallback) -> None:
    self._fire = fire
    if self._loop_task is None or self._loop_task.done():
      self._loop_task = asyncio.create_task(self._run(), name="launchpad-redis-schedules")

  async def stop(self) -> None:
    if self._loop_task is None:
      return
    self._loop_task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
      await self._loop_task
    self._loop_task = None

  async def fire_due(self) -> int:
    """Fire every task whose next fire time has passed; returns how many this process fired."""
    now = self._clock().astimezone(UTC)
    due = await self._redis.zrangebyscore(SCHEDULES_DUE_KEY, "-inf", _to_ms(now))
    fired = 0
    for raw_name in due:
      name = raw_name.decode() if isinstance(raw_name, bytes) else str(raw_name)
      if not await self._redis.zrem(SCHEDULES_DUE_KEY, name):
        continue
      entry = await self._load(name)
      if entry is None:
        continue
      next_fire = CronExpression.parse(entry.pattern).next_after(now)
      await self._redis.zadd(SCHEDULES_DUE_KEY, {name: _to_ms(next_fire)})
      if self._fire is not None:
        await self._fire(entry.to_task())
        fired += 1
    return fired

  async def _load(self, name: str) -> ScheduleEntry | None:
    raw = await self._redis.hget(SCHEDULES_KEY, name)
    if raw is None:
      return None
    try:
      return _ENTRY_DECODER.decode(raw)
    except msgspec.DecodeError:
      logger.warning("Dropping undecodable schedule entry %s", name)
      return None

  async def _run(self) -> None:
    while True:
      try:
        await self.fire_due()
      except Exception:  # noqa: BLE001
        logger.error("Scheduled task poll failed", exc_info=True)
      await asyncio.sleep(self._poll_interval)
