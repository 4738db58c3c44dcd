"""Boot-time selection between the Redis and in-process queue backends."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from redis.asyncio import Redis
from redis.exceptions import RedisError

from launchpad.config import Settings
from launchpad.jobs.executor import JobExecutor
from launchpad.jobs.local import InProcessJobQueue
from launchpad.jobs.models import LANES
from launchpad.jobs.queue import BaseJobQueue
from launchpad.jobs.redis_queue import LanePolicy, RedisJobQueue
from launchpad.jobs.redis_schedules import RedisScheduleDriver
from launchpad.jobs.scheduler import IntervalScheduleDriver, ScheduleDriver
from launchpad.storage.jobs_repo import JobsRepository

logger = logging.getLogger(__name__)


@dataclass
class QueueBackend:
  queue: BaseJobQueue
  schedule_driver: ScheduleDriver
  redis_client: Redis | None = None

  async def close(self) -> None:
    if self.redis_client is not None:
      await self.redis_client.aclose()


async def probe_redis(url: str) -> Redis | None:
  """Return a connected client when Redis answers PING, otherwise None."""
  client = Redis.from_url(url, decode_responses=True)
  try:
    await client.ping()
  except (RedisError, OSError) as exc:
    logger.warning("Redis unavailable at boot (%s); falling back to the in-process queue", exc)
    await client.aclose()
    return None
  return client


def lane_concurrency(settings: Settings) -> dict[str, int]:
  return {lane: settings.generation_lane_concurrency if lane == "generation" else settings.default_lane_concurrency for lane in LANES}


def lane_policies(settings: Settings) -> dict[str, LanePolicy]:
  policies: dict[str, LanePolicy] = {}
  for lane, concurrency in lane_concurrency(settings).items():
    rate = settings.generation_lane_rate_per_minute if lane == "generation" else settings.default_lane_rate_per_minute
    policies[lane] = LanePolicy(concurrency=concurrency, rate_per_minute=rate)
  return policies


async def build_queue_backend(settings: Settings, jobs_repo: JobsRepository, executor: JobExecutor) -> QueueBackend:
  """Pick the queue backend: Redis when configured and reachable, else in-process."""
  redis_client: Redis | None = None
  if settings.queue_backend != "memory" and settings.redis_url:
    redis_client = await probe_redis(settings.redis_url)
    if redis_client is None and settings.queue_backend == "redis":
      raise RuntimeError("LAUNCHPAD_QUEUE_BACKEND=redis but Redis did not answer PING")

  if redis_client is not None:
    logger.info("Job queue using Redis backend")
    queue: BaseJobQueue = RedisJobQueue(jobs_repo, executor, redis_client, lane_policies=lane_policies(settings), poll_interval=settings.queue_poll_interval_seconds, stall_timeout=settings.job_stall_timeout_seconds)
    return QueueBackend(queue=queue, schedule_driver=RedisScheduleDriver(redis_client, poll_interval=settings.queue_poll_interval_seconds), redis_client=redis_client)

  logger.warning("Job queue using in-process backend; jobs queued in memory are lost on restart unless Postgres is configured")
  queue = InProcessJobQueue(jobs_repo, executor, lane_concurrency=lane_concurrency(settings), poll_interval=settings.queue_poll_interval_seconds, stall_timeout=settings.job_stall_timeout_seconds)
  return QueueBackend(queue=queue, schedule_driver=IntervalScheduleDriver())
