"""Unit tests for the Redis queue backend against an in-memory Redis double."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any

import anyio
import pytest

from launchpad.jobs.backoff import RetryPolicy
from launchpad.jobs.dispatch import JobHandlerRegistry
from launchpad.jobs.executor import JobExecutor
from launchpad.jobs.models import EnqueueOptions, JobPriority, JobRecord
from launchpad.jobs.redis_queue import ENVELOPES_KEY, LanePolicy, RedisJobQueue, delayed_key, rate_key, waiting_key
from launchpad.storage.memory_jobs_repo import InMemoryJobsRepository


class MutableClock:
  def __init__(self, now: datetime) -> None:
    self.now = now

  def __call__(self) -> datetime:
    return self.now


class RecordingHandler:
  job_types = ("CLEANUP_CACHE", "GENERATE_DELIVERABLE")

  def __init__(self, failures: int = 0) -> None:
    self.failures = failures
    self.seen: list[str] = []

  async def process(self, job: JobRecord) -> dict[str, Any] | None:
    self.seen.append(job.job_id)
    if len(self.seen) <= self.failures:
      raise ConnectionError("redis blip")
    return {"ok": True}


@pytest.fixture
def clock() -> MutableClock:
  return MutableClock(datetime(2026, 3, 10, 12, 0, tzinfo=UTC))


def _queue(fake_redis, jobs_repo: InMemoryJobsRepository, clock, handler: RecordingHandler | None = None, **kwargs: Any) -> RedisJobQueue:
  executor = JobExecutor(jobs_repo, JobHandlerRegistry([handler or RecordingHandler()]), retry_policy=RetryPolicy(), clock=clock)
  return RedisJobQueue(jobs_repo, executor, fake_redis, clock=clock, **kwargs)


@pytest.mark.anyio
async def test_waiting_set_orders_by_priority_then_enqueue_time(fake_redis, jobs_repo: InMemoryJobsRepository, clock: MutableClock) -> None:
  queue = _queue(fake_redis, jobs_repo, clock)
  normal = await queue.enqueue("CLEANUP_CACHE", {}, EnqueueOptions(priority=JobPriority.NORMAL))
  clock.now += timedelta(seconds=1)
  later_normal = await queue.enqueue("CLEANUP_CACHE", {}, EnqueueOptions(priority=JobPriority.NORMAL))
  clock.now += timedelta(seconds=1)
  critical = await queue.enqueue("CLEANUP_CACHE", {}, EnqueueOptions(priority=JobPriority.CRITICAL))

  assert fake_redis.members(waiting_key("scheduled")) == [critical, normal, later_normal]
  assert [await queue._next_job("scheduled") for _ in range(3)] == [critical, normal, later_normal]


@pytest.mark.anyio
async def test_delayed_job_is_promoted_when_due(fake_redis, jobs_repo: InMemoryJobsRepository, clock: MutableClock) -> None:
  queue = _queue(fake_redis, jobs_repo, clock)
  job_id = await queue.enqueue("GENERATE_DELIVERABLE", {"clientId": "c", "month": 2}, EnqueueOptions(delay_seconds=300))

  assert fake_redis.members(delayed_key("generation")) == [job_id]
  assert await queue._next_job("generation") is None

  clock.now += timedelta(seconds=301)
  assert await queue._next_job("generation") == job_id
  assert fake_redis.members(delayed_key("generation")) == []


@pytest.mark.anyio
async def test_rate_limit_caps_starts_per_sliding_minute(fake_redis, jobs_repo: InMemoryJobsRepository, clock: MutableClock) -> None:
  queue = _queue(fake_redis, jobs_repo, clock, lane_policies={"scheduled": LanePolicy(concurrency=1, rate_per_minute=2)})
  job_ids = [await queue.enqueue("CLEANUP_CACHE", {}) for _ in range(3)]

  assert await queue._next_job("scheduled") == job_ids[0]
  clock.now += timedelta(seconds=10)
  assert await queue._next_job("scheduled") == job_ids[1]
  clock.now += timedelta(seconds=10)
  assert await queue._next_job("scheduled") is None
  assert await fake_redis.zcard(rate_key("scheduled")) == 2

  # The first reservation leaves the window 60s after it was made.
  clock.now += timedelta(seconds=41)
  assert await queue._next_job("scheduled") == job_ids[2]


@pytest.mark.anyio
async def test_empty_lane_releases_rate_reservation(fake_redis, jobs_repo: InMemoryJobsRepository, clock: MutableClock) -> None:
  queue = _queue(fake_redis, jobs_repo, clock)
  assert await queue._next_job("rendering") is None
  assert await fake_redis.zcard(rate_key("rendering")) == 0


@pytest.mark.anyio
async def test_cancel_removes_job_from_redis(fake_redis, jobs_repo: InMemoryJobsRepository, clock: MutableClock) -> None:
  queue = _queue(fake_redis, jobs_repo, clock)
  waiting = await queue.enqueue("CLEANUP_CACHE", {})
  delayed = await queue.enqueue("CLEANUP_CACHE", {}, EnqueueOptions(delay_seconds=60))

  await queue.cancel(waiting)
  await queue.cancel(delayed)

  assert fake_redis.members(waiting_key("scheduled")) == []
  assert fake_redis.members(delayed_key("scheduled")) == []
  assert await fake_redis.hget(ENVELOPES_KEY, waiting) is None
  assert (await queue.get_job(delayed)).status == "CANCELLED"


@pytest.mark.anyio
async def test_failed_attempt_is_rescheduled_in_delayed_set(fake_redis, jobs_repo: InMemoryJobsRepository, clock: MutableClock) -> None:
  handler = RecordingHandler(failures=1)
  queue = _queue(fake_redis, jobs_repo, clock, handler=handler)
  job_id = await queue.enqueue("CLEANUP_CACHE", {})

  await queue._run_one(await queue._next_job("scheduled"))

  retry_ms = int((clock.now + timedelta(seconds=2)).timestamp() * 1000)
  assert await fake_redis.zscore(delayed_key("scheduled"), job_id) == retry_ms
  record = await queue.get_job(job_id)
  assert record.status == "QUEUED" and record.attempts == 1

  clock.now += timedelta(seconds=2)
  await queue._run_one(await queue._next_job("scheduled"))
  record = await queue.get_job(job_id)
  assert record.status == "COMPLETED" and record.attempts == 2
  assert await fake_redis.hget(ENVELOPES_KEY, job_id) is None


@pytest.mark.anyio
async def test_duplicate_delivery_runs_job_once(fake_redis, jobs_repo: InMemoryJobsRepository, clock: MutableClock) -> None:
  handler = RecordingHandler()
  queue = _queue(fake_redis, jobs_repo, clock, handler=handler)
  job_id = await queue.enqueue("CLEANUP_CACHE", {})

  await queue._run_one(job_id)
  await queue._run_one(job_id)

  assert handler.seen == [job_id]


@pytest.mark.anyio
async def test_reconcile_restores_jobs_missing_from_redis(fake_redis, jobs_repo: InMemoryJobsRepository, clock: MutableClock) -> None:
  queue = _queue(fake_redis, jobs_repo, clock)
  job_id = await queue.enqueue("CLEANUP_CACHE", {})
  await fake_redis.zrem(waiting_key("scheduled"), job_id)
  await fake_redis.hdel(ENVELOPES_KEY, job_id)

  assert await queue.reconcile() == 1
  assert fake_redis.members(waiting_key("scheduled")) == [job_id]
  assert await queue.reconcile() == 0


@pytest.mark.anyio
async def test_workers_process_jobs_end_to_end(fake_redis, jobs_repo: InMemoryJobsRepository) -> None:
  handler = RecordingHandler()
  executor = JobExecutor(jobs_repo, JobHandlerRegistry([handler]))
  queue = RedisJobQueue(jobs_repo, executor, fake_redis, poll_interval=0.01)
  await queue.start()
  try:
    job_id = await queue.enqueue("CLEANUP_CACHE", {})
    with anyio.fail_after(5):
      while (await queue.get_job(job_id)).status != "COMPLETED":
        await anyio.sleep(0.01)
  finally:
    await queue.shutdown()

  assert handler.seen == [job_id]


@pytest.mark.anyio
async def test_job_claimed_by_a_crashed_worker_is_recovered(fake_redis, jobs_repo: InMemoryJobsRepository, clock: MutableClock) -> None:
  handler = RecordingHandler()
  crashed = _queue(fake_redis, jobs_repo, clock, handler=handler, stall_timeout=600)
  job_id = await crashed.enqueue("GENERATE_DELIVERABLE", {"clientId": "client-1", "month": 2}, EnqueueOptions(idempotency_key="deliverable:client-1:2"))
  assert await crashed._next_job("generation") == job_id
  await crashed._executor.claim(job_id)

  survivor = _queue(fake_redis, jobs_repo, clock, handler=handler, stall_timeout=600)
  clock.now += timedelta(minutes=5)
  assert await survivor.recover_stalled() == 0

  clock.now += timedelta(hours=1)
  assert await survivor.recover_stalled() == 1
  record = await survivor.get_job(job_id)
  assert record.status == "QUEUED" and record.attempts == 1
  assert await fake_redis.zscore(delayed_key("generation"), job_id) == int((clock.now + timedelta(seconds=2)).timestamp() * 1000)

  clock.now += timedelta(seconds=2)
  await survivor._run_one(await survivor._next_job("generation"))
  record = await survivor.get_job(job_id)
  assert record.status == "COMPLETED" and record.attempts == 2
  assert handler.seen == [job_id]


@pytest.mark.anyio
async def test_stall_sweep_skips_jobs_running_in_this_process(fake_redis, jobs_repo: InMemoryJobsRepository, clock: MutableClock) -> None:
  queue = _queue(fake_redis, jobs_repo, clock, stall_timeout=60)
  job_id = await queue.enqueue("CLEANUP_CACHE", {})
  await queue._executor.claim(await queue._next_job("scheduled"))
  queue._running.add(job_id)

  clock.now += timedelta(hours=1)

  assert await queue.recover_stalled() == 0
  assert (await queue.get_job(job_id)).status == "PROCESSING"
