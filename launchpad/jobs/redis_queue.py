"""Redis-backed distributed job queue backend."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import uuid
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime

import msgspec
from redis.asyncio import Redis
from redis.exceptions import RedisError

from launchpad.jobs.executor import JobExecutor
from launchpad.jobs.models import LANES, JobRecord, utc_now
from launchpad.jobs.queue import DEFAULT_STALL_TIMEOUT_SECONDS, BaseJobQueue
from launchpad.storage.jobs_repo import JobsRepository

logger = logging.getLogger(__name__)

KEY_PREFIX = "launchpad:queue"
ENVELOPES_KEY = f"{KEY_PREFIX}:envelopes"
RATE_WINDOW_MS = 60_000
# Priority dominates the waiting-set score; enqueue time breaks ties.
PRIORITY_SCORE_WEIGHT = 10_000_000_000_000


class JobEnvelope(msgspec.Struct, frozen=True):
  """Routing data stored in Redis next to the job id."""

  job_id: str
  job_type: str
  lane: str
  priority: int
  enqueued_ms: int


_ENVELOPE_ENCODER = msgspec.json.Encoder()
_ENVELOPE_DECODER = msgspec.json.Decoder(JobEnvelope)


@dataclass(frozen=True)
class LanePolicy:
  """Concurrency and sliding-window rate limit for one lane."""

  concurrency: int
  rate_per_minute: int


DEFAULT_LANE_POLICIES: dict[str, LanePolicy] = {
  "generation": LanePolicy(concurrency=1, rate_per_minute=10),
  "rendering": LanePolicy(concurrency=3, rate_per_minute=100),
  "file_ops": LanePolicy(concurrency=3, rate_per_minute=100),
  "database_ops": LanePolicy(concurrency=3, rate_per_minute=100),
  "scheduled": LanePolicy(concurrency=3, rate_per_minute=100),
}


def waiting_key(lane: str) -> str:
  return f"{KEY_PREFIX}:{lane}:waiting"


def delayed_key(lane: str) -> str:
  return f"{KEY_PREFIX}:{lane}:delayed"


def rate_key(lane: str) -> str:
  return f"{KEY_PREFIX}:{lane}:rate"


def _to_ms(value: datetime) -> int:
  return int(value.timestamp() * 1000)


class RedisJobQueue(BaseJobQueue):
  """
  Distribute jobs across processes through Redis sorted sets.

  Per lane there is a waiting set ordered by (priority, enqueue time), a delayed set scored by due time and a
  rate set holding one member per job started in the last minute. Any number of processes can run workers; the
  Job Store compare-and-set claim guarantees a job runs once even if Redis hands it out twice.
  """

  backend_name = "redis"

  def __init__(self, jobs_repo: JobsRepository, executor: JobExecutor, redis_client: Redis, *, lane_policies: Mapping[str, LanePolicy] | None = None, poll_interval: float = 1.0, stall_timeout: float = DEFAULT_STALL_TIMEOUT_SECONDS, clock: Callable[[], datetime] = utc_now) -> None:
    super().__init__(jobs_repo, executor, stall_timeout=stall_timeout, clock=clock)
    self._redis = redis_client
    self._policies = {**DEFAULT_LANE_POLICIES, **(lane_policies or {})}
    self._poll_interval = poll_interval
    self._stop = asyncio.Event()
    self._workers: list[asyncio.Task[None]] = []

  async def start(self) -> None:
    if self._workers:
      return
    self._stop.clear()
    await self.recover_stalled()
    await self.reconcile()
    for lane in LANES:
      for index in range(self._policies[lane].concurrency):
        self._workers.append(asyncio.create_task(self._worker(lane), name=f"launchpad-redis-{lane}-{index}"))
    logger.info("Redis job queue started with %d worker(s)", len(self._workers))
    self._workers.append(asyncio.create_task(self._stall_sweeper(), name="launchpad-redis-stall-sweeper"))

  async def shutdown(self) -> None:
    self._stop.set()
    if self._workers:
      await asyncio.gather(*self._workers, return_exceptions=True)
    self._workers = []
    logger.info("Redis job queue stopped")

  async def reconcile(self, limit: int = 500) -> int:
    """Push QUEUED Job Store records that Redis does not know about (e.g. enqueued while Redis was down)."""
    restored = 0
    for lane in LANES:
      for record in await self._jobs_repo.find_queued(limit=limit, lane=lane):
        if await self._redis.hget(ENVELOPES_KEY, record.job_id) is None:
          await self._schedule(record)
          restored += 1
    if restored:
      logger.info("Re-scheduled %d queued job(s) missing from Redis", restored)
    return restored

  async def _schedule(self, record: JobRecord) -> None:
    now_ms = _to_ms(self._clock())
    envelope = JobEnvelope(job_id=record.job_id, job_type=record.job_type, lane=record.lane, priority=int(record.priority), enqueued_ms=now_ms)
    try:
      await self._redis.hset(ENVELOPES_KEY, record.job_id, _ENVELOPE_ENCODER.encode(envelope).decode())
      if record.run_at is not None and _to_ms(record.run_at) > now_ms:
        await self._redis.zadd(delayed_key(record.lane), {record.job_id: _to_ms(record.run_at)})
      else:
        await self._redis.zadd(waiting_key(record.lane), {record.job_id: self._waiting_score(envelope)})
    except RedisError as exc:
      # The job stays QUEUED in the Job Store; reconcile() picks it up on the next start.
      logger.warning("Failed to schedule job %s in Redis: %s", record.job_id, exc)

  async def _unschedule(self, record: JobRecord) -> None:
    try:
      await self._redis.zrem(waiting_key(record.lane), record.job_id)
      await self._redis.zrem(delayed_key(record.lane), record.job_id)
      await self._redis.hdel(ENVELOPES_KEY, record.job_id)
    except RedisError as exc:
      logger.warning("Failed to remove job %s from Redis: %s", record.job_id, exc)

  def _waiting_score(self, envelope: JobEnvelope) -> float:
    return float(envelope.priority * PRIORITY_SCORE_WEIGHT + envelope.enqueued_ms)

  async def _worker(self, lane: str) -> None:
    while not self._stop.is_set():
      try:
        job_id = await self._next_job(lane)
        if job_id is None:
          await self._idle()
          continue
        await self._run_one(job_id)
      except Exception:  # noqa: BLE001
        logger.error("Redis worker for lane %s failed; backing off", lane, exc_info=True)
        await self._idle()

  async def _stall_sweeper(self) -> None:
    # Workers in other processes can die at any point.
    interval = max(self._stall_timeout / 2, self._poll_interval)
    while not self._stop.is_set():
      with contextlib.suppress(TimeoutError):
        await asyncio.wait_for(self._stop.wait(), timeout=interval)
      if self._stop.is_set():
        return
      try:
        await self.recover_stalled()
      except Exception:  # noqa: BLE001
        logger.error("Stalled job sweep failed", exc_info=True)

  async def _idle(self) -> None:
    with contextlib.suppress(TimeoutError):
      await asyncio.wait_for(self._stop.wait(), timeout=self._poll_interval)

  async def _next_job(self, lane: str) -> str | None:
    await self.promote_due(lane)
    token = await self._reserve_rate_slot(lane)
    if token is None:
      return None
    popped = await self._redis.zpopmin(waiting_key(lane), 1)
    if not popped:
      await self._redis.zrem(rate_key(lane), token)
      return None
    member, _score = popped[0]
    return member.decode() if isinstance(member, bytes) else str(member)

  async def promote_due(self, lane: str, batch: int = 100) -> int:
    """Move delayed jobs whose due time has passed into the waiting set."""
    now_ms = _to_ms(self._clock())
    due = await self._redis.zrangebyscore(delayed_key(lane), "-inf", now_ms, start=0, num=batch)
    promoted = 0
    for raw_id in due:
      job_id = raw_id.decode() if isinstance(raw_id, bytes) else str(raw_id)
      # Whoever removes the member owns the promotion.
      if not await self._redis.zrem(delayed_key(lane), job_id):
        continue
      envelope = await self._load_envelope(job_id)
      if envelope is None:
        continue
      await self._redis.zadd(waiting_key(lane), {job_id: self._waiting_score(envelope)})
      promoted += 1
    return promoted

  async def _reserve_rate_slot(self, lane: str) -> str | None:
    """Reserve one start within the lane's sliding one-minute window."""
    now_ms = _to_ms(self._clock())
    key = rate_key(lane)
    await self._redis.zremrangebyscore(key, 0, now_ms - RATE_WINDOW_MS)
    token = f"{now_ms}:{uuid.uuid4().hex}"
    await self._redis.zadd(key, {token: now_ms})
    if await self._redis.zcard(key) > self._policies[lane].rate_per_minute:
      await self._redis.zrem(key, token)
      logger.debug("Lane %s is at its rate limit", lane)
      return None
    return token

  async def _load_envelope(self, job_id: str) -> JobEnvelope | None:
    raw = await self._redis.hget(ENVELOPES_KEY, job_id)
    if raw is None:
      return None
    try:
      return _ENVELOPE_DECODER.decode(raw)
    except msgspec.DecodeError:
      logger.warning("Dropping undecodable envelope for job %s", job_id)
      await self._redis.hdel(ENVELOPES_KEY, job_id)
      return None

  async def _run_one(self, job_id: str) -> None:
    claimed = await self._executor.claim(job_id)
    if claimed is None:
      # Cancelled, already claimed elsewhere, or deleted.
      record = await self._jobs_repo.get_job(job_id)
      if record is None or record.is_terminal:
        await self._redis.hdel(ENVELOPES_KEY, job_id)
      return

    self._running.add(job_id)
    try:
      outcome = await self._executor.execute(claimed)
    finally:
      self._running.discard(job_id)
    if outcome.retry_at is not None:
      await self._redis.zadd(delayed_key(claimed.lane), {job_id: _to_ms(outcome.retry_at)})
      return
    await self._redis.hdel(ENVELOPES_KEY, job_id)
