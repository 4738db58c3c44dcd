"""Shared fixtures for the launchpad test suite."""

from __future__ import annotations

import dataclasses
from datetime import UTC, datetime

import pytest

from launchpad.config import Settings, get_settings
from launchpad.storage.journey_repo import ClientProfile, InMemoryJourneyRepository
from launchpad.storage.memory_jobs_repo import InMemoryJobsRepository


@pytest.fixture
def anyio_backend():
  return "asyncio"


class AsyncInMemoryRedis:
  """Subset of the redis.asyncio client used by the queue and schedule drivers."""

  def __init__(self) -> None:
    self._hashes: dict[str, dict[str, str]] = {}
    self._zsets: dict[str, dict[str, float]] = {}
    self.closed = False

  async def ping(self) -> bool:
    return True

  async def aclose(self) -> None:
    self.closed = True

  async def hset(self, name: str, key: str, value: str) -> int:
    bucket = self._hashes.setdefault(name, {})
    created = key not in bucket
    bucket[key] = value
    return int(created)

  async def hget(self, name: str, key: str) -> str | None:
    return self._hashes.get(name, {}).get(key)

  async def hdel(self, name: str, *keys: str) -> int:
    bucket = self._hashes.get(name, {})
    return sum(1 for key in keys if bucket.pop(key, None) is not None)

  async def hgetall(self, name: str) -> dict[str, str]:
    return dict(self._hashes.get(name, {}))

  async def zadd(self, name: str, mapping: dict[str, float], nx: bool = False) -> int:
    zset = self._zsets.setdefault(name, {})
    added = 0
    for member, score in mapping.items():
      if member in zset and nx:
        continue
      if member not in zset:
        added += 1
      zset[member] = float(score)
    return added

  async def zrem(self, name: str, *members: str) -> int:
    zset = self._zsets.get(name, {})
    return sum(1 for member in members if zset.pop(member, None) is not None)

  async def zscore(self, name: str, member: str) -> float | None:
    return self._zsets.get(name, {}).get(member)

  async def zcard(self, name: str) -> int:
    return len(self._zsets.get(name, {}))

  async def zrangebyscore(self, name: str, min: float | str, max: float | str, start: int | None = None, num: int | None = None) -> list[str]:
    low, high = float(min), float(max)
    members = [member for member, score in sorted(self._zsets.get(name, {}).items(), key=lambda item: (item[1], item[0])) if low <= score <= high]
    if start is not None and num is not None:
      members = members[start : start + num]
    return members

  async def zremrangebyscore(self, name: str, min: float | str, max: float | str) -> int:
    low, high = float(min), float(max)
    zset = self._zsets.get(name, {})
    doomed = [member for member, score in zset.items() if low <= score <= high]
    for member in doomed:
      del zset[member]
    return len(doomed)

  async def zpopmin(self, name: str, count: int = 1) -> list[tuple[str, float]]:
    zset = self._zsets.get(name, {})
    popped = sorted(zset.items(), key=lambda item: (item[1], item[0]))[:count]
    for member, _ in popped:
      del zset[member]
    return popped

  def members(self, name: str) -> list[str]:
    return [member for member, _ in sorted(self._zsets.get(name, {}).items(), key=lambda item: item[1])]


@pytest.fixture
def fake_redis() -> AsyncInMemoryRedis:
  return AsyncInMemoryRedis()


@pytest.fixture
def jobs_repo() -> InMemoryJobsRepository:
  return InMemoryJobsRepository()


@pytest.fixture
def client_profile() -> ClientProfile:
  return ClientProfile(
    client_id="client-1",
    full_name="Ada Lovelace",
    email="ada@example.com",
    niche="Skincare",
    vision="Clean skincare for busy parents",
    target_audience="Parents",
    brand_personality="Warm",
    onboarded_at=datetime(2026, 1, 5, tzinfo=UTC),
  )


@pytest.fixture
def journey(client_profile: ClientProfile) -> InMemoryJourneyRepository:
  repo = InMemoryJourneyRepository()
  repo.add_client(client_profile)
  return repo


@pytest.fixture
def settings() -> Settings:
  """Process-local settings: no Postgres, no Redis, no scheduler, fast retries."""
  return dataclasses.replace(
    get_settings(),
    pg_dsn=None,
    redis_url=None,
    queue_backend="memory",
    scheduler_enabled=False,
    generation_api_key=None,
    job_backoff_seconds=(0.01, 0.01, 0.01),
    queue_poll_interval_seconds=0.01,
    email_notifications_enabled=False,
    email_workflows_enabled=False,
    admin_secret="test-admin-secret",
  )
