"""Storage interfaces for the response cache."""

from __future__ import annotations

import asyncio
import dataclasses
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol


@dataclass(frozen=True)
class CacheEntry:
  """One cached generation response; replaced wholesale, never mutated in place."""

  cache_key: str
  prompt_hash: str
  response: str
  model: str
  expires_at: datetime
  last_used_at: datetime
  created_at: datetime
  hit_count: int = 0
  tokens_saved: int = 0


@dataclass(frozen=True)
class CacheTotals:
  entries: int
  hits: int
  tokens_saved: int


class CacheRepository(Protocol):
  """Repository contract for cached responses."""

  async def get(self, cache_key: str) -> CacheEntry | None:
    """Fetch an entry without touching its usage counters."""

  async def touch(self, cache_key: str, now: datetime) -> CacheEntry | None:
    """Increment hit_count and refresh last_used_at; returns None if the entry is gone."""

  async def upsert(self, entry: CacheEntry) -> None:
    """Insert or replace an entry, keeping created_at of an existing row."""

  async def delete(self, cache_key: str) -> bool:
    """Delete one entry."""

  async def add_tokens_saved(self, cache_key: str, tokens: int) -> None:
    """Add to an entry's tokens_saved counter."""

  async def evict_lru(self, max_entries: int) -> int:
    """Delete least-recently-used entries beyond `max_entries`; returns the number removed."""

  async def delete_expired(self, now: datetime) -> int:
    """Delete all entries whose expiry has passed."""

  async def list_keys(self) -> list[str]:
    """Return all cache keys, most recently used first."""

  async def totals(self) -> CacheTotals:
    """Return entry count, total hits and total tokens saved."""


class InMemoryCacheRepository(CacheRepository):
  """LRU-ordered dict of immutable entries guarded by one lock."""

  def __init__(self) -> None:
    self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
    self._lock = asyncio.Lock()

  async def get(self, cache_key: str) -> CacheEntry | None:
    async with self._lock:
      return self._entries.get(cache_key)

  async def touch(self, cache_key: str, now: datetime) -> CacheEntry | None:
    async with self._lock:
      entry = self._entries.get(cache_key)
      if entry is None:
        return None
      touched = dataclasses.replace(entry, hit_count=entry.hit_count + 1, last_used_at=now)
      self._entries[cache_key] = touched
      self._entries.move_to_end(cache_key)
      return touched

  async def upsert(self, entry: CacheEntry) -> None:
    async with self._lock:
      existing = self._entries.get(entry.cache_key)
      if existing is not None:
        entry = dataclasses.replace(entry, created_at=existing.created_at, hit_count=existing.hit_count, tokens_saved=existing.tokens_saved)
      self._entries[entry.cache_key] = entry
      self._entries.move_to_end(entry.cache_key)

  async def delete(self, cache_key: str) -> bool:
    async with self._lock:
      return self._entries.pop(cache_key, None) is not None

  async def add_tokens_saved(self, cache_key: str, tokens: int) -> None:
    async with self._lock:
      entry = self._entries.get(cache_key)
      if entry is not None:
        self._entries[cache_key] = dataclasses.replace(entry, tokens_saved=entry.tokens_saved + tokens)

  async def evict_lru(self, max_entries: int) -> int:
    async with self._lock:
      removed = 0
      while len(self._entries) > max_entries:
        self._entries.popitem(last=False)
        removed += 1
      return removed

  async def delete_expired(self, now: datetime) -> int:
    async with self._lock:
      expired = [key for key, entry in self._entries.items() if entry.expires_at <= now]
      for key in expired:
        del self._entries[key]
      return len(expired)

  async def list_keys(self) -> list[str]:
    async with self._lock:
      return list(reversed(self._entries))

  async def totals(self) -> CacheTotals:
    async with self._lock:
      entries = list(self._entries.values())
    return CacheTotals(entries=len(entries), hits=sum(entry.hit_count for entry in entries), tokens_saved=sum(entry.tokens_saved for entry in entries))
