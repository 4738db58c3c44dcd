"""Content-addressed cache of generation responses."""

from __future__ import annotations

import hashlib
import json
import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from launchpad.jobs.models import utc_now
from launchpad.storage.cache_repo import CacheEntry, CacheRepository

logger = logging.getLogger(__name__)

DEFAULT_TTL_HOURS = 168
DEFAULT_MAX_ENTRIES = 1000
DEFAULT_TEMPERATURE = 1.0
DEFAULT_MAX_TOKENS = 4096

_WHITESPACE = re.compile(r"\s+")
_STOP_WORDS = re.compile(r"\b(the|a|an)\b")


def normalize_prompt(text: str, *, strip_stop_words: bool = True) -> str:
  """Case-fold and collapse whitespace; optionally drop the articles 'the', 'a' and 'an'."""
  normalized = _WHITESPACE.sub(" ", text.lower())
  if strip_stop_words:
    normalized = _WHITESPACE.sub(" ", _STOP_WORDS.sub("", normalized))
  return normalized.strip()


def build_cache_key(prompt: str, model: str, *, temperature: float | None = None, max_tokens: int | None = None, system_prompt: str | None = None, strip_stop_words: bool = True) -> str:
  """Return the SHA-256 hex digest identifying a generation request."""
  material = {
    "prompt": normalize_prompt(prompt, strip_stop_words=strip_stop_words),
    "model": model,
    "temperature": float(DEFAULT_TEMPERATURE if temperature is None else temperature),
    "maxTokens": int(DEFAULT_MAX_TOKENS if max_tokens is None else max_tokens),
    "system": normalize_prompt(system_prompt, strip_stop_words=strip_stop_words) if system_prompt else "",
  }
  encoded = json.dumps(material, separators=(",", ":"), ensure_ascii=False)
  return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


def hash_prompt(prompt: str) -> str:
  return hashlib.sha256(prompt.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class CachedResponse:
  cache_key: str
  response: str
  model: str
  hit_count: int


@dataclass(frozen=True)
class CacheStats:
  total_entries: int
  total_hits: int
  total_tokens_saved: int
  cache_hit_rate: float


class ResponseCache:
  """
  Lookup/store front for a CacheRepository.

  Storage failures never reach callers: lookups degrade to a miss and writes are dropped, both logged.
  """

  def __init__(self, repo: CacheRepository, *, max_entries: int = DEFAULT_MAX_ENTRIES, ttl_hours: int = DEFAULT_TTL_HOURS, strip_stop_words: bool = True, clock: Callable[[], datetime] = utc_now) -> None:
    self._repo = repo
    self._max_entries = max_entries
    self._ttl = timedelta(hours=ttl_hours)
    self._strip_stop_words = strip_stop_words
    self._clock = clock

  def cache_key(self, prompt: str, model: str, *, temperature: float | None = None, max_tokens: int | None = None, system_prompt: str | None = None) -> str:
    return build_cache_key(prompt, model, temperature=temperature, max_tokens=max_tokens, system_prompt=system_prompt, strip_stop_words=self._strip_stop_words)

  async def lookup(self, cache_key: str) -> CachedResponse | None:
    try:
      entry = await self._repo.get(cache_key)
      if entry is None:
        return None
      now = self._clock()
      if entry.expires_at <= now:
        # Expired entries are deleted on sight and reported as a miss.
        await self._repo.delete(cache_key)
        logger.debug("Cache entry %s expired", cache_key[:12])
        return None
      touched = await self._repo.touch(cache_key, now)
    except Exception as exc:  # noqa: BLE001
      logger.warning("Cache lookup failed; treating as miss: %s", exc)
      return None

    current = touched or entry
    logger.debug("Cache hit %s (hits=%d)", cache_key[:12], current.hit_count)
    return CachedResponse(cache_key=cache_key, response=current.response, model=current.model, hit_count=current.hit_count)

  async def store(self, cache_key: str, response: str, *, model: str, prompt: str = "", ttl_hours: float | None = None) -> None:
    now = self._clock()
    ttl = self._ttl if ttl_hours is None else timedelta(hours=ttl_hours)
    entry = CacheEntry(cache_key=cache_key, prompt_hash=hash_prompt(prompt), response=response, model=model, expires_at=now + ttl, last_used_at=now, created_at=now)
    try:
      await self._repo.upsert(entry)
    except Exception as exc:  # noqa: BLE001
      logger.warning("Cache store failed for %s: %s", cache_key[:12], exc)
      return
    await self.evict()

  async def record_saved_tokens(self, cache_key: str, tokens: int) -> None:
    if tokens <= 0:
      return
    try:
      await self._repo.add_tokens_saved(cache_key, tokens)
    except Exception as exc:  # noqa: BLE001
      logger.warning("Failed to record saved tokens for %s: %s", cache_key[:12], exc)

  async def evict(self) -> int:
    """Trim the cache to its capacity, dropping least-recently-used entries first."""
    try:
      removed = await self._repo.evict_lru(self._max_entries)
    except Exception as exc:  # noqa: BLE001
      logger.warning("Cache eviction failed: %s", exc)
      return 0
    if removed:
      logger.info("Evicted %d LRU cache entries", removed)
    return removed

  async def sweep_expired(self) -> int:
    """Remove every expired entry regardless of capacity."""
    try:
      removed = await self._repo.delete_expired(self._clock())
    except Exception as exc:  # noqa: BLE001
      logger.warning("Expired cache sweep failed: %s", exc)
      return 0
    logger.info("Removed %d expired cache entries", removed)
    return removed

  async def keys(self) -> list[str]:
    return await self._repo.list_keys()

  async def stats(self, cache_hit_rate: float = 0.0) -> CacheStats:
    totals = await self._repo.totals()
    return CacheStats(total_entries=totals.entries, total_hits=totals.hits, total_tokens_saved=totals.tokens_saved, cache_hit_rate=cache_hit_rate)
