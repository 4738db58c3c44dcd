"""Postgres-backed response cache repository."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import delete, func, select, update
from sqlalchemy.dialects.postgresql import insert

from launchpad.core.database import require_session_factory
from launchpad.schema.cache import ResponseCacheEntry
from launchpad.storage.cache_repo import CacheEntry, CacheRepository, CacheTotals


class PostgresCacheRepository(CacheRepository):
  """Persist cached responses to Postgres."""

  def __init__(self) -> None:
    self._session_factory = require_session_factory()

  async def get(self, cache_key: str) -> CacheEntry | None:
    async with self._session_factory() as session:
      row = await session.get(ResponseCacheEntry, cache_key)
      return self._model_to_entry(row) if row else None

  async def touch(self, cache_key: str, now: datetime) -> CacheEntry | None:
    async with self._session_factory() as session:
      stmt = (
        update(ResponseCacheEntry)
        .where(ResponseCacheEntry.cache_key == cache_key)
        .values(hit_count=ResponseCacheEntry.hit_count + 1, last_used_at=now)
        .returning(ResponseCacheEntry)
        .execution_options(synchronize_session=False)
      )
      row = (await session.execute(stmt)).scalars().one_or_none()
      await session.commit()
      return self._model_to_entry(row) if row else None

  async def upsert(self, entry: CacheEntry) -> None:
    async with self._session_factory() as session:
      stmt = insert(ResponseCacheEntry).values(
        cache_key=entry.cache_key,
        prompt_hash=entry.prompt_hash,
        response=entry.response,
        model=entry.model,
        hit_count=entry.hit_count,
        tokens_saved=entry.tokens_saved,
        expires_at=entry.expires_at,
        last_used_at=entry.last_used_at,
        created_at=entry.created_at,
      )
      stmt = stmt.on_conflict_do_update(
        index_elements=[ResponseCacheEntry.cache_key],
        set_={"response": stmt.excluded.response, "model": stmt.excluded.model, "prompt_hash": stmt.excluded.prompt_hash, "expires_at": stmt.excluded.expires_at, "last_used_at": stmt.excluded.last_used_at},
      )
      await session.execute(stmt)
      await session.commit()

  async def delete(self, cache_key: str) -> bool:
    async with self._session_factory() as session:
      result = await session.execute(delete(ResponseCacheEntry).where(ResponseCacheEntry.cache_key == cache_key))
      await session.commit()
      return bool(result.rowcount)

  async def add_tokens_saved(self, cache_key: str, tokens: int) -> None:
    async with self._session_factory() as session:
      await session.execute(update(ResponseCacheEntry).where(ResponseCacheEntry.cache_key == cache_key).values(tokens_saved=ResponseCacheEntry.tokens_saved + tokens))
      await session.commit()

  async def evict_lru(self, max_entries: int) -> int:
    async with self._session_factory() as session:
      keep = select(ResponseCacheEntry.cache_key).order_by(ResponseCacheEntry.last_used_at.desc()).limit(max_entries)
      result = await session.execute(delete(ResponseCacheEntry).where(ResponseCacheEntry.cache_key.not_in(keep)))
      await session.commit()
      return int(result.rowcount or 0)

  async def delete_expired(self, now: datetime) -> int:
    async with self._session_factory() as session:
      result = await session.execute(delete(ResponseCacheEntry).where(ResponseCacheEntry.expires_at <= now))
      await session.commit()
      return int(result.rowcount or 0)

  async def list_keys(self) -> list[str]:
    async with self._session_factory() as session:
      rows = await session.execute(select(ResponseCacheEntry.cache_key).order_by(ResponseCacheEntry.last_used_at.desc()))
      return [row[0] for row in rows.all()]

  async def totals(self) -> CacheTotals:
    async with self._session_factory() as session:
      stmt = select(func.count(), func.coalesce(func.sum(ResponseCacheEntry.hit_count), 0), func.coalesce(func.sum(ResponseCacheEntry.tokens_saved), 0))
      count, hits, saved = (await session.execute(stmt)).one()
      return CacheTotals(entries=int(count), hits=int(hits), tokens_saved=int(saved))

  def _model_to_entry(self, row: ResponseCacheEntry) -> CacheEntry:
    return CacheEntry(
      cache_key=row.cache_key,
      prompt_hash=row.prompt_hash,
      response=row.response,
      model=row.model,
      expires_at=row.expires_at,
      last_used_at=row.last_used_at,
      created_at=row.created_at,
      hit_count=row.hit_count,
      tokens_saved=row.tokens_saved,
    )
