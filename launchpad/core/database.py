"""Async SQLAlchemy engine shared by the Job Store, response cache and budget repositories."""

from __future__ import annotations

from launchpad.config import get_database_settings
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
  pass


_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def database_url() -> str | None:
  """Return the asyncpg URL for the configured DSN, or None when the pipeline runs without Postgres."""
  dsn = get_database_settings().pg_dsn
  if dsn and dsn.startswith("postgresql://"):
    dsn = dsn.replace("postgresql://", "postgresql+asyncpg://", 1)
  return dsn


def get_session_factory() -> async_sessionmaker[AsyncSession] | None:
  global _engine, _session_factory
  if _session_factory is not None:
    return _session_factory

  url = database_url()
  if not url:
    return None
  settings = get_database_settings()
  # Workers hold the pool for the life of the process; stale connections are replaced on checkout.
  _engine = create_async_engine(url, echo=settings.debug, pool_pre_ping=True, connect_args={"timeout": settings.pg_connect_timeout})
  _session_factory = async_sessionmaker(bind=_engine, expire_on_commit=False, class_=AsyncSession)
  return _session_factory


def require_session_factory() -> async_sessionmaker[AsyncSession]:
  """Session factory for the Postgres repositories; fails fast when no DSN is configured."""
  session_factory = get_session_factory()
  if session_factory is None:
    raise RuntimeError("Postgres repositories need LAUNCHPAD_PG_DSN (or DATABASE_URL) to be set.")
  return session_factory


async def dispose_engine() -> None:
  """Close pooled connections during shutdown."""
  global _engine, _session_factory
  if _engine is not None:
    await _engine.dispose()
  _engine = None
  _session_factory = None
