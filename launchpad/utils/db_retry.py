"""Retry transient database failures with exponential backoff."""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from sqlalchemy.exc import DBAPIError, OperationalError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Postgres SQLSTATEs worth another attempt.
_RETRYABLE_SQLSTATES = {"40001": "serialization_conflict", "40P01": "deadlock"}
_CONNECTIVITY_HINTS = ("connection", "timeout", "reset", "network", "broken pipe")


@dataclass(frozen=True)
class DBFailureClassification:
  retryable: bool
  category: str
  sqlstate: str | None


def _extract_sqlstate(exc: Exception) -> str | None:
  """Extract the Postgres SQLSTATE from a SQLAlchemy exception."""
  if isinstance(exc, DBAPIError) and exc.orig is not None:
    for attr in ("sqlstate", "pgcode"):
      value = getattr(exc.orig, attr, None)
      if value:
        return str(value)
  return None


def classify_db_failure(exc: Exception) -> DBFailureClassification:
  """Classify a failure as transient (serialization, deadlock, dropped connection) or permanent."""
  sqlstate = _extract_sqlstate(exc)
  if sqlstate in _RETRYABLE_SQLSTATES:
    return DBFailureClassification(retryable=True, category=_RETRYABLE_SQLSTATES[sqlstate], sqlstate=sqlstate)
  if isinstance(exc, OperationalError) and any(hint in str(exc).lower() for hint in _CONNECTIVITY_HINTS):
    return DBFailureClassification(retryable=True, category="connectivity_error", sqlstate=sqlstate)
  return DBFailureClassification(retryable=False, category=type(exc).__name__, sqlstate=sqlstate)


async def execute_with_retry(func: Callable[[], Awaitable[T]], *, operation_name: str, max_attempts: int = 3, initial_backoff_ms: float = 50.0, max_backoff_ms: float = 1000.0) -> T:
  """Run `func`, retrying only failures classified as transient."""
  attempt = 0
  while True:
    attempt += 1
    try:
      return await func()
    except Exception as exc:
      classification = classify_db_failure(exc)
      if not classification.retryable or attempt >= max_attempts:
        logger.error("DB operation failed: operation=%s attempt=%d/%d category=%s sqlstate=%s", operation_name, attempt, max_attempts, classification.category, classification.sqlstate or "none")
        raise

      backoff_ms = min(initial_backoff_ms * (2 ** (attempt - 1)), max_backoff_ms)
      # +/-25% jitter keeps concurrent retries apart.
      backoff_ms += random.uniform(-0.25, 0.25) * backoff_ms
      logger.warning("Retrying DB operation: operation=%s attempt=%d/%d category=%s backoff_ms=%.1f", operation_name, attempt, max_attempts, classification.category, backoff_ms)
      await asyncio.sleep(backoff_ms / 1000.0)
