"""Application configuration loaded from environment variables."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any

from launchpad.utils.env import default_env_path, load_env_file

load_env_file(default_env_path(), override=False)

_QUEUE_BACKENDS = {"auto", "memory", "redis"}
_GENERATION_PROVIDERS = {"openrouter", "openai"}


@dataclass(frozen=True)
class Settings:
  """Typed settings for the Launchpad service."""

  environment: str
  debug: bool
  log_max_bytes: int
  log_backup_count: int
  log_dir: str | None
  pg_dsn: str | None
  pg_connect_timeout: int
  redis_url: str | None
  queue_backend: str
  job_max_retries: int
  job_backoff_seconds: tuple[float, ...]
  queue_poll_interval_seconds: float
  job_stall_timeout_seconds: float
  generation_lane_concurrency: int
  default_lane_concurrency: int
  generation_lane_rate_per_minute: int
  default_lane_rate_per_minute: int
  job_retention_days: int
  scheduler_enabled: bool
  cache_max_entries: int
  cache_ttl_hours: int
  cache_strip_stop_words: bool
  generation_provider: str
  generation_api_key: str | None
  generation_base_url: str | None
  generation_model: str
  generation_max_tokens: int
  generation_timeout_seconds: int
  generation_pricing: dict[str, dict[str, tuple[float, float]]] = field(hash=False)
  email_workflows_enabled: bool
  auto_generate_pdf: bool
  workflow_auto_advance: bool
  journey_months: int
  app_url: str
  email_notifications_enabled: bool
  email_from_address: str | None
  email_from_name: str | None
  mailersend_api_key: str | None
  mailersend_timeout_seconds: int
  mailersend_base_url: str
  admin_secret: str | None


@dataclass(frozen=True)
class DatabaseSettings:
  """Typed settings for database connectivity."""

  debug: bool
  pg_dsn: str | None
  pg_connect_timeout: int


def _parse_bool(raw: str | None, *, default: bool = False) -> bool:
  """Parse a boolean-ish string from environment variables."""

  if raw is None or raw.strip() == "":
    return default

  normalized = raw.strip().lower()
  return normalized in {"1", "true", "yes", "on"}


def _optional_str(raw: str | None) -> str | None:
  if raw is None:
    return None
  value = raw.strip()
  if value == "":
    return None
  return value


def _positive_int(name: str, default: str) -> int:
  value = int(os.getenv(name, default))
  if value <= 0:
    raise ValueError(f"{name} must be a positive integer.")
  return value


def _parse_backoff(raw: str | None) -> tuple[float, ...]:
  """Parse a comma separated list of retry delays in seconds."""

  if not raw:
    return (2.0, 4.0, 8.0)
  delays = tuple(float(part) for part in raw.split(",") if part.strip())
  if not delays or any(delay < 0 for delay in delays):
    raise ValueError("LAUNCHPAD_JOB_BACKOFF_SECONDS must list one or more non-negative delays.")
  return delays


def _parse_pricing(raw: str | None) -> dict[str, dict[str, tuple[float, float]]]:
  """Parse the provider/model pricing table (USD per 1M input and output tokens)."""

  if not raw:
    return {}
  try:
    parsed: dict[str, Any] = json.loads(raw)
  except json.JSONDecodeError as exc:
    raise ValueError("LAUNCHPAD_GENERATION_PRICING must be valid JSON.") from exc

  table: dict[str, dict[str, tuple[float, float]]] = {}
  for provider, models in parsed.items():
    if not isinstance(models, dict):
      raise ValueError("LAUNCHPAD_GENERATION_PRICING must map providers to model price pairs.")
    table[str(provider).lower()] = {str(model): (float(prices[0]), float(prices[1])) for model, prices in models.items()}
  return table


@lru_cache(maxsize=1)
def get_settings() -> Settings:
  """Load settings once per process."""

  environment = os.getenv("LAUNCHPAD_ENV", "development").lower()

  # Toggle verbose error output and diagnostics in non-production environments.
  debug = _parse_bool(os.getenv("LAUNCHPAD_DEBUG"))

  log_max_bytes = _positive_int("LAUNCHPAD_LOG_MAX_BYTES", "5242880")  # 5MB default
  log_backup_count = int(os.getenv("LAUNCHPAD_LOG_BACKUP_COUNT", "10"))
  if log_backup_count < 0:
    raise ValueError("LAUNCHPAD_LOG_BACKUP_COUNT must be zero or a positive integer.")

  queue_backend = (os.getenv("LAUNCHPAD_QUEUE_BACKEND") or "auto").strip().lower()
  if queue_backend not in _QUEUE_BACKENDS:
    raise ValueError(f"LAUNCHPAD_QUEUE_BACKEND must be one of {sorted(_QUEUE_BACKENDS)}.")

  redis_url = _optional_str(os.getenv("LAUNCHPAD_REDIS_URL")) or _optional_str(os.getenv("REDIS_URL"))
  if queue_backend == "redis" and not redis_url:
    raise ValueError("LAUNCHPAD_REDIS_URL must be set when LAUNCHPAD_QUEUE_BACKEND=redis.")

  job_max_retries = int(os.getenv("LAUNCHPAD_JOB_MAX_RETRIES", "3"))
  if job_max_retries < 0:
    raise ValueError("LAUNCHPAD_JOB_MAX_RETRIES must be zero or a positive integer.")

  queue_poll_interval_seconds = float(os.getenv("LAUNCHPAD_QUEUE_POLL_INTERVAL_SECONDS", "1.0"))
  if queue_poll_interval_seconds <= 0:
    raise ValueError("LAUNCHPAD_QUEUE_POLL_INTERVAL_SECONDS must be positive.")

  job_stall_timeout_seconds = float(os.getenv("LAUNCHPAD_JOB_STALL_TIMEOUT_SECONDS", "1800"))
  if job_stall_timeout_seconds <= 0:
    raise ValueError("LAUNCHPAD_JOB_STALL_TIMEOUT_SECONDS must be positive.")

  generation_provider = (os.getenv("LAUNCHPAD_GENERATION_PROVIDER") or "openrouter").strip().lower()
  if generation_provider not in _GENERATION_PROVIDERS:
    raise ValueError(f"LAUNCHPAD_GENERATION_PROVIDER must be one of {sorted(_GENERATION_PROVIDERS)}.")

  email_notifications_enabled = _parse_bool(os.getenv("LAUNCHPAD_EMAIL_NOTIFICATIONS_ENABLED"))
  email_from_address = _optional_str(os.getenv("LAUNCHPAD_EMAIL_FROM_ADDRESS"))
  mailersend_api_key = _optional_str(os.getenv("LAUNCHPAD_MAILERSEND_API_KEY"))
  mailersend_timeout_seconds = int(os.getenv("LAUNCHPAD_MAILERSEND_TIMEOUT_SECONDS", "10"))

  # Validate notification settings only when notifications are enabled.
  if email_notifications_enabled:
    if not email_from_address:
      raise ValueError("LAUNCHPAD_EMAIL_FROM_ADDRESS must be set when email notifications are enabled.")

    if not mailersend_api_key:
      raise ValueError("LAUNCHPAD_MAILERSEND_API_KEY must be set when email notifications are enabled.")

    if mailersend_timeout_seconds <= 0:
      raise ValueError("LAUNCHPAD_MAILERSEND_TIMEOUT_SECONDS must be a positive integer.")

  return Settings(
    environment=environment,
    debug=debug,
    log_max_bytes=log_max_bytes,
    log_backup_count=log_backup_count,
    log_dir=_optional_str(os.getenv("LAUNCHPAD_LOG_DIR")),
    pg_dsn=os.getenv("LAUNCHPAD_PG_DSN") or os.getenv("DATABASE_URL"),
    pg_connect_timeout=_positive_int("LAUNCHPAD_PG_CONNECT_TIMEOUT", "5"),
    redis_url=redis_url,
    queue_backend=queue_backend,
    job_max_retries=job_max_retries,
    job_backoff_seconds=_parse_backoff(os.getenv("LAUNCHPAD_JOB_BACKOFF_SECONDS")),
    queue_poll_interval_seconds=queue_poll_interval_seconds,
    job_stall_timeout_seconds=job_stall_timeout_seconds,
    generation_lane_concurrency=_positive_int("LAUNCHPAD_GENERATION_LANE_CONCURRENCY", "1"),
    default_lane_concurrency=_positive_int("LAUNCHPAD_DEFAULT_LANE_CONCURRENCY", "3"),
    generation_lane_rate_per_minute=_positive_int("LAUNCHPAD_GENERATION_LANE_RATE_PER_MINUTE", "10"),
    default_lane_rate_per_minute=_positive_int("LAUNCHPAD_DEFAULT_LANE_RATE_PER_MINUTE", "100"),
    job_retention_days=_positive_int("LAUNCHPAD_JOB_RETENTION_DAYS", "30"),
    scheduler_enabled=_parse_bool(os.getenv("LAUNCHPAD_SCHEDULER_ENABLED"), default=True),
    cache_max_entries=_positive_int("LAUNCHPAD_CACHE_MAX_ENTRIES", "1000"),
    cache_ttl_hours=_positive_int("LAUNCHPAD_CACHE_TTL_HOURS", "168"),
    cache_strip_stop_words=_parse_bool(os.getenv("LAUNCHPAD_CACHE_STRIP_STOP_WORDS"), default=True),
    generation_provider=generation_provider,
    generation_api_key=_optional_str(os.getenv("LAUNCHPAD_GENERATION_API_KEY")) or _optional_str(os.getenv("OPENROUTER_API_KEY")),
    generation_base_url=_optional_str(os.getenv("LAUNCHPAD_GENERATION_BASE_URL")),
    generation_model=(os.getenv("LAUNCHPAD_GENERATION_MODEL") or "anthropic/claude-sonnet-4").strip(),
    generation_max_tokens=_positive_int("LAUNCHPAD_GENERATION_MAX_TOKENS", "8000"),
    generation_timeout_seconds=_positive_int("LAUNCHPAD_GENERATION_TIMEOUT_SECONDS", "120"),
    generation_pricing=_parse_pricing(os.getenv("LAUNCHPAD_GENERATION_PRICING")),
    email_workflows_enabled=_parse_bool(os.getenv("LAUNCHPAD_EMAIL_WORKFLOWS_ENABLED")),
    auto_generate_pdf=_parse_bool(os.getenv("LAUNCHPAD_AUTO_GENERATE_PDF")),
    workflow_auto_advance=_parse_bool(os.getenv("LAUNCHPAD_WORKFLOW_AUTO_ADVANCE")),
    journey_months=_positive_int("LAUNCHPAD_JOURNEY_MONTHS", "8"),
    app_url=(os.getenv("LAUNCHPAD_APP_URL") or "http://localhost:3000").strip().rstrip("/"),
    email_notifications_enabled=email_notifications_enabled,
    email_from_address=email_from_address,
    email_from_name=_optional_str(os.getenv("LAUNCHPAD_EMAIL_FROM_NAME")),
    mailersend_api_key=mailersend_api_key,
    mailersend_timeout_seconds=mailersend_timeout_seconds,
    mailersend_base_url=(os.getenv("LAUNCHPAD_MAILERSEND_BASE_URL") or "https://api.mailersend.com/v1").strip(),
    admin_secret=_optional_str(os.getenv("LAUNCHPAD_ADMIN_SECRET")),
  )


@lru_cache(maxsize=1)
def get_database_settings() -> DatabaseSettings:
  """Load database settings without requiring the full service configuration."""
  # Keep database configuration isolated so migrations don't require unrelated env vars.
  debug = _parse_bool(os.getenv("LAUNCHPAD_DEBUG"))
  pg_connect_timeout = _positive_int("LAUNCHPAD_PG_CONNECT_TIMEOUT", "5")

  # Support fallback to DATABASE_URL for hosted Postgres providers.
  pg_dsn = os.getenv("LAUNCHPAD_PG_DSN") or os.getenv("DATABASE_URL")

  return DatabaseSettings(debug=debug, pg_dsn=pg_dsn, pg_connect_timeout=pg_connect_timeout)
