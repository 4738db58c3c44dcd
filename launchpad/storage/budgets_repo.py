"""Storage interfaces for token budgets, budget alerts and usage records."""

from __future__ import annotations

import asyncio
import dataclasses
import itertools
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Literal, Protocol, get_args

from launchpad.jobs.models import utc_now

BudgetPeriod = Literal["DAILY", "WEEKLY", "MONTHLY"]
BUDGET_PERIODS: tuple[BudgetPeriod, ...] = get_args(BudgetPeriod)
ALERT_THRESHOLDS: tuple[int, ...] = (100, 90, 75, 50)


@dataclass(frozen=True)
class BudgetConfig:
  """Admin-supplied budget limits for one period."""

  period: BudgetPeriod
  token_limit: int
  cost_limit: float = 0.0
  alert_at_50: bool = True
  alert_at_75: bool = True
  alert_at_90: bool = True
  alert_at_100: bool = True
  auto_pause_at_limit: bool = False
  is_active: bool = True


@dataclass(frozen=True)
class BudgetRecord:
  id: int
  period: BudgetPeriod
  token_limit: int
  cost_limit: float
  tokens_used: int
  cost_used: float
  period_start: date
  alert_at_50: bool = True
  alert_at_75: bool = True
  alert_at_90: bool = True
  alert_at_100: bool = True
  auto_pause_at_limit: bool = False
  is_paused: bool = False
  is_active: bool = True
  updated_at: datetime | None = None

  def alert_enabled(self, threshold: int) -> bool:
    return bool(getattr(self, f"alert_at_{threshold}", False))

  def usage_percentage(self, tokens_used: int | None = None, cost_used: float | None = None) -> float:
    """Return max(token %, cost %); a zero limit does not count."""
    tokens = self.tokens_used if tokens_used is None else tokens_used
    cost = self.cost_used if cost_used is None else cost_used
    token_pct = (tokens / self.token_limit) * 100 if self.token_limit > 0 else 0.0
    cost_pct = (cost / self.cost_limit) * 100 if self.cost_limit > 0 else 0.0
    return max(token_pct, cost_pct)


@dataclass(frozen=True)
class BudgetAlertRecord:
  budget_id: int
  period: BudgetPeriod
  threshold: int
  percentage: float
  tokens_used: int
  cost_used: float
  created_at: datetime = field(default_factory=utc_now)


@dataclass(frozen=True)
class UsageRecord:
  """One generation attempt as seen by cost accounting."""

  operation: str
  model: str
  prompt_tokens: int = 0
  completion_tokens: int = 0
  estimated_cost: float = 0.0
  cache_hit: bool = False
  cache_key: str | None = None
  client_id: str | None = None
  user_id: str | None = None
  created_at: datetime = field(default_factory=utc_now)

  @property
  def total_tokens(self) -> int:
    return self.prompt_tokens + self.completion_tokens


@dataclass(frozen=True)
class TokenStats:
  total_requests: int
  total_tokens: int
  total_cost: float
  cache_hits: int
  by_operation: dict[str, dict[str, Any]]
  by_model: dict[str, dict[str, Any]]

  @property
  def cache_hit_rate(self) -> float:
    return (self.cache_hits / self.total_requests) * 100 if self.total_requests else 0.0


class BudgetRepository(Protocol):
  """Repository contract for budgets and their alerts."""

  async def list_active(self) -> list[BudgetRecord]:
    """Return every active budget."""

  async def get(self, period: BudgetPeriod) -> BudgetRecord | None:
    """Return the active budget for a period."""

  async def upsert(self, config: BudgetConfig, *, period_start: date) -> BudgetRecord:
    """Create or reconfigure the budget for a period without touching its usage."""

  async def increment_usage(self, budget_id: int, *, tokens: int, cost: float) -> BudgetRecord | None:
    """Atomically add usage and set is_paused when auto-pause applies; returns the updated record."""

  async def reset(self, period: BudgetPeriod, *, period_start: date) -> BudgetRecord | None:
    """Zero usage, clear the pause flag and start a new period."""

  async def set_paused(self, period: BudgetPeriod, paused: bool) -> BudgetRecord | None:
    """Toggle the pause flag."""

  async def record_alert(self, alert: BudgetAlertRecord) -> None:
    """Persist a fired threshold alert."""

  async def list_alerts(self, limit: int = 50) -> list[BudgetAlertRecord]:
    """Return the newest alerts first."""


class UsageRepository(Protocol):
  """Repository contract for per-call usage records."""

  async def add(self, record: UsageRecord) -> None:
    """Append one usage record."""

  async def stats(self, *, start: datetime | None = None, end: datetime | None = None) -> TokenStats:
    """Aggregate usage between two timestamps (inclusive start, exclusive end)."""


def _should_pause(record: BudgetRecord, tokens_used: int, cost_used: float) -> bool:
  return record.auto_pause_at_limit and record.usage_percentage(tokens_used, cost_used) >= 100


class InMemoryBudgetRepository(BudgetRepository):
  """Budgets held in memory with one lock per budget record."""

  def __init__(self) -> None:
    self._budgets: dict[BudgetPeriod, BudgetRecord] = {}
    self._locks: dict[int, asyncio.Lock] = {}
    self._alerts: list[BudgetAlertRecord] = []
    self._ids = itertools.count(1)
    self._registry_lock = asyncio.Lock()

  async def list_active(self) -> list[BudgetRecord]:
    return [record for record in self._budgets.values() if record.is_active]

  async def get(self, period: BudgetPeriod) -> BudgetRecord | None:
    record = self._budgets.get(period)
    return record if record is not None and record.is_active else None

  async def upsert(self, config: BudgetConfig, *, period_start: date) -> BudgetRecord:
    async with self._registry_lock:
      existing = self._budgets.get(config.period)
      settings = {key: value for key, value in dataclasses.asdict(config).items() if key != "period"}
      if existing is None:
        record = BudgetRecord(id=next(self._ids), period=config.period, tokens_used=0, cost_used=0.0, period_start=period_start, updated_at=utc_now(), **settings)
        self._locks[record.id] = asyncio.Lock()
      else:
        async with self._locks[existing.id]:
          record = dataclasses.replace(existing, updated_at=utc_now(), **settings)
      self._budgets[config.period] = record
      return record

  async def increment_usage(self, budget_id: int, *, tokens: int, cost: float) -> BudgetRecord | None:
    lock = self._locks.get(budget_id)
    if lock is None:
      return None
    async with lock:
      current = next((record for record in self._budgets.values() if record.id == budget_id), None)
      if current is None:
        return None
      tokens_used = current.tokens_used + tokens
      cost_used = round(current.cost_used + cost, 6)
      paused = current.is_paused or _should_pause(current, tokens_used, cost_used)
      updated = dataclasses.replace(current, tokens_used=tokens_used, cost_used=cost_used, is_paused=paused, updated_at=utc_now())
      self._budgets[current.period] = updated
      return updated

  async def reset(self, period: BudgetPeriod, *, period_start: date) -> BudgetRecord | None:
    current = self._budgets.get(period)
    if current is None:
      return None
    async with self._locks[current.id]:
      updated = dataclasses.replace(self._budgets[period], tokens_used=0, cost_used=0.0, is_paused=False, period_start=period_start, updated_at=utc_now())
      self._budgets[period] = updated
      return updated

  async def set_paused(self, period: BudgetPeriod, paused: bool) -> BudgetRecord | None:
    current = self._budgets.get(period)
    if current is None:
      return None
    async with self._locks[current.id]:
      updated = dataclasses.replace(self._budgets[period], is_paused=paused, updated_at=utc_now())
      self._budgets[period] = updated
      return updated

  async def record_alert(self, alert: BudgetAlertRecord) -> None:
    self._alerts.append(alert)

  async def list_alerts(self, limit: int = 50) -> list[BudgetAlertRecord]:
    return list(reversed(self._alerts))[:limit]


class InMemoryUsageRepository(UsageRepository):
  """Append-only usage log kept in memory."""

  def __init__(self) -> None:
    self._records: list[UsageRecord] = []

  async def add(self, record: UsageRecord) -> None:
    self._records.append(record)

  async def stats(self, *, start: datetime | None = None, end: datetime | None = None) -> TokenStats:
    records = [record for record in self._records if (start is None or record.created_at >= start) and (end is None or record.created_at < end)]
    by_operation: dict[str, dict[str, Any]] = defaultdict(lambda: {"requests": 0, "tokens": 0, "cost": 0.0})
    by_model: dict[str, dict[str, Any]] = defaultdict(lambda: {"requests": 0, "tokens": 0, "cost": 0.0})
    for record in records:
      for bucket in (by_operation[record.operation], by_model[record.model]):
        bucket["requests"] += 1
        bucket["tokens"] += record.total_tokens
        bucket["cost"] = round(bucket["cost"] + record.estimated_cost, 6)
    return TokenStats(
      total_requests=len(records),
      total_tokens=sum(record.total_tokens for record in records),
      total_cost=round(sum(record.estimated_cost for record in records), 6),
      cache_hits=sum(1 for record in records if record.cache_hit),
      by_operation=dict(by_operation),
      by_model=dict(by_model),
    )
