"""Token budget admission control and usage accounting."""

from __future__ import annotations

import datetime
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from launchpad.jobs.models import utc_now
from launchpad.storage.budgets_repo import ALERT_THRESHOLDS, BUDGET_PERIODS, BudgetAlertRecord, BudgetConfig, BudgetPeriod, BudgetRecord, BudgetRepository, TokenStats, UsageRecord, UsageRepository

logger = logging.getLogger(__name__)

AlertListener = Callable[[BudgetAlertRecord], Awaitable[None]]


def period_start_date(*, now: datetime.datetime, period: BudgetPeriod) -> datetime.date:
  """Compute the period start date for the given UTC timestamp."""
  # Use UTC boundaries so budgets roll over at the same instant everywhere.
  if now.tzinfo is None:
    raise ValueError("now must be timezone-aware (UTC).")
  today = now.astimezone(datetime.UTC).date()
  if period == "DAILY":
    return today
  if period == "WEEKLY":
    # Week starts Monday 00:00 UTC.
    return today - datetime.timedelta(days=today.weekday())
  if period == "MONTHLY":
    return today.replace(day=1)
  raise ValueError(f"Unsupported period: {period}")


def crossed_threshold(record: BudgetRecord, previous_pct: float, current_pct: float) -> int | None:
  """Return the highest enabled threshold crossed by moving from previous_pct to current_pct."""
  for threshold in ALERT_THRESHOLDS:
    if record.alert_enabled(threshold) and previous_pct < threshold <= current_pct:
      return threshold
  return None


@dataclass(frozen=True)
class AdmissionDecision:
  allowed: bool
  reason: str | None = None
  period: BudgetPeriod | None = None


@dataclass(frozen=True)
class BudgetSnapshot:
  period: BudgetPeriod
  token_limit: int
  tokens_used: int
  cost_limit: float
  cost_used: float
  percentage: float
  is_paused: bool
  period_start: datetime.date

  def as_dict(self) -> dict[str, object]:
    return {
      "period": self.period,
      "limit": self.token_limit,
      "used": self.tokens_used,
      "costLimit": self.cost_limit,
      "costUsed": self.cost_used,
      "percentage": round(self.percentage, 2),
      "isPaused": self.is_paused,
      "periodStart": self.period_start.isoformat(),
    }


class BudgetGuard:
  """Admission control plus per-period usage accounting across DAILY, WEEKLY and MONTHLY budgets."""

  def __init__(self, budgets: BudgetRepository, usage: UsageRepository, *, clock: Callable[[], datetime.datetime] = utc_now) -> None:
    self._budgets = budgets
    self._usage = usage
    self._clock = clock
    self._alert_listeners: list[AlertListener] = []

  def add_alert_listener(self, listener: AlertListener) -> None:
    self._alert_listeners.append(listener)

  async def check_admission(self) -> AdmissionDecision:
    """Deny when any active budget is paused; accounting outages fail open."""
    try:
      budgets = await self._budgets.list_active()
    except Exception:  # noqa: BLE001
      logger.error("Budget check failed; allowing generation", exc_info=True)
      return AdmissionDecision(allowed=True)

    for budget in budgets:
      if budget.is_paused:
        reason = f"{budget.period} budget limit reached and auto-pause is enabled" if budget.auto_pause_at_limit else f"{budget.period} budget is paused"
        return AdmissionDecision(allowed=False, reason=reason, period=budget.period)
    return AdmissionDecision(allowed=True)

  async def record_usage(self, tokens: int, cost: float) -> list[BudgetAlertRecord]:
    """Add usage to every active budget and return the alerts that fired."""
    try:
      budgets = await self._budgets.list_active()
    except Exception:  # noqa: BLE001
      logger.error("Failed to load budgets; usage of %d tokens not recorded", tokens, exc_info=True)
      return []

    fired: list[BudgetAlertRecord] = []
    for budget in budgets:
      try:
        updated = await self._budgets.increment_usage(budget.id, tokens=tokens, cost=cost)
      except Exception:  # noqa: BLE001
        logger.error("Failed to increment %s budget", budget.period, exc_info=True)
        continue
      if updated is None:
        continue
      alert = await self._maybe_alert(updated, tokens, cost)
      if alert is not None:
        fired.append(alert)
    return fired

  async def log_usage(self, record: UsageRecord) -> list[BudgetAlertRecord]:
    """Persist a usage record, then count it against the budgets."""
    try:
      await self._usage.add(record)
    except Exception:  # noqa: BLE001
      logger.warning("Failed to persist usage record for %s", record.operation, exc_info=True)
    return await self.record_usage(record.total_tokens, record.estimated_cost)

  async def _maybe_alert(self, updated: BudgetRecord, tokens: int, cost: float) -> BudgetAlertRecord | None:
    # Derive the pre-update totals from the atomically returned row.
    current_pct = updated.usage_percentage()
    previous_pct = updated.usage_percentage(updated.tokens_used - tokens, updated.cost_used - cost)
    threshold = crossed_threshold(updated, previous_pct, current_pct)
    if threshold is None:
      return None

    alert = BudgetAlertRecord(budget_id=updated.id, period=updated.period, threshold=threshold, percentage=round(current_pct, 2), tokens_used=updated.tokens_used, cost_used=updated.cost_used, created_at=self._clock())
    logger.warning("%s budget reached %d%% (%.1f%% used, %d tokens, $%.4f)", updated.period, threshold, current_pct, updated.tokens_used, updated.cost_used)
    if threshold == 100 and updated.is_paused:
      logger.warning("%s budget auto-paused; generation is blocked until reset", updated.period)
    try:
      await self._budgets.record_alert(alert)
    except Exception:  # noqa: BLE001
      logger.warning("Failed to persist budget alert", exc_info=True)
    for listener in self._alert_listeners:
      try:
        await listener(alert)
      except Exception:  # noqa: BLE001
        logger.warning("Budget alert listener failed", exc_info=True)
    return alert

  async def get_status(self) -> dict[str, BudgetSnapshot]:
    budgets = await self._budgets.list_active()
    return {
      budget.period: BudgetSnapshot(
        period=budget.period,
        token_limit=budget.token_limit,
        tokens_used=budget.tokens_used,
        cost_limit=budget.cost_limit,
        cost_used=budget.cost_used,
        percentage=budget.usage_percentage(),
        is_paused=budget.is_paused,
        period_start=budget.period_start,
      )
      for budget in budgets
    }

  async def reset(self, period: BudgetPeriod) -> BudgetRecord | None:
    """Clear usage and unpause one period."""
    record = await self._budgets.reset(period, period_start=period_start_date(now=self._clock(), period=period))
    if record is not None:
      logger.info("%s budget reset", period)
    return record

  async def set_paused(self, period: BudgetPeriod, paused: bool) -> BudgetRecord | None:
    record = await self._budgets.set_paused(period, paused)
    if record is not None:
      logger.info("%s budget %s", period, "paused" if paused else "resumed")
    return record

  async def upsert_budget(self, config: BudgetConfig) -> BudgetRecord:
    if config.period not in BUDGET_PERIODS:
      raise ValueError(f"Unsupported period: {config.period}")
    if config.token_limit < 0 or config.cost_limit < 0:
      raise ValueError("Budget limits must be >= 0")
    return await self._budgets.upsert(config, period_start=period_start_date(now=self._clock(), period=config.period))

  async def rollover_periods(self) -> list[BudgetPeriod]:
    """Reset every budget whose stored period start precedes the current period."""
    now = self._clock()
    rolled: list[BudgetPeriod] = []
    for budget in await self._budgets.list_active():
      current_start = period_start_date(now=now, period=budget.period)
      if budget.period_start < current_start:
        await self._budgets.reset(budget.period, period_start=current_start)
        rolled.append(budget.period)
        logger.info("%s budget rolled over to period starting %s", budget.period, current_start)
    return rolled

  async def list_alerts(self, limit: int = 50) -> list[BudgetAlertRecord]:
    return await self._budgets.list_alerts(limit)

  async def get_token_stats(self, *, start: datetime.datetime | None = None, end: datetime.datetime | None = None) -> TokenStats:
    return await self._usage.stats(start=start, end=end)
