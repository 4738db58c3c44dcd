"""Unit tests for budget admission, accounting, alerts and rollover."""

from __future__ import annotations

import asyncio
from datetime import UTC, date, datetime
from unittest.mock import AsyncMock

import pytest

from launchpad.ai.budget import BudgetGuard, period_start_date
from launchpad.storage.budgets_repo import BudgetConfig, InMemoryBudgetRepository, InMemoryUsageRepository, UsageRecord


class MutableClock:
  def __init__(self, now: datetime) -> None:
    self.now = now

  def __call__(self) -> datetime:
    return self.now


@pytest.fixture
def clock() -> MutableClock:
  # A Wednesday.
  return MutableClock(datetime(2026, 3, 11, 15, 30, tzinfo=UTC))


@pytest.fixture
def guard(clock: MutableClock) -> BudgetGuard:
  return BudgetGuard(InMemoryBudgetRepository(), InMemoryUsageRepository(), clock=clock)


def test_period_start_dates_use_utc_boundaries() -> None:
  now = datetime(2026, 3, 11, 23, 30, tzinfo=UTC)
  assert period_start_date(now=now, period="DAILY") == date(2026, 3, 11)
  assert period_start_date(now=now, period="WEEKLY") == date(2026, 3, 9)
  assert period_start_date(now=now, period="MONTHLY") == date(2026, 3, 1)
  with pytest.raises(ValueError):
    period_start_date(now=datetime(2026, 3, 11), period="DAILY")


@pytest.mark.anyio
async def test_two_large_calls_fire_one_100_alert_and_auto_pause(guard: BudgetGuard) -> None:
  await guard.upsert_budget(BudgetConfig(period="DAILY", token_limit=1000, auto_pause_at_limit=True))

  first = await guard.record_usage(600, 0.0)
  assert [alert.threshold for alert in first] == [50]
  assert (await guard.check_admission()).allowed is True

  second = await guard.record_usage(600, 0.0)
  assert [alert.threshold for alert in second] == [100]
  assert second[0].percentage == 120.0

  status = await guard.get_status()
  assert status["DAILY"].tokens_used == 1200
  assert status["DAILY"].is_paused is True

  decision = await guard.check_admission()
  assert decision.allowed is False
  assert decision.period == "DAILY"
  assert "auto-pause" in (decision.reason or "")

  # Further usage past the limit does not repeat the 100% alert.
  assert await guard.record_usage(100, 0.0) == []
  assert [alert.threshold for alert in await guard.list_alerts()] == [100, 50]


@pytest.mark.anyio
async def test_only_highest_crossed_threshold_fires(guard: BudgetGuard) -> None:
  await guard.upsert_budget(BudgetConfig(period="MONTHLY", token_limit=1000))
  alerts = await guard.record_usage(950, 0.0)
  assert [alert.threshold for alert in alerts] == [90]
  # Without auto-pause the budget keeps admitting.
  await guard.record_usage(500, 0.0)
  assert (await guard.check_admission()).allowed is True


@pytest.mark.anyio
async def test_cost_percentage_counts_when_higher_than_tokens(guard: BudgetGuard) -> None:
  await guard.upsert_budget(BudgetConfig(period="WEEKLY", token_limit=1_000_000, cost_limit=10.0))
  alerts = await guard.record_usage(10, 8.0)
  assert [alert.threshold for alert in alerts] == [75]


@pytest.mark.anyio
async def test_disabled_threshold_is_skipped(guard: BudgetGuard) -> None:
  await guard.upsert_budget(BudgetConfig(period="DAILY", token_limit=1000, alert_at_50=False))
  assert await guard.record_usage(600, 0.0) == []


@pytest.mark.anyio
async def test_usage_counts_against_every_active_period(guard: BudgetGuard) -> None:
  for period in ("DAILY", "WEEKLY", "MONTHLY"):
    await guard.upsert_budget(BudgetConfig(period=period, token_limit=10_000))
  await guard.record_usage(250, 0.01)
  status = await guard.get_status()
  assert {period: snapshot.tokens_used for period, snapshot in status.items()} == {"DAILY": 250, "WEEKLY": 250, "MONTHLY": 250}


@pytest.mark.anyio
async def test_concurrent_usage_is_not_lost(guard: BudgetGuard) -> None:
  await guard.upsert_budget(BudgetConfig(period="DAILY", token_limit=1_000_000, auto_pause_at_limit=True))
  await asyncio.gather(*(guard.record_usage(10, 0.001) for _ in range(100)))
  status = await guard.get_status()
  assert status["DAILY"].tokens_used == 1000
  assert status["DAILY"].cost_used == pytest.approx(0.1)


@pytest.mark.anyio
async def test_one_paused_period_blocks_all_generation(guard: BudgetGuard) -> None:
  await guard.upsert_budget(BudgetConfig(period="DAILY", token_limit=1000))
  await guard.upsert_budget(BudgetConfig(period="MONTHLY", token_limit=100_000))
  await guard.set_paused("MONTHLY", True)

  decision = await guard.check_admission()
  assert decision.allowed is False
  assert decision.period == "MONTHLY"

  await guard.set_paused("MONTHLY", False)
  assert (await guard.check_admission()).allowed is True


@pytest.mark.anyio
async def test_reset_clears_one_period_only(guard: BudgetGuard) -> None:
  await guard.upsert_budget(BudgetConfig(period="DAILY", token_limit=100, auto_pause_at_limit=True))
  await guard.upsert_budget(BudgetConfig(period="MONTHLY", token_limit=10_000))
  await guard.record_usage(150, 0.0)

  reset = await guard.reset("DAILY")
  assert reset is not None and reset.tokens_used == 0 and reset.is_paused is False
  status = await guard.get_status()
  assert status["MONTHLY"].tokens_used == 150
  assert await guard.reset("WEEKLY") is None


@pytest.mark.anyio
async def test_rollover_resets_budgets_from_previous_periods(guard: BudgetGuard, clock: MutableClock) -> None:
  await guard.upsert_budget(BudgetConfig(period="DAILY", token_limit=1000))
  await guard.upsert_budget(BudgetConfig(period="MONTHLY", token_limit=1000))
  await guard.record_usage(300, 0.0)

  clock.now = datetime(2026, 3, 12, 0, 5, tzinfo=UTC)
  assert await guard.rollover_periods() == ["DAILY"]
  status = await guard.get_status()
  assert status["DAILY"].tokens_used == 0
  assert status["DAILY"].period_start == date(2026, 3, 12)
  assert status["MONTHLY"].tokens_used == 300


@pytest.mark.anyio
async def test_upsert_keeps_usage_and_validates_limits(guard: BudgetGuard) -> None:
  await guard.upsert_budget(BudgetConfig(period="DAILY", token_limit=1000))
  await guard.record_usage(400, 0.0)
  updated = await guard.upsert_budget(BudgetConfig(period="DAILY", token_limit=2000))
  assert updated.tokens_used == 400
  assert updated.token_limit == 2000
  with pytest.raises(ValueError):
    await guard.upsert_budget(BudgetConfig(period="DAILY", token_limit=-1))


@pytest.mark.anyio
async def test_admission_fails_open_when_budget_store_errors() -> None:
  budgets = AsyncMock()
  budgets.list_active.side_effect = ConnectionError("db down")
  guard = BudgetGuard(budgets, InMemoryUsageRepository())
  assert (await guard.check_admission()).allowed is True
  assert await guard.record_usage(10, 0.0) == []


@pytest.mark.anyio
async def test_log_usage_feeds_token_stats(guard: BudgetGuard) -> None:
  await guard.log_usage(UsageRecord(operation="BUSINESS_PLAN_GENERATION", model="m", prompt_tokens=100, completion_tokens=50, estimated_cost=0.01))
  await guard.log_usage(UsageRecord(operation="BUSINESS_PLAN_GENERATION", model="m", cache_hit=True))
  stats = await guard.get_token_stats()
  assert stats.total_requests == 2
  assert stats.total_tokens == 150
  assert stats.cache_hits == 1
  assert stats.cache_hit_rate == 50.0
  assert stats.by_operation["BUSINESS_PLAN_GENERATION"]["requests"] == 2


@pytest.mark.anyio
async def test_alert_listener_receives_alerts(guard: BudgetGuard) -> None:
  received = []

  async def _listener(alert) -> None:
    received.append(alert.threshold)

  guard.add_alert_listener(_listener)
  await guard.upsert_budget(BudgetConfig(period="DAILY", token_limit=100))
  await guard.record_usage(80, 0.0)
  assert received == [75]
