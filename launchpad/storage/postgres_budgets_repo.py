"""Postgres-backed budget and usage repositories."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

from sqlalchemy import and_, case, desc, func, or_, select, update

from launchpad.core.database import require_session_factory
from launchpad.jobs.models import utc_now
from launchpad.schema.budgets import BudgetAlert, TokenBudget, TokenUsage
from launchpad.storage.budgets_repo import BudgetAlertRecord, BudgetConfig, BudgetPeriod, BudgetRecord, BudgetRepository, TokenStats, UsageRecord, UsageRepository
from launchpad.utils.db_retry import execute_with_retry


def _model_to_record(row: TokenBudget) -> BudgetRecord:
  return BudgetRecord(
    id=row.id,
    period=row.period,  # type: ignore[arg-type]
    token_limit=row.token_limit,
    cost_limit=float(row.cost_limit),
    tokens_used=row.tokens_used,
    cost_used=float(row.cost_used),
    period_start=row.period_start,
    alert_at_50=row.alert_at_50,
    alert_at_75=row.alert_at_75,
    alert_at_90=row.alert_at_90,
    alert_at_100=row.alert_at_100,
    auto_pause_at_limit=row.auto_pause_at_limit,
    is_paused=row.is_paused,
    is_active=row.is_active,
    updated_at=row.updated_at,
  )


class PostgresBudgetRepository(BudgetRepository):
  """Persist budgets to Postgres; usage increments are single UPDATE ... RETURNING statements."""

  def __init__(self) -> None:
    self._session_factory = require_session_factory()

  async def list_active(self) -> list[BudgetRecord]:
    async with self._session_factory() as session:
      rows = (await session.execute(select(TokenBudget).where(TokenBudget.is_active.is_(True)).order_by(TokenBudget.id))).scalars().all()
      return [_model_to_record(row) for row in rows]

  async def get(self, period: BudgetPeriod) -> BudgetRecord | None:
    async with self._session_factory() as session:
      row = (await session.execute(select(TokenBudget).where(TokenBudget.period == period, TokenBudget.is_active.is_(True)))).scalar_one_or_none()
      return _model_to_record(row) if row else None

  async def upsert(self, config: BudgetConfig, *, period_start: date) -> BudgetRecord:
    async with self._session_factory() as session:
      async with session.begin():
        # Lock the current row so a concurrent increment cannot interleave with reconfiguration.
        stmt = select(TokenBudget).where(TokenBudget.period == config.period).order_by(desc(TokenBudget.is_active), desc(TokenBudget.id)).limit(1).with_for_update()
        row = (await session.execute(stmt)).scalar_one_or_none()
        if row is None:
          row = TokenBudget(period=config.period, tokens_used=0, cost_used=0.0, is_paused=False, period_start=period_start)
          session.add(row)
        row.token_limit = config.token_limit
        row.cost_limit = config.cost_limit
        row.alert_at_50 = config.alert_at_50
        row.alert_at_75 = config.alert_at_75
        row.alert_at_90 = config.alert_at_90
        row.alert_at_100 = config.alert_at_100
        row.auto_pause_at_limit = config.auto_pause_at_limit
        row.is_active = config.is_active
        row.updated_at = utc_now()
        await session.flush()
        record = _model_to_record(row)
      return record

  async def increment_usage(self, budget_id: int, *, tokens: int, cost: float) -> BudgetRecord | None:
    new_tokens = TokenBudget.tokens_used + tokens
    new_cost = TokenBudget.cost_used + cost
    # Pause in the same statement that pushes usage to the limit.
    reached_limit = or_(and_(TokenBudget.token_limit > 0, new_tokens >= TokenBudget.token_limit), and_(TokenBudget.cost_limit > 0, new_cost >= TokenBudget.cost_limit))
    paused = case((and_(TokenBudget.auto_pause_at_limit.is_(True), reached_limit), True), else_=TokenBudget.is_paused)

    async def _increment() -> BudgetRecord | None:
      async with self._session_factory() as session:
        stmt = update(TokenBudget).where(TokenBudget.id == budget_id).values(tokens_used=new_tokens, cost_used=new_cost, is_paused=paused, updated_at=utc_now()).returning(TokenBudget).execution_options(synchronize_session=False)
        row = (await session.execute(stmt)).scalars().one_or_none()
        await session.commit()
        return _model_to_record(row) if row else None

    return await execute_with_retry(_increment, operation_name=f"budget_increment:{budget_id}")

  async def reset(self, period: BudgetPeriod, *, period_start: date) -> BudgetRecord | None:
    return await self._update_active(period, tokens_used=0, cost_used=0.0, is_paused=False, period_start=period_start)

  async def set_paused(self, period: BudgetPeriod, paused: bool) -> BudgetRecord | None:
    return await self._update_active(period, is_paused=paused)

  async def record_alert(self, alert: BudgetAlertRecord) -> None:
    async with self._session_factory() as session:
      session.add(BudgetAlert(budget_id=alert.budget_id, period=alert.period, threshold=alert.threshold, percentage=alert.percentage, tokens_used=alert.tokens_used, cost_used=alert.cost_used, created_at=alert.created_at))
      await session.commit()

  async def list_alerts(self, limit: int = 50) -> list[BudgetAlertRecord]:
    async with self._session_factory() as session:
      rows = (await session.execute(select(BudgetAlert).order_by(BudgetAlert.created_at.desc()).limit(limit))).scalars().all()
      return [
        BudgetAlertRecord(budget_id=row.budget_id, period=row.period, threshold=row.threshold, percentage=float(row.percentage), tokens_used=row.tokens_used, cost_used=float(row.cost_used), created_at=row.created_at)  # type: ignore[arg-type]
        for row in rows
      ]

  async def _update_active(self, period: BudgetPeriod, **values: Any) -> BudgetRecord | None:
    async with self._session_factory() as session:
      stmt = update(TokenBudget).where(TokenBudget.period == period, TokenBudget.is_active.is_(True)).values(updated_at=utc_now(), **values).returning(TokenBudget).execution_options(synchronize_session=False)
      row = (await session.execute(stmt)).scalars().one_or_none()
      await session.commit()
      return _model_to_record(row) if row else None


class PostgresUsageRepository(UsageRepository):
  """Persist usage records to Postgres."""

  def __init__(self) -> None:
    self._session_factory = require_session_factory()

  async def add(self, record: UsageRecord) -> None:
    async with self._session_factory() as session:
      session.add(
        TokenUsage(
          operation=record.operation,
          model=record.model,
          prompt_tokens=record.prompt_tokens,
          completion_tokens=record.completion_tokens,
          total_tokens=record.total_tokens,
          estimated_cost=record.estimated_cost,
          cache_hit=record.cache_hit,
          cache_key=record.cache_key,
          client_id=record.client_id,
          user_id=record.user_id,
          created_at=record.created_at,
        )
      )
      await session.commit()

  async def stats(self, *, start: datetime | None = None, end: datetime | None = None) -> TokenStats:
    filters = []
    if start is not None:
      filters.append(TokenUsage.created_at >= start)
    if end is not None:
      filters.append(TokenUsage.created_at < end)

    aggregates = (func.count(), func.coalesce(func.sum(TokenUsage.total_tokens), 0), func.coalesce(func.sum(TokenUsage.estimated_cost), 0))
    async with self._session_factory() as session:
      totals_stmt = select(*aggregates, func.count().filter(TokenUsage.cache_hit.is_(True))).where(*filters)
      requests, tokens, cost, hits = (await session.execute(totals_stmt)).one()
      by_operation = await self._grouped(session, TokenUsage.operation, aggregates, filters)
      by_model = await self._grouped(session, TokenUsage.model, aggregates, filters)

    return TokenStats(total_requests=int(requests), total_tokens=int(tokens), total_cost=round(float(cost), 6), cache_hits=int(hits), by_operation=by_operation, by_model=by_model)

  async def _grouped(self, session: Any, column: Any, aggregates: tuple[Any, ...], filters: list[Any]) -> dict[str, dict[str, Any]]:
    rows = (await session.execute(select(column, *aggregates).where(*filters).group_by(column))).all()
    return {str(key): {"requests": int(count), "tokens": int(tokens), "cost": round(float(cost), 6)} for key, count, tokens, cost in rows}
