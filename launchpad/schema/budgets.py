from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Index, Integer, Numeric, String, func, text
from sqlalchemy.orm import Mapped, mapped_column

from launchpad.core.database import Base


class TokenBudget(Base):
  __tablename__ = "token_budgets"
  __table_args__ = (Index("ux_token_budgets_active_period", "period", unique=True, postgresql_where=text("is_active")),)

  id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
  period: Mapped[str] = mapped_column(String, nullable=False)
  token_limit: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
  cost_limit: Mapped[float] = mapped_column(Numeric(12, 4, asdecimal=False), nullable=False, default=0)
  tokens_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
  cost_used: Mapped[float] = mapped_column(Numeric(12, 6, asdecimal=False), nullable=False, default=0)
  alert_at_50: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
  alert_at_75: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
  alert_at_90: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
  alert_at_100: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
  auto_pause_at_limit: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
  is_paused: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
  is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
  period_start: Mapped[date] = mapped_column(Date, nullable=False)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
  updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class BudgetAlert(Base):
  __tablename__ = "budget_alerts"

  id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
  budget_id: Mapped[int] = mapped_column(ForeignKey("token_budgets.id", ondelete="CASCADE"), nullable=False, index=True)
  period: Mapped[str] = mapped_column(String, nullable=False)
  threshold: Mapped[int] = mapped_column(Integer, nullable=False)
  percentage: Mapped[float] = mapped_column(Numeric(8, 2, asdecimal=False), nullable=False)
  tokens_used: Mapped[int] = mapped_column(Integer, nullable=False)
  cost_used: Mapped[float] = mapped_column(Numeric(12, 6, asdecimal=False), nullable=False)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class TokenUsage(Base):
  __tablename__ = "token_usage"

  id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
  operation: Mapped[str] = mapped_column(String, nullable=False, index=True)
  model: Mapped[str] = mapped_column(String, nullable=False, index=True)
  prompt_tokens: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
  completion_tokens: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
  total_tokens: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
  estimated_cost: Mapped[float] = mapped_column(Numeric(12, 6, asdecimal=False), nullable=False, default=0)
  cache_hit: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
  cache_key: Mapped[str | None] = mapped_column(String(64), nullable=True)
  client_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
  user_id: Mapped[str | None] = mapped_column(String, nullable=True)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now(), index=True)
