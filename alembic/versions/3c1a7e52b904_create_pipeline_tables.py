"""create pipeline tables

Revision ID: 3c1a7e52b904
Revises:
Create Date: 2026-09-28 09:00:00.000000
"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "3c1a7e52b904"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
  op.create_table(
    "pipeline_jobs",
    sa.Column("job_id", sa.String(), primary_key=True),
    sa.Column("job_type", sa.String(), nullable=False),
    sa.Column("lane", sa.String(), nullable=False),
    sa.Column("status", sa.String(), nullable=False),
    sa.Column("priority", sa.Integer(), nullable=False),
    sa.Column("payload_json", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
    sa.Column("result_json", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
    sa.Column("attempts", sa.Integer(), nullable=False),
    sa.Column("error", sa.Text(), nullable=True),
    sa.Column("error_code", sa.String(), nullable=True),
    sa.Column("idempotency_key", sa.String(), nullable=True),
    sa.Column("run_at", sa.DateTime(timezone=True), nullable=True),
    sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
    sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
  )
  op.create_index("ix_pipeline_jobs_job_type", "pipeline_jobs", ["job_type"])
  op.create_index("ix_pipeline_jobs_status", "pipeline_jobs", ["status"])
  op.create_index("ix_pipeline_jobs_idempotency_key", "pipeline_jobs", ["idempotency_key"])
  op.create_index("ix_pipeline_jobs_completed_at", "pipeline_jobs", ["completed_at"])
  op.create_index("ix_pipeline_jobs_lane_status_created", "pipeline_jobs", ["lane", "status", "created_at"])
  # One live job per idempotency key; finished jobs keep their key for lookups.
  op.create_index("ux_pipeline_jobs_active_idempotency", "pipeline_jobs", ["idempotency_key"], unique=True, postgresql_where=sa.text("idempotency_key IS NOT NULL AND status IN ('QUEUED', 'PROCESSING')"))

  op.create_table(
    "response_cache",
    sa.Column("cache_key", sa.String(length=64), primary_key=True),
    sa.Column("prompt_hash", sa.String(length=64), nullable=False),
    sa.Column("response", sa.Text(), nullable=False),
    sa.Column("model", sa.String(), nullable=False),
    sa.Column("hit_count", sa.Integer(), nullable=False),
    sa.Column("tokens_saved", sa.Integer(), nullable=False),
    sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
    sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=False),
    sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
  )
  op.create_index("ix_response_cache_expires_at", "response_cache", ["expires_at"])
  op.create_index("ix_response_cache_last_used_at", "response_cache", ["last_used_at"])

  op.create_table(
    "token_budgets",
    sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
    sa.Column("period", sa.String(), nullable=False),
    sa.Column("token_limit", sa.Integer(), nullable=False),
    sa.Column("cost_limit", sa.Numeric(12, 4), nullable=False),
    sa.Column("tokens_used", sa.Integer(), nullable=False),
    sa.Column("cost_used", sa.Numeric(12, 6), nullable=False),
    sa.Column("alert_at_50", sa.Boolean(), nullable=False),
    sa.Column("alert_at_75", sa.Boolean(), nullable=False),
    sa.Column("alert_at_90", sa.Boolean(), nullable=False),
    sa.Column("alert_at_100", sa.Boolean(), nullable=False),
    sa.Column("auto_pause_at_limit", sa.Boolean(), nullable=False),
    sa.Column("is_paused", sa.Boolean(), nullable=False),
    sa.Column("is_active", sa.Boolean(), nullable=False),
    sa.Column("period_start", sa.Date(), nullable=False),
    sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
  )
  op.create_index("ux_token_budgets_active_period", "token_budgets", ["period"], unique=True, postgresql_where=sa.text("is_active"))

  op.create_table(
    "budget_alerts",
    sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
    sa.Column("budget_id", sa.Integer(), sa.ForeignKey("token_budgets.id", ondelete="CASCADE"), nullable=False),
    sa.Column("period", sa.String(), nullable=False),
    sa.Column("threshold", sa.Integer(), nullable=False),
    sa.Column("percentage", sa.Numeric(8, 2), nullable=False),
    sa.Column("tokens_used", sa.Integer(), nullable=False),
    sa.Column("cost_used", sa.Numeric(12, 6), nullable=False),
    sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
  )
  op.create_index("ix_budget_alerts_budget_id", "budget_alerts", ["budget_id"])

  op.create_table(
    "token_usage",
    sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
    sa.Column("operation", sa.String(), nullable=False),
    sa.Column("model", sa.String(), nullable=False),
    sa.Column("prompt_tokens", sa.Integer(), nullable=False),
    sa.Column("completion_tokens", sa.Integer(), nullable=False),
    sa.Column("total_tokens", sa.Integer(), nullable=False),
    sa.Column("estimated_cost", sa.Numeric(12, 6), nullable=False),
    sa.Column("cache_hit", sa.Boolean(), nullable=False),
    sa.Column("cache_key", sa.String(length=64), nullable=True),
    sa.Column("client_id", sa.String(), nullable=True),
    sa.Column("user_id", sa.String(), nullable=True),
    sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
  )
  op.create_index("ix_token_usage_operation", "token_usage", ["operation"])
  op.create_index("ix_token_usage_model", "token_usage", ["model"])
  op.create_index("ix_token_usage_client_id", "token_usage", ["client_id"])
  op.create_index("ix_token_usage_created_at", "token_usage", ["created_at"])


def downgrade() -> None:
  op.drop_table("token_usage")
  op.drop_table("budget_alerts")
  op.drop_table("token_budgets")
  op.drop_table("response_cache")
  op.drop_table("pipeline_jobs")
