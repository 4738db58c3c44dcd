from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Index, Integer, String, Text, func, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from launchpad.core.database import Base


class Job(Base):
  __tablename__ = "pipeline_jobs"
  __table_args__ = (
    Index("ix_pipeline_jobs_lane_status_created", "lane", "status", "created_at"),
    Index("ux_pipeline_jobs_active_idempotency", "idempotency_key", unique=True, postgresql_where=text("idempotency_key IS NOT NULL AND status IN ('QUEUED', 'PROCESSING')")),
  )

  job_id: Mapped[str] = mapped_column(String, primary_key=True)
  job_type: Mapped[str] = mapped_column(String, nullable=False, index=True)
  lane: Mapped[str] = mapped_column(String, nullable=False)
  status: Mapped[str] = mapped_column(String, nullable=False, index=True)
  priority: Mapped[int] = mapped_column(Integer, nullable=False, default=5)
  payload_json: Mapped[dict] = mapped_column(JSONB, nullable=False)
  result_json: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
  attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
  error: Mapped[str | None] = mapped_column(Text, nullable=True)
  error_code: Mapped[str | None] = mapped_column(String, nullable=True)
  idempotency_key: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
  run_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
  updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
  started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
  completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
