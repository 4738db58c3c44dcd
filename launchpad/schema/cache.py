from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from launchpad.core.database import Base


class ResponseCacheEntry(Base):
  __tablename__ = "response_cache"

  cache_key: Mapped[str] = mapped_column(String(64), primary_key=True)
  prompt_hash: Mapped[str] = mapped_column(String(64), nullable=False)
  response: Mapped[str] = mapped_column(Text, nullable=False)
  model: Mapped[str] = mapped_column(String, nullable=False)
  hit_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
  tokens_saved: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
  expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
  last_used_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
