"""Persisted sync run state, used for progress lookups and resume."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import JSON, DateTime, ForeignKey, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, UUIDMixin, TimestampMixin


class SyncRun(UUIDMixin, TimestampMixin, Base):
    __tablename__ = "sync_run"

    brand_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("brand.id", ondelete="SET NULL"), default=None, index=True
    )
    account_id: Mapped[str | None] = mapped_column(String(100), default=None)
    # sha256 of the bearer token; the token itself is never stored
    credentials_key: Mapped[str] = mapped_column(String(64), index=True)
    status: Mapped[str] = mapped_column(String(30), default="INIT", index=True)
    current_step: Mapped[int] = mapped_column(Integer, default=0)
    total_locations: Mapped[int] = mapped_column(Integer, default=0)
    completed_location_ids: Mapped[list] = mapped_column(JSON, default=list)
    counters: Mapped[dict] = mapped_column(JSON, default=dict)
    warnings: Mapped[int] = mapped_column(Integer, default=0)
    error: Mapped[str | None] = mapped_column(Text, default=None)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)

    @property
    def is_terminal(self) -> bool:
        return self.status in {"COMPLETE", "FAILED"}

    def __repr__(self) -> str:
        return f"<SyncRun {self.id} {self.status}>"
