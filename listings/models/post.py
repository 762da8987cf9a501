"""Local post facet records."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, UUIDMixin, TimestampMixin, FacetMixin


class Post(UUIDMixin, TimestampMixin, FacetMixin, Base):
    __tablename__ = "post"

    gbp_post_id: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    summary: Mapped[str | None] = mapped_column(Text, default=None)
    call_to_action: Mapped[dict | None] = mapped_column(JSON, default=None)
    media: Mapped[list | None] = mapped_column(JSON, default=None)
    language_code: Mapped[str] = mapped_column(String(10), default="en")
    state: Mapped[str] = mapped_column(String(30), default="LIVE")
    topic_type: Mapped[str] = mapped_column(String(30), default="STANDARD")
    event: Mapped[dict | None] = mapped_column(JSON, default=None)
    offer: Mapped[dict | None] = mapped_column(JSON, default=None)
    search_url: Mapped[str | None] = mapped_column(String(500), default=None)
    gbp_create_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    gbp_update_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
