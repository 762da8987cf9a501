"""Review facet records."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, UUIDMixin, TimestampMixin, FacetMixin


class Review(UUIDMixin, TimestampMixin, FacetMixin, Base):
    __tablename__ = "review"

    gbp_review_id: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    reviewer_name: Mapped[str | None] = mapped_column(String(255), default=None)
    reviewer_photo_url: Mapped[str | None] = mapped_column(String(500), default=None)
    reviewer_is_anonymous: Mapped[bool] = mapped_column(Boolean, default=False)
    star_rating: Mapped[int] = mapped_column(Integer, default=0)
    comment: Mapped[str | None] = mapped_column(Text, default=None)
    gbp_create_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    gbp_update_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)

    has_response: Mapped[bool] = mapped_column(Boolean, default=False)
    response_comment: Mapped[str | None] = mapped_column(Text, default=None)
    response_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)

    def __repr__(self) -> str:
        return f"<Review {self.gbp_review_id!r} {self.star_rating}*>"
