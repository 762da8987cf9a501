"""Monthly search keyword impression samples."""

from __future__ import annotations

from sqlalchemy import Float, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, UUIDMixin, TimestampMixin, FacetMixin


class SearchKeywordSample(UUIDMixin, TimestampMixin, FacetMixin, Base):
    __tablename__ = "search_keyword_sample"
    __table_args__ = (
        UniqueConstraint(
            "store_id", "keyword", "period_year", "period_month", name="uq_keyword_store_period"
        ),
    )

    keyword: Mapped[str] = mapped_column(String(500))
    period_year: Mapped[int] = mapped_column(Integer)
    period_month: Mapped[int] = mapped_column(Integer)
    impressions: Mapped[int] = mapped_column(Integer, default=0)
    clicks: Mapped[int] = mapped_column(Integer, default=0)
    ctr: Mapped[float] = mapped_column(Float, default=0.0)
    position: Mapped[float] = mapped_column(Float, default=0.0)
