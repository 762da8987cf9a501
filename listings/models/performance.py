"""Performance (insight) samples, one per store per reporting window."""

from __future__ import annotations

from datetime import date

from sqlalchemy import JSON, Date, Float, Integer, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, UUIDMixin, TimestampMixin, FacetMixin

COUNTER_FIELDS = (
    "queries",
    "views",
    "actions",
    "photo_views",
    "call_clicks",
    "website_clicks",
    "direction_requests",
    "business_bookings",
    "business_food_orders",
    "business_messages",
    "desktop_search_impressions",
    "mobile_search_impressions",
    "desktop_maps_impressions",
    "mobile_maps_impressions",
)


class PerformanceSample(UUIDMixin, TimestampMixin, FacetMixin, Base):
    __tablename__ = "performance_sample"
    __table_args__ = (
        UniqueConstraint("store_id", "period_start", "period_end", name="uq_performance_store_period"),
    )

    period_start: Mapped[date] = mapped_column(Date)
    period_end: Mapped[date] = mapped_column(Date)

    queries: Mapped[int] = mapped_column(Integer, default=0)
    views: Mapped[int] = mapped_column(Integer, default=0)
    actions: Mapped[int] = mapped_column(Integer, default=0)
    photo_views: Mapped[int] = mapped_column(Integer, default=0)
    call_clicks: Mapped[int] = mapped_column(Integer, default=0)
    website_clicks: Mapped[int] = mapped_column(Integer, default=0)
    direction_requests: Mapped[int] = mapped_column(Integer, default=0)
    business_bookings: Mapped[int] = mapped_column(Integer, default=0)
    business_food_orders: Mapped[int] = mapped_column(Integer, default=0)
    business_messages: Mapped[int] = mapped_column(Integer, default=0)
    desktop_search_impressions: Mapped[int] = mapped_column(Integer, default=0)
    mobile_search_impressions: Mapped[int] = mapped_column(Integer, default=0)
    desktop_maps_impressions: Mapped[int] = mapped_column(Integer, default=0)
    mobile_maps_impressions: Mapped[int] = mapped_column(Integer, default=0)

    # Derived at write time
    conversion_rate: Mapped[float] = mapped_column(Float, default=0.0)
    click_through_rate: Mapped[float] = mapped_column(Float, default=0.0)

    daily_metrics: Mapped[dict | None] = mapped_column(JSON, default=None)
