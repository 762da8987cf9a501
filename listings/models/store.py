"""Store model - one per external location."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, Float, ForeignKey, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, UUIDMixin, TimestampMixin
from .brand import ADDRESS_UNAVAILABLE, DEFAULT_COUNTRY, UNKNOWN, UNKNOWN_POSTAL_CODE


class Store(UUIDMixin, TimestampMixin, Base):
    __tablename__ = "store"

    brand_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("brand.id", ondelete="CASCADE"), index=True
    )
    name: Mapped[str] = mapped_column(String(255))
    store_code: Mapped[str] = mapped_column(String(50))
    slug: Mapped[str] = mapped_column(String(100), unique=True, index=True)
    email: Mapped[str | None] = mapped_column(String(255), default=None)
    phone: Mapped[str | None] = mapped_column(String(50), default=None)

    address_line1: Mapped[str] = mapped_column(String(255), default=ADDRESS_UNAVAILABLE)
    address_line2: Mapped[str | None] = mapped_column(String(255), default=None)
    locality: Mapped[str] = mapped_column(String(100), default=UNKNOWN)
    city: Mapped[str] = mapped_column(String(100), default=UNKNOWN)
    state: Mapped[str] = mapped_column(String(100), default=UNKNOWN)
    postal_code: Mapped[str] = mapped_column(String(20), default=UNKNOWN_POSTAL_CODE)
    country_code: Mapped[str] = mapped_column(String(10), default=DEFAULT_COUNTRY)
    latitude: Mapped[float | None] = mapped_column(Float, default=None)
    longitude: Mapped[float | None] = mapped_column(Float, default=None)

    primary_category: Mapped[str] = mapped_column(String(255), default="Business")
    additional_categories: Mapped[list | None] = mapped_column(JSON, default=None)
    website_url: Mapped[str | None] = mapped_column(String(500), default=None)
    maps_url: Mapped[str | None] = mapped_column(String(500), default=None)
    verified: Mapped[bool] = mapped_column(Boolean, default=False)

    gbp_location_id: Mapped[str | None] = mapped_column(
        String(255), default=None, unique=True, index=True
    )
    gbp_account_id: Mapped[str | None] = mapped_column(String(100), default=None)
    status: Mapped[str] = mapped_column(String(20), default="active")
    last_synced_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )

    brand: Mapped["Brand"] = relationship(back_populates="stores")  # noqa: F821

    def __repr__(self) -> str:
        return f"<Store {self.slug!r}>"
