"""Brand model - the tenant owning one external business account."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, UUIDMixin, TimestampMixin

# Placeholder address values used until the owner fills in real data.
ADDRESS_UNAVAILABLE = "Address not available"
UNKNOWN = "Unknown"
UNKNOWN_POSTAL_CODE = "00000"
DEFAULT_COUNTRY = "US"


class Brand(UUIDMixin, TimestampMixin, Base):
    __tablename__ = "brand"

    name: Mapped[str] = mapped_column(String(200))
    slug: Mapped[str] = mapped_column(String(100), unique=True, index=True)
    email: Mapped[str | None] = mapped_column(String(255), default=None, index=True)
    description: Mapped[str | None] = mapped_column(Text, default=None)

    address_line1: Mapped[str] = mapped_column(String(255), default=ADDRESS_UNAVAILABLE)
    locality: Mapped[str] = mapped_column(String(100), default=UNKNOWN)
    city: Mapped[str] = mapped_column(String(100), default=UNKNOWN)
    state: Mapped[str] = mapped_column(String(100), default=UNKNOWN)
    postal_code: Mapped[str] = mapped_column(String(20), default=UNKNOWN_POSTAL_CODE)
    country: Mapped[str] = mapped_column(String(10), default=DEFAULT_COUNTRY)

    # External account integration
    gbp_account_id: Mapped[str | None] = mapped_column(
        String(100), default=None, unique=True, index=True
    )
    gbp_account_name: Mapped[str | None] = mapped_column(String(255), default=None)
    gbp_connected: Mapped[bool] = mapped_column(Boolean, default=False)
    gbp_last_sync_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    gbp_metadata: Mapped[dict | None] = mapped_column(JSON, default=None)

    stores: Mapped[list["Store"]] = relationship(  # noqa: F821
        back_populates="brand", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<Brand {self.slug!r}>"
