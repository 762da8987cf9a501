"""Base model classes and mixins for listing models."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String, Uuid, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class UUIDMixin:
    """Adds a UUID primary key."""

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )


class TimestampMixin:
    """Adds created_at / updated_at columns."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class FacetMixin:
    """Ownership and provenance columns shared by every synced facet record."""

    store_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("store.id", ondelete="CASCADE"),
        index=True,
    )
    brand_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("brand.id", ondelete="CASCADE"),
        index=True,
    )
    account_id: Mapped[str | None] = mapped_column(String(100), default=None)
    source: Mapped[str] = mapped_column(String(20), default="gbp")
    status: Mapped[str] = mapped_column(String(20), default="active")
