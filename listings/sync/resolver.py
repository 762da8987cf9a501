"""Find-or-create for the Brand and Store rows that own synced facets."""

from __future__ import annotations

import asyncio
import logging
import re
import uuid
from datetime import datetime, timezone

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..models.brand import (
    ADDRESS_UNAVAILABLE,
    DEFAULT_COUNTRY,
    UNKNOWN,
    UNKNOWN_POSTAL_CODE,
    Brand,
)
from ..models.store import Store
from ..schemas.gbp import AccountInfo, GBPLocation

logger = logging.getLogger(__name__)

DEFAULT_BRAND_NAME = "GBP Business"
STORE_SLUG_MAX = 30
STORE_CODE_MAX = 20


def slugify(value: str, max_length: int | None = None) -> str:
    """Lowercase, runs of non-alphanumerics collapsed to a single dash."""
    slug = re.sub(r"[^a-z0-9]+", "-", (value or "").lower()).strip("-")
    if max_length:
        slug = slug[:max_length].rstrip("-")
    return slug


def store_code_for(name: str) -> str:
    clean = re.sub(r"[^a-zA-Z0-9\s]", "", name).strip()
    return re.sub(r"\s+", "-", clean).upper()[:STORE_CODE_MAX]


def has_address(location: GBPLocation) -> bool:
    return bool(
        location.address_lines
        or location.raw_address
        or location.locality
        or location.postal_code
    )


def address_fields(location: GBPLocation) -> dict:
    """Best-effort structured address with sentinel fallbacks.

    Structured address parts win. Otherwise a free-form address string is
    split on commas: first segment is line 1, the second-to-last is the
    city, the last is the postal code when it carries digits. Anything
    missing becomes a sentinel.
    """
    line1 = line2 = locality = state = postal_code = None
    if location.address_lines or not location.raw_address:
        if location.address_lines:
            line1 = location.address_lines[0]
            line2 = ", ".join(location.address_lines[1:]) or None
        locality = location.locality
        state = location.administrative_area
        postal_code = location.postal_code
    else:
        parts = [p.strip() for p in location.raw_address.split(",") if p.strip()]
        if parts:
            line1 = parts[0]
        if len(parts) >= 3:
            line2 = ", ".join(parts[1:-2]) or None
            locality = state = parts[-2]
        if len(parts) >= 2 and any(ch.isdigit() for ch in parts[-1]):
            postal_code = parts[-1]

    return {
        "address_line1": line1 or ADDRESS_UNAVAILABLE,
        "address_line2": line2,
        "locality": locality or UNKNOWN,
        "city": locality or UNKNOWN,
        "state": state or UNKNOWN,
        "postal_code": postal_code or UNKNOWN_POSTAL_CODE,
        "country_code": location.region_code or DEFAULT_COUNTRY,
    }


class EntityResolver:
    """Resolves external accounts to Brands and external locations to Stores.

    Storage errors propagate to the caller; nothing here retries.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory
        # Store creation is serialized so concurrent workers never race on slugs.
        self._store_lock = asyncio.Lock()

    async def resolve_brand(self, account: AccountInfo) -> Brand:
        now = datetime.now(timezone.utc)
        async with self._session_factory() as db:
            stmt = select(Brand).where(Brand.gbp_account_id == account.id)
            brand = (await db.execute(stmt)).scalar_one_or_none()
            if brand is None and account.email:
                stmt = (
                    select(Brand)
                    .where(Brand.email == account.email, Brand.gbp_account_id.is_(None))
                    .limit(1)
                )
                brand = (await db.execute(stmt)).scalar_one_or_none()

            if brand is None:
                name = account.name or DEFAULT_BRAND_NAME
                brand = Brand(
                    name=name,
                    slug=await self._unique_slug(db, Brand, slugify(name) or "brand"),
                    email=account.email,
                    description=f"Business profile account for {name}",
                )
                db.add(brand)
                logger.info("Creating brand %r for account %s", name, account.id)

            brand.gbp_account_id = account.id
            brand.gbp_account_name = account.name
            brand.gbp_connected = True
            brand.gbp_last_sync_at = now
            await db.commit()
            return brand

    async def resolve_store(
        self,
        location_id: str,
        brand_id: uuid.UUID,
        location: GBPLocation | None = None,
    ) -> Store:
        """Find the Store for ``location_id``, creating it under ``brand_id`` if needed.

        A location id maps to one Store across all brands. When another brand
        already owns it, the Store moves to ``brand_id`` (last sync wins).

        When a location payload is given its denormalized fields (address,
        contact, categories, links) are refreshed on every call.
        """
        hint = location or GBPLocation(id=location_id)
        name = hint.name or f"Store {location_id}"
        now = datetime.now(timezone.utc)

        async with self._store_lock, self._session_factory() as db:
            stmt = select(Store).where(Store.gbp_location_id == location_id)
            store = (await db.execute(stmt)).scalar_one_or_none()
            created = store is None

            if store is not None and store.brand_id != brand_id:
                logger.info(
                    "Moving store %s for %s from brand %s to %s",
                    store.id, location_id, store.brand_id, brand_id,
                )
                store.brand_id = brand_id

            if created:
                code = hint.store_code or store_code_for(name) or location_id.rsplit("/", 1)[-1]
                store = Store(
                    brand_id=brand_id,
                    name=name,
                    store_code=code[:50],
                    slug=await self._unique_slug(
                        db, Store, slugify(name, STORE_SLUG_MAX) or "store"
                    ),
                    gbp_location_id=location_id,
                    gbp_account_id=hint.account_id,
                )
                db.add(store)
                logger.info("Creating store %r for %s", name, location_id)
            elif hint.name and store.name != hint.name:
                # Replaces synthetic "Store accounts/..." names once the real title is known.
                store.name = hint.name

            if created or has_address(hint):
                for key, value in address_fields(hint).items():
                    setattr(store, key, value)
            if location is not None:
                store.gbp_account_id = hint.account_id
                store.phone = hint.phone or store.phone
                store.primary_category = hint.primary_category or store.primary_category or "Business"
                store.additional_categories = hint.additional_categories or None
                store.website_url = hint.website_url or store.website_url
                store.maps_url = hint.maps_url or store.maps_url
                if hint.latitude is not None and hint.longitude is not None:
                    store.latitude = hint.latitude
                    store.longitude = hint.longitude
                store.verified = hint.verified
            store.status = "active"
            store.last_synced_at = now
            await db.commit()
            return store

    async def _unique_slug(self, db: AsyncSession, model, base: str) -> str:
        rows = await db.execute(
            select(model.slug).where(or_(model.slug == base, model.slug.like(f"{base}-%")))
        )
        taken = set(rows.scalars().all())
        if base not in taken:
            return base
        n = 1
        while f"{base}-{n}" in taken:
            n += 1
        return f"{base}-{n}"
