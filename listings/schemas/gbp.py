"""Canonical records produced by the business-profile normalizers.

Everything past the fetcher boundary works with these types only; the raw
API payload shapes are handled in ``listings.gbp.normalize``.
"""

from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel


class AccountInfo(BaseModel):
    id: str
    email: str | None = None
    name: str | None = None


class GBPAccount(BaseModel):
    name: str  # "accounts/{id}"
    account_name: str | None = None
    type: str | None = None

    @property
    def account_id(self) -> str:
        return self.name.rsplit("/", 1)[-1]


class GBPLocation(BaseModel):
    id: str  # "accounts/{a}/locations/{l}"
    name: str | None = None
    store_code: str | None = None
    phone: str | None = None
    address_lines: list[str] = []
    locality: str | None = None
    administrative_area: str | None = None
    postal_code: str | None = None
    region_code: str | None = None
    raw_address: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    primary_category: str | None = None
    additional_categories: list[str] = []
    website_url: str | None = None
    maps_url: str | None = None
    verified: bool = False

    @property
    def account_id(self) -> str | None:
        parts = self.id.split("/")
        if len(parts) >= 2 and parts[0] == "accounts":
            return parts[1]
        return None


class GBPReview(BaseModel):
    review_id: str
    reviewer_name: str | None = None
    reviewer_photo_url: str | None = None
    reviewer_is_anonymous: bool = False
    star_rating: int = 0
    comment: str | None = None
    create_time: datetime | None = None
    update_time: datetime | None = None
    reply_comment: str | None = None
    reply_time: datetime | None = None

    @property
    def has_response(self) -> bool:
        return bool(self.reply_comment)


class GBPPost(BaseModel):
    post_id: str
    summary: str | None = None
    call_to_action: dict | None = None
    media: list[dict] = []
    language_code: str = "en"
    state: str = "LIVE"
    topic_type: str = "STANDARD"
    event: dict | None = None
    offer: dict | None = None
    search_url: str | None = None
    create_time: datetime | None = None
    update_time: datetime | None = None


class GBPInsight(BaseModel):
    period_start: date
    period_end: date
    queries: int = 0
    views: int = 0
    actions: int = 0
    photo_views: int = 0
    call_clicks: int = 0
    website_clicks: int = 0
    direction_requests: int = 0
    business_bookings: int = 0
    business_food_orders: int = 0
    business_messages: int = 0
    desktop_search_impressions: int = 0
    mobile_search_impressions: int = 0
    desktop_maps_impressions: int = 0
    mobile_maps_impressions: int = 0
    daily_metrics: dict | None = None


class GBPSearchKeyword(BaseModel):
    keyword: str
    year: int
    month: int
    impressions: int = 0
    clicks: int = 0
    ctr: float | None = None
    position: float = 0.0
