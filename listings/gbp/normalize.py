"""Normalization of raw business-profile payloads into canonical records.

The external API is loose about field names (``websiteUri`` vs ``websiteUrl``,
``reviewReply`` vs ``response``, star ratings as words or numbers, two
different keyword count shapes). This module is the only place that knows
about those variants.
"""

from __future__ import annotations

import re
from collections import defaultdict
from datetime import date, datetime, timezone
from typing import Any
from urllib.parse import quote_plus

from ..schemas.gbp import (
    AccountInfo,
    GBPAccount,
    GBPInsight,
    GBPLocation,
    GBPPost,
    GBPReview,
    GBPSearchKeyword,
)
from .errors import InvalidLocationIdError

STAR_RATINGS = {"ONE": 1, "TWO": 2, "THREE": 3, "FOUR": 4, "FIVE": 5}

# Daily metric name -> GBPInsight field
DAILY_METRIC_FIELDS = {
    "WEBSITE_CLICKS": "website_clicks",
    "CALL_CLICKS": "call_clicks",
    "BUSINESS_DIRECTION_REQUESTS": "direction_requests",
    "BUSINESS_IMPRESSIONS_DESKTOP_SEARCH": "desktop_search_impressions",
    "BUSINESS_IMPRESSIONS_MOBILE_SEARCH": "mobile_search_impressions",
    "BUSINESS_IMPRESSIONS_DESKTOP_MAPS": "desktop_maps_impressions",
    "BUSINESS_IMPRESSIONS_MOBILE_MAPS": "mobile_maps_impressions",
    "BUSINESS_CONVERSATIONS": "business_messages",
    "BUSINESS_BOOKINGS": "business_bookings",
    "BUSINESS_FOOD_ORDERS": "business_food_orders",
}
CORE_DAILY_METRICS = tuple(list(DAILY_METRIC_FIELDS)[:7])

MAX_DAILY_VALUE = 1_000_000

_FRACTION_RE = re.compile(r"\.(\d{6})\d+")


def split_location_id(location_id: str) -> tuple[str, str]:
    """Return ``(account_id, location_id)`` for ``accounts/{a}/locations/{l}``."""
    parts = location_id.split("/") if isinstance(location_id, str) else []
    if len(parts) != 4 or parts[0] != "accounts" or parts[2] != "locations" or not parts[1] or not parts[3]:
        raise InvalidLocationIdError(location_id)
    return parts[1], parts[3]


def is_valid_location_id(location_id: Any) -> bool:
    try:
        split_location_id(location_id)
    except InvalidLocationIdError:
        return False
    return True


def parse_timestamp(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if not isinstance(value, str) or not value.strip():
        return None
    text = _FRACTION_RE.sub(r".\1", value.strip())
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _to_int(value: Any) -> int:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        try:
            return int(float(value))
        except ValueError:
            return 0
    return 0


def _star_rating(value: Any) -> int:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return max(0, min(5, int(value)))
    if isinstance(value, str):
        word = value.strip().upper()
        if word in STAR_RATINGS:
            return STAR_RATINGS[word]
        return max(0, min(5, _to_int(word)))
    return 0


def normalize_account_info(payload: dict) -> AccountInfo:
    return AccountInfo(
        id=str(payload.get("id") or payload.get("sub") or ""),
        email=payload.get("email"),
        name=payload.get("name"),
    )


def normalize_account(payload: dict) -> GBPAccount:
    name = payload.get("name") or ""
    if name and not name.startswith("accounts/"):
        name = f"accounts/{name}"
    return GBPAccount(
        name=name,
        account_name=payload.get("accountName"),
        type=payload.get("type"),
    )


def _maps_url(payload: dict, lat: float | None, lng: float | None, title: str | None) -> str | None:
    metadata = payload.get("metadata") or {}
    explicit = metadata.get("mapsUri") or payload.get("mapsUri") or payload.get("mapsUrl")
    if explicit:
        return explicit
    if payload.get("placeId"):
        return f"https://maps.google.com/maps/place/?q=place_id:{payload['placeId']}"
    if lat is not None and lng is not None:
        return f"https://maps.google.com/maps?q={lat},{lng}"
    address = payload.get("storefrontAddress") or {}
    lines = ", ".join(address.get("addressLines") or [])
    if lines and address.get("locality"):
        query = f"{lines}, {address.get('locality')}, {address.get('administrativeArea') or ''}"
        return f"https://maps.google.com/maps/search/?api=1&query={quote_plus(query)}"
    if title and address.get("locality"):
        query = f"{title}, {address['locality']}"
        return f"https://maps.google.com/maps/search/?api=1&query={quote_plus(query)}"
    return None


def normalize_location(payload: dict, account_name: str | None = None) -> GBPLocation:
    """Build a canonical location from either the raw listing shape or a pre-shaped dict."""
    raw_name = payload.get("name") or ""
    location_id = payload.get("id") or raw_name
    if isinstance(location_id, str) and location_id.startswith("locations/") and account_name:
        location_id = f"{normalize_account({'name': account_name}).name}/{location_id}"

    title = payload.get("title") or payload.get("locationName")
    if not title and raw_name and not raw_name.startswith(("locations/", "accounts/")):
        title = raw_name

    address = payload.get("storefrontAddress") or {}
    raw_address = payload.get("address") if isinstance(payload.get("address"), str) else None

    latlng = payload.get("latlng") or {}
    lat = latlng.get("latitude")
    lng = latlng.get("longitude")

    categories = payload.get("categories")
    primary = None
    additional: list[str] = []
    if isinstance(categories, dict):
        primary = (categories.get("primaryCategory") or {}).get("displayName")
        additional = [
            c.get("displayName") for c in categories.get("additionalCategories") or []
            if isinstance(c, dict) and c.get("displayName")
        ]
    elif isinstance(categories, list):
        names = [c for c in categories if isinstance(c, str)]
        if names:
            primary, additional = names[0], names[1:]
    if isinstance(payload.get("primaryCategory"), str):
        primary = payload["primaryCategory"]

    phones = payload.get("phoneNumbers") or {}
    metadata = payload.get("metadata") or {}

    return GBPLocation(
        id=str(location_id),
        name=title,
        store_code=payload.get("storeCode"),
        phone=phones.get("primaryPhone") or payload.get("phoneNumber") or payload.get("phone"),
        address_lines=[line for line in address.get("addressLines") or [] if line],
        locality=address.get("locality"),
        administrative_area=address.get("administrativeArea"),
        postal_code=address.get("postalCode"),
        region_code=address.get("regionCode"),
        raw_address=raw_address,
        latitude=lat,
        longitude=lng,
        primary_category=primary,
        additional_categories=additional,
        website_url=payload.get("websiteUri") or payload.get("websiteUrl") or payload.get("micrositeUrl"),
        maps_url=_maps_url(payload, lat, lng, title),
        verified=bool(metadata.get("hasVoiceOfMerchant") or payload.get("verified")),
    )


def normalize_review(payload: dict) -> GBPReview:
    reviewer = payload.get("reviewer") or {}
    reply = payload.get("reviewReply") or payload.get("response") or {}
    review_id = payload.get("name") or payload.get("reviewId") or payload.get("id")
    if not review_id:
        raise ValueError("Review id is required")
    return GBPReview(
        review_id=review_id,
        reviewer_name=reviewer.get("displayName") or "Anonymous",
        reviewer_photo_url=reviewer.get("profilePhotoUrl"),
        reviewer_is_anonymous=bool(reviewer.get("isAnonymous")),
        star_rating=_star_rating(payload.get("starRating")),
        comment=payload.get("comment") or "",
        create_time=parse_timestamp(payload.get("createTime")),
        update_time=parse_timestamp(payload.get("updateTime")),
        reply_comment=reply.get("comment") or None,
        reply_time=parse_timestamp(
            reply.get("updateTime") or reply.get("createTime") or reply.get("responseTime")
        ),
    )


def normalize_post(payload: dict) -> GBPPost:
    post_id = payload.get("name") or payload.get("id")
    if not post_id:
        raise ValueError("Post id is required")
    cta = payload.get("callToAction")
    return GBPPost(
        post_id=post_id,
        summary=payload.get("summary"),
        call_to_action={"actionType": cta.get("actionType"), "url": cta.get("url")} if cta else None,
        media=[m for m in payload.get("media") or [] if isinstance(m, dict)],
        language_code=payload.get("languageCode") or "en",
        state=payload.get("state") or "LIVE",
        topic_type=payload.get("topicType") or "STANDARD",
        event=payload.get("event"),
        offer=payload.get("offer"),
        search_url=payload.get("searchUrl"),
        create_time=parse_timestamp(payload.get("createTime")),
        update_time=parse_timestamp(payload.get("updateTime")),
    )


def _daily_value(raw: Any) -> int:
    value = _to_int(raw)
    if value < 0 or value > MAX_DAILY_VALUE:
        return 0
    return value


def normalize_daily_metrics(payload: dict) -> dict[str, dict[str, int]]:
    """Group a multi-daily-metrics response by ISO date: ``{date: {field: value}}``."""
    by_day: dict[str, dict[str, int]] = defaultdict(dict)
    for multi in payload.get("multiDailyMetricTimeSeries") or []:
        for series in multi.get("dailyMetricTimeSeries") or []:
            field = DAILY_METRIC_FIELDS.get(series.get("dailyMetric"))
            if field is None:
                continue
            for dated in (series.get("timeSeries") or {}).get("datedValues") or []:
                d = dated.get("date") or {}
                try:
                    key = date(d["year"], d["month"], d["day"]).isoformat()
                except (KeyError, TypeError, ValueError):
                    continue
                by_day[key][field] = _daily_value(dated.get("value"))
    return dict(sorted(by_day.items()))


def build_insight(daily: dict[str, dict[str, int]], start: date, end: date) -> GBPInsight | None:
    """Sum daily metrics into one insight for the window; ``None`` when there is no data."""
    if not daily:
        return None
    totals: dict[str, int] = defaultdict(int)
    for metrics in daily.values():
        for field, value in metrics.items():
            totals[field] += value
    views = (
        totals["desktop_search_impressions"]
        + totals["mobile_search_impressions"]
        + totals["desktop_maps_impressions"]
        + totals["mobile_maps_impressions"]
    )
    return GBPInsight(
        period_start=start,
        period_end=end,
        views=views,
        actions=totals["website_clicks"] + totals["call_clicks"] + totals["direction_requests"],
        daily_metrics=daily,
        **totals,
    )


def normalize_keywords(payload: dict, from_year: int, from_month: int) -> list[GBPSearchKeyword]:
    keywords: list[GBPSearchKeyword] = []
    for item in payload.get("searchKeywordsCounts") or []:
        keyword = item.get("searchKeyword")
        if not keyword:
            continue
        monthly = item.get("monthlySearchCounts")
        if isinstance(monthly, list):
            for count in monthly:
                month = count.get("month")
                if not month or count.get("searchCount") is None:
                    continue
                keywords.append(
                    GBPSearchKeyword(
                        keyword=keyword,
                        year=month.get("year") or from_year,
                        month=month.get("month") or from_month,
                        impressions=_to_int(count.get("searchCount")),
                        clicks=_to_int(count.get("clicks")),
                        ctr=count.get("ctr"),
                        position=float(count.get("averagePosition") or 0),
                    )
                )
        elif isinstance(item.get("insightsValue"), dict):
            value = item["insightsValue"]
            keywords.append(
                GBPSearchKeyword(
                    keyword=keyword,
                    year=from_year,
                    month=from_month,
                    impressions=_to_int(value.get("value") or value.get("threshold")),
                )
            )
    return keywords
