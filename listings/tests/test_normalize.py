"""Tests for payload normalization."""

from __future__ import annotations

from datetime import date, datetime, timezone

import pytest

from listings.gbp.errors import InvalidLocationIdError
from listings.gbp.normalize import (
    build_insight,
    is_valid_location_id,
    normalize_account,
    normalize_daily_metrics,
    normalize_keywords,
    normalize_location,
    normalize_post,
    normalize_review,
    parse_timestamp,
    split_location_id,
)


def test_split_location_id():
    assert split_location_id("accounts/123/locations/456") == ("123", "456")


@pytest.mark.parametrize(
    "bad",
    ["locations/456", "accounts/123", "accounts//locations/456", "accounts/1/places/2", "", None],
)
def test_split_location_id_rejects_malformed(bad):
    with pytest.raises(InvalidLocationIdError):
        split_location_id(bad)
    assert not is_valid_location_id(bad)


def test_parse_timestamp_handles_nanoseconds_and_zulu():
    parsed = parse_timestamp("2026-03-04T05:06:07.123456789Z")
    assert parsed == datetime(2026, 3, 4, 5, 6, 7, 123456, tzinfo=timezone.utc)
    assert parse_timestamp("not a date") is None
    assert parse_timestamp(None) is None


def test_normalize_account_adds_prefix():
    assert normalize_account({"name": "42", "accountName": "Acme"}).name == "accounts/42"
    assert normalize_account({"name": "accounts/42"}).account_id == "42"


def test_normalize_location_raw_shape():
    payload = {
        "name": "locations/9",
        "title": "Acme Downtown",
        "storeCode": "DT-1",
        "phoneNumbers": {"primaryPhone": "+1 555 0100"},
        "storefrontAddress": {
            "addressLines": ["100 Main St", "Suite 2"],
            "locality": "Springfield",
            "administrativeArea": "IL",
            "postalCode": "62701",
            "regionCode": "US",
        },
        "categories": {
            "primaryCategory": {"displayName": "Coffee shop"},
            "additionalCategories": [{"displayName": "Bakery"}],
        },
        "websiteUri": "https://acme.test",
        "latlng": {"latitude": 39.8, "longitude": -89.6},
        "metadata": {"hasVoiceOfMerchant": True},
    }
    loc = normalize_location(payload, "accounts/7")
    assert loc.id == "accounts/7/locations/9"
    assert loc.account_id == "7"
    assert loc.name == "Acme Downtown"
    assert loc.phone == "+1 555 0100"
    assert loc.address_lines == ["100 Main St", "Suite 2"]
    assert loc.primary_category == "Coffee shop"
    assert loc.additional_categories == ["Bakery"]
    assert loc.website_url == "https://acme.test"
    assert loc.maps_url == "https://maps.google.com/maps?q=39.8,-89.6"
    assert loc.verified is True


def test_normalize_location_preshaped():
    loc = normalize_location({
        "id": "accounts/7/locations/9",
        "name": "Acme Uptown",
        "address": "5 Oak Ave, Springfield, 62702",
        "categories": ["Cafe", "Bakery"],
        "websiteUrl": "https://uptown.acme.test",
    })
    assert loc.name == "Acme Uptown"
    assert loc.raw_address == "5 Oak Ave, Springfield, 62702"
    assert loc.primary_category == "Cafe"
    assert loc.additional_categories == ["Bakery"]
    assert loc.website_url == "https://uptown.acme.test"


def test_normalize_review():
    review = normalize_review({
        "name": "accounts/7/locations/9/reviews/abc",
        "reviewer": {"displayName": "Jo"},
        "starRating": "FOUR",
        "comment": "Nice",
        "createTime": "2026-01-02T03:04:05Z",
        "reviewReply": {"comment": "Thanks!", "updateTime": "2026-01-03T00:00:00Z"},
    })
    assert review.review_id == "accounts/7/locations/9/reviews/abc"
    assert review.star_rating == 4
    assert review.has_response
    assert review.reply_time == datetime(2026, 1, 3, tzinfo=timezone.utc)


def test_normalize_review_defaults():
    review = normalize_review({"reviewId": "r1", "starRating": 9})
    assert review.reviewer_name == "Anonymous"
    assert review.star_rating == 5
    assert not review.has_response
    with pytest.raises(ValueError):
        normalize_review({"comment": "no id"})


def test_normalize_post():
    post = normalize_post({
        "name": "accounts/7/locations/9/localPosts/p",
        "summary": "Hello",
        "callToAction": {"actionType": "LEARN_MORE", "url": "https://acme.test", "extra": 1},
    })
    assert post.call_to_action == {"actionType": "LEARN_MORE", "url": "https://acme.test"}
    assert post.state == "LIVE"
    assert post.topic_type == "STANDARD"


def _series(metric, values):
    return {
        "dailyMetric": metric,
        "timeSeries": {
            "datedValues": [
                {"date": {"year": 2026, "month": 9, "day": day}, "value": value}
                for day, value in values
            ]
        },
    }


def test_daily_metrics_and_insight_totals():
    payload = {
        "multiDailyMetricTimeSeries": [{
            "dailyMetricTimeSeries": [
                _series("WEBSITE_CLICKS", [(1, "3"), (2, "2")]),
                _series("CALL_CLICKS", [(1, "1")]),
                _series("BUSINESS_DIRECTION_REQUESTS", [(2, "4")]),
                _series("BUSINESS_IMPRESSIONS_MOBILE_MAPS", [(1, "50"), (2, "-5")]),
                _series("BUSINESS_IMPRESSIONS_DESKTOP_SEARCH", [(2, "5000000")]),
                _series("SOMETHING_ELSE", [(1, "7")]),
            ]
        }]
    }
    daily = normalize_daily_metrics(payload)
    assert list(daily) == ["2026-09-01", "2026-09-02"]
    assert daily["2026-09-01"] == {"website_clicks": 3, "call_clicks": 1, "mobile_maps_impressions": 50}
    # Out-of-range daily values are zeroed
    assert daily["2026-09-02"]["mobile_maps_impressions"] == 0
    assert daily["2026-09-02"]["desktop_search_impressions"] == 0

    insight = build_insight(daily, date(2026, 9, 1), date(2026, 9, 2))
    assert insight.website_clicks == 5
    assert insight.views == 50
    assert insight.actions == 5 + 1 + 4


def test_build_insight_without_data():
    assert build_insight({}, date(2026, 9, 1), date(2026, 9, 2)) is None


def test_normalize_keywords_both_shapes():
    payload = {
        "searchKeywordsCounts": [
            {
                "searchKeyword": "coffee",
                "monthlySearchCounts": [
                    {"month": {"year": 2026, "month": 8}, "searchCount": "12", "clicks": 3},
                    {"month": {"year": 2026, "month": 9}},
                ],
            },
            {"searchKeyword": "latte", "insightsValue": {"threshold": "15"}},
            {"insightsValue": {"value": "1"}},
        ]
    }
    keywords = normalize_keywords(payload, 2026, 7)
    assert [(k.keyword, k.year, k.month, k.impressions) for k in keywords] == [
        ("coffee", 2026, 8, 12),
        ("latte", 2026, 7, 15),
    ]
    assert keywords[0].clicks == 3
