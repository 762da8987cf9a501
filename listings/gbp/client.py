"""Business-profile API client - async httpx wrapper implementing FacetFetcher.

Usage:
    async with GBPClient(GBPConfig(token=access_token)) as gbp:
        accounts = await gbp.list_accounts()
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Awaitable, Callable

import httpx

from ..config import settings
from ..schemas.gbp import (
    AccountInfo,
    GBPAccount,
    GBPInsight,
    GBPLocation,
    GBPPost,
    GBPReview,
    GBPSearchKeyword,
)
from .errors import GBPAPIError
from .normalize import (
    CORE_DAILY_METRICS,
    build_insight,
    normalize_account,
    normalize_account_info,
    normalize_daily_metrics,
    normalize_keywords,
    normalize_location,
    normalize_post,
    normalize_review,
    split_location_id,
)

logger = logging.getLogger(__name__)

LOCATION_READ_MASK = (
    "name,languageCode,storeCode,title,phoneNumbers,categories,storefrontAddress,"
    "websiteUri,labels,latlng,openInfo,metadata,profile"
)
RETRYABLE_STATUSES = frozenset({408, 429, 500, 502, 503, 504})


@dataclass
class GBPConfig:
    """Credentials and endpoint settings for one client instance."""

    token: str
    timeout: float = field(default_factory=lambda: settings.gbp_request_timeout_seconds)
    max_attempts: int = field(default_factory=lambda: settings.gbp_request_max_attempts)
    account_api_url: str = field(default_factory=lambda: settings.gbp_account_api_url)
    business_info_api_url: str = field(default_factory=lambda: settings.gbp_business_info_api_url)
    v4_api_url: str = field(default_factory=lambda: settings.gbp_v4_api_url)
    performance_api_url: str = field(default_factory=lambda: settings.gbp_performance_api_url)
    userinfo_url: str = field(default_factory=lambda: settings.google_userinfo_url)


class GBPClient:
    """Business-profile API client.

    Transient HTTP statuses (408, 429, 5xx) and transport errors are retried
    a few times with a short backoff; anything else surfaces as GBPAPIError.
    """

    def __init__(
        self,
        config: GBPConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.config = config
        self._transport = transport
        self._sleep = sleep
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "GBPClient":
        self._client = httpx.AsyncClient(
            timeout=self.config.timeout,
            transport=self._transport,
            headers={
                "Authorization": f"Bearer {self.config.token}",
                "Accept": "application/json",
                "User-Agent": "listings-sync/1.0",
            },
        )
        return self

    async def __aexit__(self, *args):
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def http(self) -> httpx.AsyncClient:
        if not self._client:
            raise RuntimeError("Client not initialized. Use 'async with' context.")
        return self._client

    def _backoff(self, attempt: int) -> float:
        return min(1.0 * (2 ** (attempt - 1)) + random.uniform(0, 0.25), 5.0)

    async def _get(self, url: str, params: Any = None) -> dict:
        """GET with transient retry. Raises GBPAPIError on a final non-2xx."""
        attempts = max(1, self.config.max_attempts)
        for attempt in range(1, attempts + 1):
            try:
                resp = await self.http.get(url, params=params)
            except httpx.TransportError as exc:
                if attempt >= attempts:
                    raise
                delay = self._backoff(attempt)
                logger.warning(
                    "Network error for %s, retrying in %.1fs (attempt %d/%d): %s",
                    url, delay, attempt, attempts, exc,
                )
                await self._sleep(delay)
                continue

            if resp.status_code in RETRYABLE_STATUSES and attempt < attempts:
                delay = self._backoff(attempt)
                logger.warning(
                    "Transient HTTP %d for %s, retrying in %.1fs (attempt %d/%d)",
                    resp.status_code, url, delay, attempt, attempts,
                )
                await self._sleep(delay)
                continue
            if resp.is_error:
                raise GBPAPIError(resp.status_code, url, resp.text)
            return resp.json() if resp.content else {}
        raise RuntimeError("unreachable")  # pragma: no cover

    async def _paginate(self, url: str, key: str, params: dict | None = None) -> list[dict]:
        items: list[dict] = []
        page_params = dict(params or {})
        while True:
            data = await self._get(url, params=page_params)
            items.extend(i for i in data.get(key) or [] if isinstance(i, dict))
            token = data.get("nextPageToken")
            if not token:
                return items
            page_params["pageToken"] = token

    # -- account / location discovery ----------------------------------------

    async def get_account_info(self) -> AccountInfo:
        data = await self._get(self.config.userinfo_url)
        return normalize_account_info(data)

    async def list_accounts(self) -> list[GBPAccount]:
        raw = await self._paginate(f"{self.config.account_api_url}/accounts", "accounts")
        return [normalize_account(a) for a in raw if a.get("name")]

    async def list_locations(self, account_name: str) -> list[GBPLocation]:
        account = normalize_account({"name": account_name})
        raw = await self._paginate(
            f"{self.config.business_info_api_url}/{account.name}/locations",
            "locations",
            {"readMask": LOCATION_READ_MASK, "pageSize": 100},
        )
        logger.info("Fetched %d locations for %s", len(raw), account.name)
        return [normalize_location(loc, account.name) for loc in raw if loc.get("name")]

    # -- facets ---------------------------------------------------------------

    async def fetch_posts(self, location_id: str) -> list[GBPPost]:
        account_id, loc_id = split_location_id(location_id)
        raw = await self._paginate(
            f"{self.config.v4_api_url}/accounts/{account_id}/locations/{loc_id}/localPosts",
            "localPosts",
        )
        return [normalize_post(p) for p in raw if p.get("name")]

    async def fetch_reviews(self, location_id: str) -> list[GBPReview]:
        account_id, loc_id = split_location_id(location_id)
        raw = await self._paginate(
            f"{self.config.v4_api_url}/accounts/{account_id}/locations/{loc_id}/reviews",
            "reviews",
            {"pageSize": 50},
        )
        return [normalize_review(r) for r in raw if r.get("name")]

    async def fetch_insights(self, location_id: str, start: date, end: date) -> GBPInsight | None:
        _, loc_id = split_location_id(location_id)
        url = f"{self.config.performance_api_url}/locations/{loc_id}:fetchMultiDailyMetricsTimeSeries"
        metrics = list(CORE_DAILY_METRICS)
        while metrics:
            params: list[tuple[str, Any]] = [("dailyMetrics", m) for m in metrics]
            params += [
                ("dailyRange.start_date.year", start.year),
                ("dailyRange.start_date.month", start.month),
                ("dailyRange.start_date.day", start.day),
                ("dailyRange.end_date.year", end.year),
                ("dailyRange.end_date.month", end.month),
                ("dailyRange.end_date.day", end.day),
            ]
            try:
                data = await self._get(url, params=params)
            except GBPAPIError as exc:
                # Some profiles reject individual metrics; retry without them.
                rejected = [m for m in metrics if exc.status_code == 400 and m in exc.body]
                if not rejected:
                    raise
                logger.info("Dropping unsupported metrics for %s: %s", location_id, rejected)
                metrics = [m for m in metrics if m not in rejected]
                continue
            return build_insight(normalize_daily_metrics(data), start, end)
        return None

    async def fetch_keywords(
        self,
        location_id: str,
        from_year: int,
        from_month: int,
        to_year: int,
        to_month: int,
    ) -> list[GBPSearchKeyword]:
        _, loc_id = split_location_id(location_id)
        raw = await self._paginate(
            f"{self.config.performance_api_url}/locations/{loc_id}/searchkeywords/impressions/monthly",
            "searchKeywordsCounts",
            {
                "monthlyRange.start_month.year": from_year,
                "monthlyRange.start_month.month": from_month,
                "monthlyRange.end_month.year": to_year,
                "monthlyRange.end_month.month": to_month,
            },
        )
        return normalize_keywords({"searchKeywordsCounts": raw}, from_year, from_month)
