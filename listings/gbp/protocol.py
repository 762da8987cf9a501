"""The facet fetcher capability consumed by the sync engine."""

from __future__ import annotations

from datetime import date
from typing import Protocol

from ..schemas.gbp import (
    AccountInfo,
    GBPAccount,
    GBPInsight,
    GBPLocation,
    GBPPost,
    GBPReview,
    GBPSearchKeyword,
)


class FacetFetcher(Protocol):
    """Read operations against one set of business-profile credentials.

    Each call is independent. An empty list is a successful fetch with no
    data; failures raise. Callers are responsible for timeouts.
    """

    async def get_account_info(self) -> AccountInfo: ...

    async def list_accounts(self) -> list[GBPAccount]: ...

    async def list_locations(self, account_name: str) -> list[GBPLocation]: ...

    async def fetch_posts(self, location_id: str) -> list[GBPPost]: ...

    async def fetch_insights(self, location_id: str, start: date, end: date) -> GBPInsight | None: ...

    async def fetch_keywords(
        self,
        location_id: str,
        from_year: int,
        from_month: int,
        to_year: int,
        to_month: int,
    ) -> list[GBPSearchKeyword]: ...

    async def fetch_reviews(self, location_id: str) -> list[GBPReview]: ...
