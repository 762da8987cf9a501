"""Sync pipeline schemas: run config, events, and write statistics."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field

from ..config import settings


class SyncConfig(BaseModel):
    max_concurrent_locations: int = Field(
        default_factory=lambda: settings.sync_max_concurrent_locations, ge=1
    )
    heartbeat_interval_seconds: float = Field(
        default_factory=lambda: settings.sync_heartbeat_interval_seconds, gt=0
    )
    save_max_retries: int = Field(default_factory=lambda: settings.sync_save_max_retries, ge=0)
    save_base_delay_seconds: float = Field(
        default_factory=lambda: settings.sync_save_base_delay_seconds, ge=0
    )
    save_max_delay_seconds: float = Field(
        default_factory=lambda: settings.sync_save_max_delay_seconds, ge=0
    )
    fetch_timeout_seconds: float = Field(
        default_factory=lambda: settings.sync_fetch_timeout_seconds, gt=0
    )
    save_timeout_seconds: float = Field(
        default_factory=lambda: settings.sync_save_timeout_seconds, gt=0
    )
    insights_lookback_days: int = Field(
        default_factory=lambda: settings.sync_insights_lookback_days, ge=1
    )
    keywords_lookback_months: int = Field(
        default_factory=lambda: settings.sync_keywords_lookback_months, ge=0
    )


class SyncEvent(BaseModel):
    type: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    payload: dict[str, Any] = {}

    def to_sse(self) -> str:
        return f"data: {self.model_dump_json()}\n\n"


class BatchWriteStats(BaseModel):
    inserted: int = 0
    modified: int = 0
    upserted: int = 0


class FacetCounters(BaseModel):
    fetched: int = 0
    saved: int = 0
    failed: int = 0


class SyncSummary(BaseModel):
    run_id: str | None = None
    status: str
    total_locations: int = 0
    processed_locations: int = 0
    skipped_locations: int = 0
    warnings: int = 0
    counters: dict[str, FacetCounters] = {}
    error: str | None = None
