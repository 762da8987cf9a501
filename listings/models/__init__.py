"""Listing models - re-exports all models and Base.metadata."""

from .base import Base, UUIDMixin, TimestampMixin, FacetMixin
from .brand import Brand
from .store import Store
from .review import Review
from .post import Post
from .performance import PerformanceSample
from .search_keyword import SearchKeywordSample
from .sync_run import SyncRun

__all__ = [
    "Base",
    "UUIDMixin",
    "TimestampMixin",
    "FacetMixin",
    "Brand",
    "Store",
    "Review",
    "Post",
    "PerformanceSample",
    "SearchKeywordSample",
    "SyncRun",
]
