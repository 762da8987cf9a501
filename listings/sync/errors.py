"""Error classification and retry policy for the sync pipeline."""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass

import httpx
from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..gbp.errors import GBPAPIError, InvalidLocationIdError

logger = logging.getLogger(__name__)

CATEGORY_API = "api"
CATEGORY_DATABASE = "database"
CATEGORY_NETWORK = "network"
CATEGORY_VALIDATION = "validation"
CATEGORY_UNKNOWN = "unknown"

SEVERITY_LOW = "low"
SEVERITY_MEDIUM = "medium"
SEVERITY_HIGH = "high"
SEVERITY_CRITICAL = "critical"

# status -> (code, retryable, severity)
_HTTP_STATUS_TABLE: dict[int, tuple[str, bool, str]] = {
    400: ("BAD_REQUEST", False, SEVERITY_MEDIUM),
    401: ("UNAUTHORIZED", False, SEVERITY_HIGH),
    403: ("PERMISSION_DENIED", False, SEVERITY_LOW),
    404: ("NOT_FOUND", False, SEVERITY_LOW),
    408: ("REQUEST_TIMEOUT", True, SEVERITY_MEDIUM),
    429: ("RATE_LIMITED", True, SEVERITY_MEDIUM),
    500: ("SERVER_ERROR", True, SEVERITY_HIGH),
    502: ("SERVER_ERROR", True, SEVERITY_HIGH),
    503: ("SERVER_ERROR", True, SEVERITY_HIGH),
    504: ("SERVER_ERROR", True, SEVERITY_HIGH),
}


class SyncError(Exception):
    """Base class for errors raised by the sync engine itself."""


class BrandResolutionError(SyncError):
    pass


class SyncRunNotFoundError(SyncError):
    pass


class SyncAlreadyRunningError(SyncError):
    pass


@dataclass(frozen=True)
class ErrorInfo:
    code: str
    message: str
    retryable: bool
    category: str = CATEGORY_UNKNOWN
    severity: str = SEVERITY_MEDIUM

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
            "category": self.category,
            "severity": self.severity,
        }


def _status_code(exc: BaseException) -> int | None:
    if isinstance(exc, GBPAPIError):
        return exc.status_code
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code
    return None


def classify_error(exc: BaseException) -> ErrorInfo:
    """Map an exception onto a code, retryability, category, and severity."""
    message = str(exc) or type(exc).__name__

    if isinstance(exc, (asyncio.TimeoutError, TimeoutError, httpx.TimeoutException)):
        return ErrorInfo("TIMEOUT", "Request timed out", True, CATEGORY_NETWORK, SEVERITY_MEDIUM)

    status = _status_code(exc)
    if status is not None:
        if status in _HTTP_STATUS_TABLE:
            code, retryable, severity = _HTTP_STATUS_TABLE[status]
        elif status >= 500:
            code, retryable, severity = "SERVER_ERROR", True, SEVERITY_HIGH
        else:
            code, retryable, severity = f"HTTP_{status}", False, SEVERITY_MEDIUM
        return ErrorInfo(code, message, retryable, CATEGORY_API, severity)

    if isinstance(exc, IntegrityError):
        return ErrorInfo("DUPLICATE_KEY", message, False, CATEGORY_DATABASE, SEVERITY_LOW)
    if isinstance(exc, SQLAlchemyError):
        return ErrorInfo("DATABASE_ERROR", message, True, CATEGORY_DATABASE, SEVERITY_HIGH)

    if isinstance(exc, (httpx.TransportError, ConnectionError)):
        return ErrorInfo("CONNECTION_ERROR", message, True, CATEGORY_NETWORK, SEVERITY_MEDIUM)

    if isinstance(exc, (InvalidLocationIdError, ValidationError, ValueError)):
        return ErrorInfo("VALIDATION_ERROR", message, False, CATEGORY_VALIDATION, SEVERITY_LOW)

    lowered = message.lower()
    if "econnrefused" in lowered or "enotfound" in lowered or "connection reset" in lowered:
        return ErrorInfo("CONNECTION_ERROR", message, True, CATEGORY_NETWORK, SEVERITY_MEDIUM)
    if "invalid" in lowered or "required" in lowered:
        return ErrorInfo("VALIDATION_ERROR", message, False, CATEGORY_VALIDATION, SEVERITY_LOW)

    return ErrorInfo("UNKNOWN_ERROR", message, False, CATEGORY_UNKNOWN, SEVERITY_MEDIUM)


def format_error_for_user(exc: BaseException) -> str:
    info = classify_error(exc)
    if info.category == CATEGORY_API:
        if info.code == "PERMISSION_DENIED":
            return (
                "This business profile API feature is not available for your account type. "
                "This is common and expected."
            )
        if info.code == "NOT_FOUND":
            return (
                "The requested API endpoint is not available. "
                "Some features may not be enabled for your cloud project."
            )
        return f"API Error: {info.message}"
    if info.category == CATEGORY_DATABASE:
        if info.code == "DUPLICATE_KEY":
            return "Data already exists in the database. This is normal during sync operations."
        return "Database operation failed. Data may not have been saved properly."
    if info.category == CATEGORY_NETWORK:
        return "Network connection issue. The operation will be retried automatically."
    if info.category == CATEGORY_VALIDATION:
        return "Invalid data format. Please check your input."
    return info.message


def log_error(exc: BaseException, context: str) -> ErrorInfo:
    info = classify_error(exc)
    level = logging.WARNING if info.severity == SEVERITY_LOW else logging.ERROR
    logger.log(
        level,
        "[%s] %s_%s: %s",
        context,
        info.category.upper(),
        info.code,
        info.message,
        exc_info=info.severity == SEVERITY_CRITICAL,
    )
    return info


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff: ``base_delay * multiplier**(retry-1)``, capped."""

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    multiplier: float = 2.0
    jitter: float = 0.0  # fraction of the delay added at random

    @classmethod
    def from_config(cls, config) -> "RetryPolicy":
        return cls(
            max_retries=config.save_max_retries,
            base_delay=config.save_base_delay_seconds,
            max_delay=config.save_max_delay_seconds,
            jitter=0.1,
        )

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def delay_for(self, retry: int) -> float:
        """Delay before the given retry (1-indexed)."""
        delay = min(self.base_delay * (self.multiplier ** (retry - 1)), self.max_delay)
        if self.jitter:
            delay = min(delay + delay * random.uniform(0, self.jitter), self.max_delay)
        return delay

    def schedule(self) -> list[float]:
        return [
            min(self.base_delay * (self.multiplier ** (retry - 1)), self.max_delay)
            for retry in range(1, self.max_retries + 1)
        ]

    def should_retry(self, info: ErrorInfo, retries_done: int) -> bool:
        return info.retryable and retries_done < self.max_retries
