"""Errors raised by the business-profile fetchers."""

from __future__ import annotations


class GBPAPIError(Exception):
    """Non-2xx response from a business-profile endpoint."""

    def __init__(self, status_code: int, endpoint: str, body: str = "") -> None:
        self.status_code = status_code
        self.endpoint = endpoint
        self.body = body
        detail = body[:300] if body else ""
        super().__init__(f"HTTP {status_code} from {endpoint}: {detail}".rstrip(": "))


class InvalidLocationIdError(ValueError):
    """Location id does not have the ``accounts/{a}/locations/{l}`` shape."""

    def __init__(self, location_id: str) -> None:
        self.location_id = location_id
        super().__init__(f"Invalid location id format: {location_id!r}")
