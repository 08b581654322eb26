"""Shared utilities used across the app."""
import uuid
from datetime import datetime
from typing import Iterator, Sequence, TypeVar

T = TypeVar("T")


def new_id() -> str:
    """Primary key for rows created by this service (ids from the main store are kept as-is)."""
    return uuid.uuid4().hex


def utc_now() -> datetime:
    """Naive UTC timestamp, matching the DateTime columns."""
    return datetime.utcnow()


def token_preview(token: str | None, length: int = 20) -> str:
    """Shortened token for logs. Full token values are never logged."""
    if not token:
        return ""
    return f"{token[:length]}..." if len(token) > length else token


def chunked(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    """Yield consecutive slices of at most `size` items."""
    if size <= 0:
        raise ValueError("size must be positive")
    for start in range(0, len(items), size):
        yield items[start:start + size]


def get_client_ip(request) -> str:
    """Client IP, preferring the first X-Forwarded-For hop when behind a proxy."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()
    return request.client.host if request.client else "unknown"
