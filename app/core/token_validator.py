"""
Push token format validation and health scoring.
Recognises three token families: Expo (modern and legacy), FCM and APNS.
Validation is pure, so results are cached per exact token string for the process lifetime.
"""
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable

from app.core.utils import utc_now
from app.models.enums import TokenFormat

logger = logging.getLogger(__name__)

MIN_TOKEN_LENGTH = 10
MAX_TOKEN_LENGTH = 4096
UNREGISTERED = "UNREGISTERED"

_ALLOWED_CHARS = re.compile(r"^[a-zA-Z0-9_\-\[\]]+$")
_EXPO_LEGACY = re.compile(r"^ExponentPushToken\[([a-zA-Z0-9_-]+)\]$")
_EXPO_MODERN = re.compile(r"^ExpoPushToken\[([a-zA-Z0-9_-]+)\]$")
_FCM = re.compile(r"^[a-zA-Z0-9_-]{140,}$")
FCM_WEB_MIN_LENGTH = 152
_APNS = re.compile(r"^[a-f0-9]{64}$")

HEALTHY_SCORE = 50


@dataclass(frozen=True)
class TokenValidationResult:
    is_valid: bool
    format: TokenFormat = TokenFormat.unknown
    errors: tuple[str, ...] = field(default_factory=tuple)
    token_type: str | None = None
    platform: str | None = None
    is_legacy: bool | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "format": self.format.value,
            "errors": list(self.errors),
            "token_type": self.token_type,
            "platform": self.platform,
            "is_legacy": self.is_legacy,
        }


def _invalid(*errors: str, token_format: TokenFormat = TokenFormat.unknown) -> TokenValidationResult:
    return TokenValidationResult(is_valid=False, format=token_format, errors=tuple(errors))


def _classify(token: str) -> TokenValidationResult:
    if len(token) < MIN_TOKEN_LENGTH:
        return _invalid(f"Token too short (minimum {MIN_TOKEN_LENGTH} characters)")
    if len(token) > MAX_TOKEN_LENGTH:
        return _invalid(f"Token too long (maximum {MAX_TOKEN_LENGTH} characters)")
    if not _ALLOWED_CHARS.match(token):
        return _invalid("Token contains invalid characters")
    if token == UNREGISTERED:
        return _invalid("Token is unregistered")

    for pattern, token_type, is_legacy in (
        (_EXPO_LEGACY, "ExponentPushToken", True),
        (_EXPO_MODERN, "ExpoPushToken", False),
    ):
        match = pattern.match(token)
        if match:
            if match.group(1) == UNREGISTERED:
                return _invalid("Token is unregistered", token_format=TokenFormat.expo)
            return TokenValidationResult(
                is_valid=True, format=TokenFormat.expo, token_type=token_type, is_legacy=is_legacy,
            )

    if _FCM.match(token):
        platform = "web" if len(token) >= FCM_WEB_MIN_LENGTH else "android"
        return TokenValidationResult(is_valid=True, format=TokenFormat.fcm, token_type="FCM", platform=platform)

    if _APNS.match(token):
        return TokenValidationResult(is_valid=True, format=TokenFormat.apns, token_type="APNS", platform="ios")

    return _invalid("Token format not recognized")


class TokenValidator:
    """Validates push tokens and caches results per exact token string."""

    def __init__(self, max_cache_size: int = 10000):
        self.max_cache_size = max_cache_size
        self._cache: dict[str, TokenValidationResult] = {}

    def validate(self, token: Any) -> TokenValidationResult:
        if not token or not isinstance(token, str):
            return _invalid("Token is null, empty, or not a string")

        cached = self._cache.get(token)
        if cached is not None:
            return cached

        result = _classify(token)
        if len(self._cache) >= self.max_cache_size:
            # dicts keep insertion order: drop the oldest entry
            self._cache.pop(next(iter(self._cache)))
        self._cache[token] = result
        return result

    def batch_validate(self, tokens: Iterable[str]) -> dict[str, TokenValidationResult]:
        results = {token: self.validate(token) for token in tokens}
        logger.debug("Batch validated %d tokens", len(results))
        return results

    def cache_size(self) -> int:
        return len(self._cache)

    def clear_cache(self) -> None:
        self._cache.clear()


def _days_since(moment: datetime | None, now: datetime) -> float:
    if moment is None:
        return float("inf")
    return (now - moment).total_seconds() / 86400


def health_score(record: Any, validation: TokenValidationResult, now: datetime | None = None) -> int:
    """
    0-100 health score for a stored token.
    record needs created_at, last_used, device_id and device_name attributes.
    """
    now = now or utc_now()
    score = 0

    if validation.is_valid:
        score += 40

    age_days = _days_since(getattr(record, "created_at", None), now)
    if age_days < 7:
        score += 20
    elif age_days < 30:
        score += 15
    elif age_days < 90:
        score += 10
    else:
        score += 5

    idle_days = _days_since(getattr(record, "last_used", None), now)
    if idle_days < 1:
        score += 20
    elif idle_days < 7:
        score += 15
    elif idle_days < 30:
        score += 10
    else:
        score += 5

    if validation.is_legacy is False:
        score += 10
    elif validation.is_legacy is True:
        score += 5

    has_device_id = bool(getattr(record, "device_id", None))
    has_device_name = bool(getattr(record, "device_name", None))
    if has_device_id and has_device_name:
        score += 10
    elif has_device_id or has_device_name:
        score += 5

    return min(100, max(0, score))


def score_bucket(score: int) -> str:
    if score <= 25:
        return "0-25"
    if score <= 50:
        return "26-50"
    if score <= 75:
        return "51-75"
    return "76-100"
