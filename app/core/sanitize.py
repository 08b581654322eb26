"""Input screening for device registration fields (script injection, SQL keywords, path traversal)."""
import re
from typing import Any

_SCRIPT_PATTERN = re.compile(r"<\s*/?\s*script|javascript\s*:|on\w+\s*=|<\s*iframe", re.IGNORECASE)
_SQL_PATTERN = re.compile(
    r"(\b(union\s+select|drop\s+table|insert\s+into|delete\s+from|update\s+\w+\s+set|exec(ute)?\s)\b)|(--|;)\s*$|'\s*or\s+'?1'?\s*=\s*'?1",
    re.IGNORECASE,
)
_PATH_TRAVERSAL_PATTERN = re.compile(r"(\.\./|\.\.\\|%2e%2e(%2f|%5c)|\x00)", re.IGNORECASE)
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


class UnsafeInputError(ValueError):
    def __init__(self, field_name: str, reason: str):
        super().__init__(f"{field_name} contains {reason}")
        self.field_name = field_name
        self.reason = reason


def check_unsafe(value: str) -> str | None:
    """Return a description of the first unsafe pattern found, or None."""
    if _SCRIPT_PATTERN.search(value):
        return "script content"
    if _PATH_TRAVERSAL_PATTERN.search(value):
        return "path traversal sequence"
    if _SQL_PATTERN.search(value):
        return "SQL injection pattern"
    return None


def sanitize_text(value: str | None, field_name: str, max_length: int = 256) -> str | None:
    """Trim, strip control characters and reject unsafe content. Raises UnsafeInputError."""
    if value is None:
        return None
    cleaned = _CONTROL_CHARS.sub("", value).strip()
    if len(cleaned) > max_length:
        raise UnsafeInputError(field_name, f"more than {max_length} characters")
    reason = check_unsafe(cleaned)
    if reason:
        raise UnsafeInputError(field_name, reason)
    return cleaned or None


def sanitize_fields(values: dict[str, Any], limits: dict[str, int]) -> dict[str, Any]:
    """Sanitize the string fields named in `limits` (field -> max length); other keys pass through."""
    cleaned = dict(values)
    for name, limit in limits.items():
        if isinstance(cleaned.get(name), str):
            cleaned[name] = sanitize_text(cleaned[name], name, limit)
    return cleaned
