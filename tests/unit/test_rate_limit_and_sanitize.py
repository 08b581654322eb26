"""Tests for the registration rate limit settings and input sanitization."""
import pytest
from starlette.requests import Request

from app.core.config import settings
from app.core.rate_limit import push_token_limit
from app.core.sanitize import UnsafeInputError, check_unsafe, sanitize_fields, sanitize_text
from app.core.utils import get_client_ip


def make_request(headers=None, client=("10.0.0.5", 5000)) -> Request:
    raw = [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()]
    return Request({"type": "http", "method": "POST", "path": "/api/v1/push-token", "headers": raw, "client": client})


class TestRateLimit:
    def test_limit_follows_settings(self, monkeypatch):
        assert push_token_limit() == "10/60 seconds"
        monkeypatch.setattr(settings, "PUSH_TOKEN_RATE_LIMIT_REQUESTS", 3)
        assert push_token_limit() == "3/60 seconds"

    def test_key_prefers_first_forwarded_hop(self):
        request = make_request({"X-Forwarded-For": "203.0.113.7, 10.0.0.1"})
        assert get_client_ip(request) == "203.0.113.7"

    def test_key_uses_real_ip_header(self):
        assert get_client_ip(make_request({"X-Real-IP": "198.51.100.4"})) == "198.51.100.4"

    def test_key_falls_back_to_peer_address(self):
        assert get_client_ip(make_request()) == "10.0.0.5"
        assert get_client_ip(make_request(client=None)) == "unknown"


class TestSanitize:
    @pytest.mark.parametrize("value, reason", [
        ("<script>alert(1)</script>", "script content"),
        ("javascript:alert(1)", "script content"),
        ('Pixel" onload="x()', "script content"),
        ("../../etc/passwd", "path traversal sequence"),
        ("%2e%2e%2fsecret", "path traversal sequence"),
        ("x' OR '1'='1", "SQL injection pattern"),
        ("1; DROP TABLE push_tokens", "SQL injection pattern"),
        ("name UNION SELECT password", "SQL injection pattern"),
    ])
    def test_unsafe_patterns(self, value, reason):
        assert check_unsafe(value) == reason

    @pytest.mark.parametrize("value", ["Pixel 8 Pro", "iPhone 15", "2.4.1", "device-0a1b2c", "user_42"])
    def test_ordinary_values_pass(self, value):
        assert check_unsafe(value) is None

    def test_trims_and_strips_control_characters(self):
        assert sanitize_text("  Pixel\x00 8\x07  ", "device_name") == "Pixel 8"

    def test_blank_becomes_none(self):
        assert sanitize_text("   ", "device_name") is None
        assert sanitize_text(None, "device_name") is None

    def test_length_limit(self):
        with pytest.raises(UnsafeInputError) as exc:
            sanitize_text("a" * 65, "app_version", max_length=64)
        assert exc.value.field_name == "app_version"

    def test_sanitize_fields_only_touches_listed_strings(self):
        cleaned = sanitize_fields(
            {"device_name": " Pixel ", "token": " keep as is ", "platform": "ios", "count": 3},
            {"device_name": 256, "count": 10},
        )
        assert cleaned == {"device_name": "Pixel", "token": " keep as is ", "platform": "ios", "count": 3}

    def test_sanitize_fields_raises_with_field_name(self):
        with pytest.raises(UnsafeInputError, match="device_id contains script content"):
            sanitize_fields({"device_id": "<script>"}, {"device_id": 256})
