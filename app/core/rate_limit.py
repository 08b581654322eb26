"""
Request rate limiting (slowapi). Limits are keyed by client IP and counted per route.
The default memory storage counts per process; set RATE_LIMIT_STORAGE_URI to share counters.
"""
import logging

from fastapi import Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded

from app.core.config import settings
from app.core.utils import get_client_ip

logger = logging.getLogger(__name__)

limiter = Limiter(
    key_func=get_client_ip,
    storage_uri=settings.RATE_LIMIT_STORAGE_URI,
    headers_enabled=True,
)


def push_token_limit() -> str:
    """Registration limit, read per request so configuration changes apply without a restart."""
    return f"{settings.PUSH_TOKEN_RATE_LIMIT_REQUESTS}/{settings.PUSH_TOKEN_RATE_LIMIT_WINDOW_SECONDS} seconds"


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    logger.warning("Rate limit exceeded: ip=%s path=%s limit=%s", get_client_ip(request), request.url.path, exc.detail)
    response = JSONResponse(
        status_code=429,
        content={"success": False, "message": f"Too many requests: {exc.detail}"},
    )
    # adds Retry-After and X-RateLimit-* from the limit that was hit
    return request.app.state.limiter._inject_headers(response, request.state.view_rate_limit)
