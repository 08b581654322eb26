import asyncio
import logging

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.api.v1.api_router import api_router
from app.core.config import settings
from app.core.cron_runner import start_background_tasks
from app.core.database import async_session_maker
from app.core.pipeline import build_pipeline
from app.core.rate_limit import limiter, rate_limit_exceeded_handler

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Site Notification API",
    description="Push notification backend for construction site activity: tokens, recipients, delivery and retries",
    version="1.0.0",
    openapi_url="/openapi.json",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # In production, replace with actual frontend domains
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

app.include_router(api_router, prefix="/api/v1")


@app.on_event("startup")
async def startup_event():
    """Build the notification pipeline and start the retry and maintenance loops."""
    pipeline = build_pipeline(settings, async_session_maker)
    app.state.pipeline = pipeline
    app.state.background_tasks = start_background_tasks(pipeline)


@app.on_event("shutdown")
async def shutdown_event():
    for task in getattr(app.state, "background_tasks", []):
        if task.done():
            continue
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass  # expected on cancel
    pipeline = getattr(app.state, "pipeline", None)
    if pipeline is not None:
        await pipeline.aclose()


# ============ Error responses: {"success": false, "message": ...} ============

def _error_response(status_code: int, message, headers=None, **extra) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "message": message, **extra},
        headers=headers,
    )


def _validation_errors(errors: list) -> list:
    """Validation error dicts in JSON-safe form (ctx may hold the raised exception)."""
    rendered = []
    for error in errors:
        item = {"type": error.get("type"), "loc": error.get("loc"), "msg": error.get("msg")}
        if error.get("ctx"):
            item["ctx"] = {key: str(value) for key, value in error["ctx"].items()}
        rendered.append(item)
    return rendered


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error: method=%s path=%s", request.method, request.url.path)
    return _error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error")


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code >= 500:
        logger.error("HTTP %d on %s %s: %s", exc.status_code, request.method, request.url.path, exc.detail)
    return _error_response(exc.status_code, exc.detail, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def request_validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = _validation_errors(exc.errors())
    logger.info("Validation error 422: method=%s path=%s errors=%s", request.method, request.url.path, errors)
    return _error_response(422, "Validation error", errors=errors)


@app.exception_handler(ValidationError)
async def pydantic_validation_exception_handler(request: Request, exc: ValidationError):
    return _error_response(
        422, "Validation error", errors=_validation_errors(exc.errors()),
    )
