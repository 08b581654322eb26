"""
Builds and owns every stateful notification component for one application instance.
Attached to app.state.pipeline on startup and closed on shutdown.
"""
import logging
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.activity_log import ActivityLogClient
from app.core.config import Settings
from app.core.notification_metrics import NotificationMetrics
from app.core.notification_service import NotificationService
from app.core.push_dispatcher import PushDispatcher
from app.core.push_gateway import PushGateway, build_push_gateway
from app.core.recipient_resolver import RecipientCache, RecipientResolver
from app.core.retry_manager import RetryConfig, RetryManager
from app.core.token_maintenance import MaintenanceConfig, TokenMaintenanceScheduler
from app.core.token_store import PushTokenStore
from app.core.token_validator import TokenValidator
from app.models.enums import JitterType

logger = logging.getLogger(__name__)


@dataclass
class NotificationPipeline:
    settings: Settings
    session_maker: async_sessionmaker[AsyncSession]
    validator: TokenValidator
    token_store: PushTokenStore
    recipient_cache: RecipientCache
    resolver: RecipientResolver
    gateway: PushGateway
    dispatcher: PushDispatcher
    retry_manager: RetryManager
    maintenance: TokenMaintenanceScheduler
    metrics: NotificationMetrics
    activity_log: ActivityLogClient
    service: NotificationService

    async def aclose(self) -> None:
        await self.activity_log.aclose()
        await self.gateway.aclose()
        logger.info("Notification pipeline closed")


def build_pipeline(
    settings: Settings,
    session_maker: async_sessionmaker[AsyncSession],
    gateway: PushGateway | None = None,
) -> NotificationPipeline:
    validator = TokenValidator()
    token_store = PushTokenStore(session_maker, validator)
    cache = RecipientCache()
    resolver = RecipientResolver(
        session_maker,
        cache,
        cache_ttl=settings.RECIPIENT_CACHE_TTL_SECONDS,
        fallback_cache_ttl=settings.RECIPIENT_FALLBACK_CACHE_TTL_SECONDS,
        primary_timeout=settings.RECIPIENT_PRIMARY_TIMEOUT_SECONDS,
        fallback_timeout=settings.RECIPIENT_FALLBACK_TIMEOUT_SECONDS,
    )
    gateway = gateway or build_push_gateway(settings)
    dispatcher = PushDispatcher(
        token_store,
        gateway,
        batch_size=settings.PUSH_BATCH_SIZE,
        batch_delay=settings.PUSH_BATCH_DELAY_SECONDS,
        default_ttl=settings.PUSH_DEFAULT_TTL_SECONDS,
    )
    retry_manager = RetryManager(dispatcher, RetryConfig(
        max_attempts=settings.RETRY_MAX_ATTEMPTS,
        initial_delay_ms=settings.RETRY_INITIAL_DELAY_MS,
        max_delay_ms=settings.RETRY_MAX_DELAY_MS,
        backoff_factor=settings.RETRY_BACKOFF_FACTOR,
        jitter=JitterType(settings.RETRY_JITTER.lower()),
        circuit_breaker_threshold=settings.CIRCUIT_BREAKER_THRESHOLD,
        circuit_breaker_reset_timeout_ms=settings.CIRCUIT_BREAKER_RESET_TIMEOUT_MS,
    ))
    maintenance = TokenMaintenanceScheduler(
        token_store,
        MaintenanceConfig(
            enabled=settings.CRON_ENABLED,
            cleanup_interval_hours=settings.CRON_TOKEN_MAINTENANCE_INTERVAL_HOURS,
            max_token_age_days=settings.TOKEN_MAX_AGE_DAYS,
            delete_after_days=settings.TOKEN_DELETE_AFTER_DAYS,
        ),
        history_size=settings.MAINTENANCE_HISTORY_SIZE,
    )
    metrics = NotificationMetrics()
    activity_log = ActivityLogClient(settings.ACTIVITY_LOG_URL)
    service = NotificationService(dispatcher, resolver, retry_manager, metrics, activity_log)

    logger.info("Notification pipeline built (push provider: %s)", gateway.name)
    return NotificationPipeline(
        settings=settings,
        session_maker=session_maker,
        validator=validator,
        token_store=token_store,
        recipient_cache=cache,
        resolver=resolver,
        gateway=gateway,
        dispatcher=dispatcher,
        retry_manager=retry_manager,
        maintenance=maintenance,
        metrics=metrics,
        activity_log=activity_log,
        service=service,
    )
