"""
Background loops started on app startup and cancelled on shutdown:
token maintenance on its configured interval, and the push retry queue every few seconds.
"""
import asyncio
import logging

from app.core.pipeline import NotificationPipeline
from app.cron.token_maintenance import run_scheduled_token_maintenance

logger = logging.getLogger(__name__)

# how often the maintenance loop checks whether a run is due
MAINTENANCE_CHECK_SECONDS = 300.0


async def run_token_maintenance_cron_loop(pipeline: NotificationPipeline) -> None:
    """Loop: check after a short delay, then every few minutes; the scheduler decides whether a run is due."""
    interval_hours = pipeline.maintenance.config.cleanup_interval_hours
    check_seconds = min(MAINTENANCE_CHECK_SECONDS, max(60.0, interval_hours * 3600))
    logger.info("Token maintenance cron started (interval=%.2f hours)", interval_hours)
    # Small delay so app is fully up before first run
    await asyncio.sleep(10)
    while True:
        try:
            await run_scheduled_token_maintenance(pipeline.maintenance)
            await asyncio.sleep(check_seconds)
        except asyncio.CancelledError:
            logger.info("Token maintenance cron cancelled")
            break
        except Exception as e:
            logger.exception("Token maintenance cron loop error: %s", e)
            await asyncio.sleep(check_seconds)


async def run_retry_queue_loop(pipeline: NotificationPipeline) -> None:
    interval_seconds = max(1.0, pipeline.settings.RETRY_QUEUE_INTERVAL_SECONDS)
    logger.info("Retry queue processor started (interval=%.1fs)", interval_seconds)
    while True:
        try:
            await asyncio.sleep(interval_seconds)
            if pipeline.retry_manager.queue_size():
                await pipeline.retry_manager.process_queue()
        except asyncio.CancelledError:
            logger.info("Retry queue processor cancelled")
            break
        except Exception as e:
            logger.exception("Retry queue loop error: %s", e)


def start_background_tasks(pipeline: NotificationPipeline) -> list[asyncio.Task]:
    tasks = [asyncio.create_task(run_retry_queue_loop(pipeline), name="retry-queue")]
    if pipeline.settings.CRON_ENABLED:
        tasks.append(asyncio.create_task(run_token_maintenance_cron_loop(pipeline), name="token-maintenance"))
    else:
        logger.info("Token maintenance cron disabled (CRON_ENABLED=false)")
    return tasks
