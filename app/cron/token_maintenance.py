"""
Cron job: push token maintenance (cleanup, health refresh, analytics).
Runs the full job when it is due; a run already in flight is left alone.
"""
import logging

from app.core.exceptions import MaintenanceAlreadyRunningError
from app.core.token_maintenance import MaintenanceJobResult, TokenMaintenanceScheduler
from app.models.enums import MaintenanceJobType

logger = logging.getLogger(__name__)


async def run_scheduled_token_maintenance(scheduler: TokenMaintenanceScheduler) -> MaintenanceJobResult | None:
    if not scheduler.should_run():
        logger.debug("Cron: token maintenance not due (next run %s)", scheduler.next_scheduled_run())
        return None

    logger.info("Cron: token maintenance started")
    try:
        result = await scheduler.run_job(MaintenanceJobType.full)
    except MaintenanceAlreadyRunningError:
        logger.info("Cron: token maintenance already running, skipping")
        return None

    for alert in result.alerts:
        logger.warning("Token maintenance alert: %s", alert)
    logger.info(
        "Cron: token maintenance finished job_id=%s success=%s deactivated=%d deleted=%d",
        result.job_id, result.success,
        result.summary["tokens_deactivated"], result.summary["tokens_deleted"],
    )
    return result
