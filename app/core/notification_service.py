"""
Notification orchestration: compose -> resolve recipients -> dispatch -> schedule retries.
Stages report failures as NotificationError entries on the result; nothing raises past this layer.
"""
import logging
import time
import uuid
from typing import Any

from pydantic import BaseModel

from app.core.activity_log import ActivityLogClient
from app.core.exceptions import NotificationError, NotificationErrorType
from app.core.notification_composer import (
    ActivityEvent,
    MaterialActivityEvent,
    NotificationPayload,
    compose_activity_notification,
    compose_material_activity_notification,
    compose_transfer_out_notification,
)
from app.core.notification_metrics import NotificationMetrics
from app.core.push_dispatcher import DispatchResult, PushDispatcher
from app.core.recipient_resolver import RecipientResolver
from app.core.retry_manager import RetryManager, create_failed_notification
from app.core.utils import token_preview
from app.models.enums import ResolutionSource

logger = logging.getLogger(__name__)


class NotificationResult(BaseModel):
    success: bool
    notification_id: str
    recipient_count: int = 0
    delivered_count: int = 0
    failed_count: int = 0
    errors: list[NotificationError] = []
    processing_time_ms: float = 0.0
    retry_scheduled: bool = False
    recipient_source: ResolutionSource | None = None


def _new_notification_id() -> str:
    return f"notif_{uuid.uuid4().hex[:16]}"


class NotificationService:
    def __init__(
        self,
        dispatcher: PushDispatcher,
        resolver: RecipientResolver,
        retry_manager: RetryManager,
        metrics: NotificationMetrics,
        activity_log: ActivityLogClient | None = None,
    ):
        self.dispatcher = dispatcher
        self.resolver = resolver
        self.retry_manager = retry_manager
        self.metrics = metrics
        self.activity_log = activity_log

    async def send_to_users(
        self,
        user_ids: list[str],
        title: str,
        body: str,
        data: dict[str, Any] | None = None,
        options: dict[str, Any] | None = None,
        notification_id: str | None = None,
    ) -> NotificationResult:
        notification_id = notification_id or _new_notification_id()
        started = time.perf_counter()
        unique_ids = list(dict.fromkeys(uid for uid in user_ids if uid))
        result = NotificationResult(success=False, notification_id=notification_id, recipient_count=len(unique_ids))

        if not unique_ids:
            result.errors.append(NotificationError.of(
                NotificationErrorType.validation_error, "No recipients supplied", stage="dispatch",
            ))
            return result
        if not title or not body:
            result.errors.append(NotificationError.of(
                NotificationErrorType.validation_error, "title and body are required", stage="dispatch",
            ))
            return result

        retry_user_ids: list[str] = []
        try:
            dispatch = await self.dispatcher.send_to_users(unique_ids, title, body, data, options)
        except Exception as e:
            logger.exception("Unexpected error dispatching notification %s: %s", notification_id, e)
            result.errors.append(NotificationError.of(NotificationErrorType.api_error, str(e), stage="dispatch"))
            retry_user_ids = unique_ids
            dispatch = None
        else:
            self._collect_dispatch_errors(dispatch, result)
            retry_user_ids = dispatch.failed_user_ids
            result.delivered_count = dispatch.messages_sent
            result.failed_count = len(dispatch.failed_tokens)
            result.success = dispatch.success

        elapsed = round((time.perf_counter() - started) * 1000, 2)
        result.processing_time_ms = elapsed
        if result.delivered_count:
            self.metrics.record_sent(result.delivered_count, elapsed)
        if result.failed_count:
            self.metrics.record_failed(result.failed_count)
        if dispatch is not None and dispatch.invalid_tokens:
            self.metrics.record_tokens_deactivated(len(dispatch.invalid_tokens))

        if retry_user_ids:
            last_error = "; ".join(e.message for e in result.errors if e.retryable) or "Delivery failed"
            self.retry_manager.schedule_retry(create_failed_notification(
                notification_id,
                retry_user_ids,
                title,
                body,
                last_error,
                data=data,
                options=options,
                destination=self.dispatcher.gateway.name,
            ))
            result.retry_scheduled = True

        logger.info(
            "Notification %s: recipients=%d delivered=%d failed=%d retry=%s (%.1fms)",
            notification_id, result.recipient_count, result.delivered_count, result.failed_count,
            result.retry_scheduled, elapsed,
        )
        return result

    async def send_to_project_staff(
        self,
        project_id: str,
        title: str,
        body: str,
        data: dict[str, Any] | None = None,
        options: dict[str, Any] | None = None,
        notification_id: str | None = None,
    ) -> NotificationResult:
        """Send to the staff assigned to a project, bypassing tenant recipient resolution."""
        try:
            staff_ids = await self.resolver.project_staff_ids(project_id)
        except Exception as e:
            logger.exception("Error loading assigned staff for project %s: %s", project_id, e)
            return NotificationResult(
                success=False,
                notification_id=notification_id or _new_notification_id(),
                errors=[NotificationError.of(NotificationErrorType.recipient_resolution, str(e), stage="fallback")],
            )
        if not staff_ids:
            logger.info("No assigned staff found for project %s", project_id)
            return NotificationResult(
                success=False,
                notification_id=notification_id or _new_notification_id(),
                errors=[NotificationError.of(
                    NotificationErrorType.recipient_resolution, "No assigned staff found for project", stage="fallback",
                )],
            )
        result = await self.send_to_users(
            staff_ids, title, body, {**(data or {}), "project_id": project_id}, options, notification_id,
        )
        result.recipient_source = ResolutionSource.fallback
        return result

    def _collect_dispatch_errors(self, dispatch: DispatchResult, result: NotificationResult) -> None:
        for token in dispatch.invalid_tokens:
            result.errors.append(NotificationError.of(
                NotificationErrorType.token_validation,
                f"Token {token_preview(token)} failed validation and was deactivated",
                stage="tokens",
            ))
        if dispatch.tokens_found == 0:
            result.errors.append(NotificationError.of(
                NotificationErrorType.validation_error, "No active push tokens found", stage="tokens",
            ))
            return
        for message in dispatch.errors:
            result.errors.append(NotificationError.of(
                NotificationErrorType.delivery_failure, message, stage="dispatch",
            ))

    async def _deliver(
        self,
        payload: NotificationPayload,
        client_id: str | None,
        project_id: str | None,
    ) -> NotificationResult:
        notification_id = _new_notification_id()
        options = {"sound": payload.sound, "priority": "high"}
        resolution = None

        if client_id:
            resolution = await self.resolver.resolve(client_id, project_id)
            if resolution.recipients:
                result = await self.send_to_users(
                    resolution.user_ids, payload.title, payload.body, payload.data, options, notification_id,
                )
                result.errors = [*resolution.errors, *result.errors]
                result.recipient_source = resolution.source
                return result

        if project_id:
            logger.info("No resolved recipients; sending to assigned staff of project %s", project_id)
            result = await self.send_to_project_staff(
                project_id, payload.title, payload.body, payload.data, options, notification_id,
            )
            if result.recipient_count:
                if resolution is not None:
                    result.errors = [*resolution.errors, *result.errors]
                return result

        errors = list(resolution.errors) if resolution is not None else []
        errors.append(NotificationError.of(
            NotificationErrorType.recipient_resolution, "No recipients found for notification", stage="resolve",
        ))
        return NotificationResult(
            success=False,
            notification_id=notification_id,
            errors=errors,
            recipient_source=ResolutionSource.none,
        )

    def _log_activity(self, kind: str, event_id: str | None, project_id: str | None, result: NotificationResult) -> None:
        if self.activity_log is None:
            return
        self.activity_log.log({
            "type": kind,
            "activity_id": event_id,
            "project_id": project_id,
            "notification_id": result.notification_id,
            "delivered": result.delivered_count,
            "success": result.success,
        })

    async def notify_activity(self, event: ActivityEvent) -> NotificationResult:
        payload = compose_activity_notification(event)
        result = await self._deliver(payload, event.client_id, event.project_id)
        self._log_activity("activity_notification", event.id, event.project_id, result)
        return result

    async def notify_material_activity(self, event: MaterialActivityEvent) -> NotificationResult:
        payload = compose_material_activity_notification(event)
        result = await self._deliver(payload, event.client_id, event.project_id)

        source = event.transfer_details.from_project if event.transfer_details else None
        if event.activity == "transferred" and source and source.id and source.id != event.project_id:
            logger.info("Notifying source project %s of material transfer", source.id)
            out_payload = compose_transfer_out_notification(event, payload)
            out_result = await self._deliver(out_payload, event.client_id, source.id)
            result.delivered_count += out_result.delivered_count
            result.failed_count += out_result.failed_count
            result.errors.extend(out_result.errors)
            result.success = result.success or out_result.success

        self._log_activity("material_activity_notification", event.id, event.project_id, result)
        return result
