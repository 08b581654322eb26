"""Tests for end-to-end notification orchestration over the pipeline."""
from app.core.exceptions import NotificationErrorType, PushGatewayError
from app.core.notification_composer import ActivityEvent, MaterialActivityEvent
from app.models.enums import ResolutionSource


def token_for(user_id: str) -> str:
    return f"ExponentPushToken[{user_id}]"


class TestSendToUsers:
    async def test_delivers_and_records_metrics(self, pipeline, factories, gateway):
        await factories.push_token("u1", token_for("u1"))
        await factories.push_token("u2", token_for("u2"))

        result = await pipeline.service.send_to_users(["u1", "u2", "u1"], "Title", "Body")

        assert result.success
        assert result.notification_id.startswith("notif_")
        assert result.recipient_count == 2
        assert result.delivered_count == 2
        assert result.errors == []
        assert result.retry_scheduled is False
        assert len(gateway.sent_messages) == 2
        assert pipeline.metrics.snapshot()["total_notifications_sent"] == 2

    async def test_requires_recipients(self, pipeline):
        result = await pipeline.service.send_to_users([], "Title", "Body")
        assert not result.success
        assert result.errors[0].type == NotificationErrorType.validation_error

    async def test_requires_title_and_body(self, pipeline):
        result = await pipeline.service.send_to_users(["u1"], "", "Body")
        assert not result.success
        assert result.errors[0].message == "title and body are required"

    async def test_users_without_tokens_are_not_retried(self, pipeline):
        result = await pipeline.service.send_to_users(["ghost"], "Title", "Body")

        assert not result.success
        assert [e.message for e in result.errors] == ["No active push tokens found"]
        assert result.errors[0].retryable is False
        assert result.retry_scheduled is False
        assert pipeline.retry_manager.queue_size() == 0

    async def test_retryable_ticket_errors_schedule_a_retry(self, pipeline, factories, gateway):
        await factories.push_token("u1", token_for("u1"))
        await factories.push_token("u2", token_for("u2"))
        gateway.failing.add(token_for("u2"))

        result = await pipeline.service.send_to_users(["u1", "u2"], "Title", "Body", notification_id="notif-x")

        assert result.success
        assert result.delivered_count == 1
        assert result.failed_count == 1
        assert result.errors[0].type == NotificationErrorType.delivery_failure
        assert result.retry_scheduled
        status = pipeline.retry_manager.get_retry_status("notif-x")
        assert status.pending == 1
        assert pipeline.retry_manager.get_queue_statistics()["total_in_queue"] == 1
        assert pipeline.metrics.snapshot()["total_notifications_failed"] == 1

    async def test_rejected_batch_retries_every_user(self, pipeline, factories, gateway):
        await factories.push_token("u1", token_for("u1"))
        gateway.error = PushGatewayError("HTTP 503: unavailable", 503)

        result = await pipeline.service.send_to_users(["u1"], "Title", "Body")

        assert not result.success
        assert result.errors[0].retryable
        assert result.retry_scheduled
        [entry] = pipeline.retry_manager._queue.values()
        assert entry.user_ids == ["u1"]
        assert entry.destination == "fake"

    async def test_unexpected_dispatch_error_becomes_api_error(self, pipeline, monkeypatch):
        async def explode(*args, **kwargs):
            raise RuntimeError("connection reset")

        monkeypatch.setattr(pipeline.dispatcher, "send_to_users", explode)

        result = await pipeline.service.send_to_users(["u1"], "Title", "Body")

        assert not result.success
        assert result.errors[0].type == NotificationErrorType.api_error
        assert result.retry_scheduled

    async def test_unregistered_devices_are_not_retried(self, pipeline, factories, gateway):
        await factories.push_token("u1", token_for("u1"))
        gateway.unregistered.add(token_for("u1"))

        result = await pipeline.service.send_to_users(["u1"], "Title", "Body")

        assert not result.success
        assert result.retry_scheduled is False


class TestProjectStaff:
    async def test_sends_to_assigned_staff(self, pipeline, factories, gateway):
        await factories.project("c1", "p1", assigned=[("s1", "Site Lead")])
        await factories.push_token("s1", token_for("s1"))

        result = await pipeline.service.send_to_project_staff("p1", "Title", "Body", data={"kind": "test"})

        assert result.delivered_count == 1
        assert result.recipient_source == ResolutionSource.fallback
        assert gateway.sent_messages[0].data["project_id"] == "p1"

    async def test_project_without_staff(self, pipeline, factories):
        await factories.project("c1", "p1")
        result = await pipeline.service.send_to_project_staff("p1", "Title", "Body")
        assert not result.success
        assert result.errors[0].type == NotificationErrorType.recipient_resolution


class TestActivityNotifications:
    async def test_activity_goes_to_client_members(self, pipeline, factories, gateway):
        await factories.admin("c1", "a1")
        await factories.push_token("a1", token_for("a1"), user_type="admin")

        result = await pipeline.service.notify_activity(ActivityEvent(
            id="act-1", client_id="c1", project_id="p1", project_name="Tower A",
            user={"user_id": "s1", "full_name": "Priya Shah"},
            category="labor", description="Added 4 workers",
        ))

        assert result.success
        assert result.recipient_source == ResolutionSource.primary
        [message] = gateway.sent_messages
        assert message.title == "👷 Labor Update"
        assert message.body == "Added 4 workers by Priya Shah in Tower A"
        assert message.data["activity_id"] == "act-1"

    async def test_falls_back_to_project_staff(self, pipeline, factories):
        await factories.project("c1", "p1", assigned=[("s9", "Site Lead")])
        await factories.push_token("s9", token_for("s9"))

        result = await pipeline.service.notify_activity(ActivityEvent(
            client_id="c1", project_id="p1", category="section", description="Closed section B",
        ))

        assert result.delivered_count == 1
        assert result.recipient_source == ResolutionSource.fallback

    async def test_no_recipients_anywhere(self, pipeline):
        result = await pipeline.service.notify_activity(ActivityEvent(client_id="c-none", description="Nothing"))

        assert not result.success
        assert result.recipient_source == ResolutionSource.none
        assert result.errors[-1].type == NotificationErrorType.recipient_resolution

    async def test_material_transfer_notifies_both_projects(self, pipeline, factories, gateway):
        await factories.project("c1", "p1", assigned=[("s1", "Source Lead")], name="Tower A")
        await factories.project("c1", "p2", assigned=[("s2", "Destination Lead")], name="Tower B")
        await factories.push_token("s1", token_for("s1"))
        await factories.push_token("s2", token_for("s2"))

        result = await pipeline.service.notify_material_activity(MaterialActivityEvent(
            id="mat-1",
            project_id="p2",
            project_name="Tower B",
            user={"user_id": "s2", "full_name": "Priya Shah"},
            activity="transferred",
            materials=[{"name": "Cement"}, {"name": "Sand"}],
            transfer_details={"from_project": {"id": "p1", "name": "Tower A"}, "to_project": {"id": "p2", "name": "Tower B"}},
        ))

        assert result.success
        assert result.delivered_count == 2
        by_user = {m.data["user_id"]: m.title for m in gateway.sent_messages}
        assert by_user == {"s2": "🔄 Materials Transferred", "s1": "📤 Materials Transferred Out"}
