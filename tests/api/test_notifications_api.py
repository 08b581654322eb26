"""HTTP tests for sending, activity events, metrics, recipients and health."""
import asyncio

TOKEN = "ExponentPushToken[staff1device]"


class TestSend:
    def test_admin_sends_to_users(self, client, admin_headers, factories, gateway):
        asyncio.run(factories.push_token("staff-1", TOKEN))

        response = client.post(
            "/api/v1/notifications/send",
            json={"user_ids": ["staff-1"], "title": "Site closed", "body": "Heavy rain today", "data": {"kind": "alert"}},
            headers=admin_headers,
        )

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["delivered_count"] == 1
        assert gateway.sent_messages[0].data["kind"] == "alert"

    def test_non_admin_is_rejected(self, client, staff_headers):
        response = client.post(
            "/api/v1/notifications/send",
            json={"user_ids": ["staff-1"], "title": "t", "body": "b"},
            headers=staff_headers,
        )
        assert response.status_code == 403

    def test_empty_recipient_list_is_a_validation_error(self, client, admin_headers):
        response = client.post(
            "/api/v1/notifications/send",
            json={"user_ids": [], "title": "t", "body": "b"},
            headers=admin_headers,
        )
        assert response.status_code == 422


class TestEvents:
    def test_activity_event(self, client, staff_headers, factories, gateway):
        asyncio.run(factories.admin("c1", "admin-9"))
        asyncio.run(factories.push_token("admin-9", TOKEN, user_type="admin"))

        response = client.post(
            "/api/v1/notifications/events/activity",
            json={
                "id": "act-7",
                "client_id": "c1",
                "project_id": "p1",
                "project_name": "Tower A",
                "user": {"user_id": "staff-1", "full_name": "Priya Shah"},
                "category": "completion",
                "description": "Completed level 2 plastering",
            },
            headers=staff_headers,
        )

        assert response.status_code == 200
        assert response.json()["recipient_source"] == "PRIMARY"
        assert gateway.sent_messages[0].title == "✅ Completion Update"

    def test_material_event(self, client, staff_headers, factories, gateway):
        asyncio.run(factories.project("c1", "p1", assigned=[("staff-1", "Priya Shah")]))
        asyncio.run(factories.push_token("staff-1", TOKEN))

        response = client.post(
            "/api/v1/notifications/events/material-activity",
            json={"project_id": "p1", "activity": "imported", "materials": [{"name": "Cement", "quantity": 40, "unit": "bags"}]},
            headers=staff_headers,
        )

        assert response.status_code == 200
        assert response.json()["delivered_count"] == 1
        assert gateway.sent_messages[0].body == "Someone imported 1 material: Cement"

    def test_events_require_authentication(self, client):
        response = client.post("/api/v1/notifications/events/activity", json={"description": "x"})
        assert response.status_code == 401


class TestMetrics:
    def test_metrics_include_retry_queue(self, client, pipeline):
        pipeline.metrics.record_sent(3, 50.0)
        response = client.get("/api/v1/notifications/metrics")
        body = response.json()
        assert body["metrics"]["total_notifications_sent"] == 3
        assert body["retry_queue"]["total_in_queue"] == 0


class TestRecipients:
    URL = "/api/v1/notifications/recipients"

    def test_client_id_is_required(self, client):
        response = client.get(self.URL)
        assert response.status_code == 400
        assert response.json() == {"success": False, "message": "clientId is required"}

    def test_resolves_admins_and_staff(self, client, factories):
        asyncio.run(factories.admin("c1", "admin-1"))
        asyncio.run(factories.staff(["c1"], "staff-1"))

        body = client.get(self.URL, params={"clientId": "c1"}).json()

        assert body["success"] is True
        assert body["source"] == "PRIMARY"
        assert body["recipient_count"] == 2
        assert body["deduplication_count"] == 0

        cached = client.get(self.URL, params={"clientId": "c1"}).json()
        assert cached["source"] == "CACHE"

    def test_both_stages_failing_returns_500(self, client, pipeline, monkeypatch):
        async def broken(*args, **kwargs):
            raise RuntimeError("database unavailable")

        monkeypatch.setattr(pipeline.resolver, "_fetch_members", broken)
        monkeypatch.setattr(pipeline.resolver, "_resolve_fallback", broken)

        response = client.get(self.URL, params={"clientId": "c1", "projectId": "p1"})

        assert response.status_code == 500
        assert response.json()["success"] is False
        assert len(response.json()["errors"]) == 2

    def test_cache_size_and_clear(self, client, factories):
        asyncio.run(factories.admin("c1", "admin-1"))
        client.get(self.URL, params={"clientId": "c1"})
        client.get(self.URL, params={"clientId": "c1", "projectId": "p1"})

        assert client.head(self.URL).headers["X-Cache-Size"] == "2"

        cleared = client.delete(self.URL, params={"clientId": "c1"}).json()
        assert cleared["cleared"] == 2
        assert client.head(self.URL).headers["X-Cache-Size"] == "0"


class TestHealth:
    def test_liveness(self, client):
        assert client.get("/api/v1/health").json() == {"status": "ok"}

    def test_notification_health(self, client):
        body = client.get("/api/v1/health/notifications").json()
        assert body["status"] == "healthy"
        assert body["checks"]["push_gateway"]["provider"] == "fake"
        assert body["checks"]["retry_queue"]["size"] == 0

    def test_pipeline_not_ready(self, client):
        from app.main import app

        pipeline = app.state.pipeline
        del app.state.pipeline
        try:
            response = client.get("/api/v1/health/notifications")
        finally:
            app.state.pipeline = pipeline
        assert response.status_code == 503
