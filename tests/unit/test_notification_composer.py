"""Tests for activity and material notification templates."""
import pytest

from app.core.notification_composer import (
    ActivityEvent,
    MaterialActivityEvent,
    compose_activity_notification,
    compose_material_activity_notification,
    compose_transfer_out_notification,
)


def activity(**kwargs) -> ActivityEvent:
    base = {
        "id": "act-1",
        "client_id": "c1",
        "project_id": "p1",
        "project_name": "Tower A",
        "user": {"user_id": "s1", "full_name": "Priya Shah"},
        "description": "Poured slab for level 3",
    }
    base.update(kwargs)
    return ActivityEvent(**base)


class TestActivityNotifications:
    @pytest.mark.parametrize("category, title", [
        ("section", "📐 Section Update"),
        ("mini_section", "🔧 Mini Section Update"),
        ("labor", "👷 Labor Update"),
        ("material", "📦 Material Update"),
        ("completion", "✅ Completion Update"),
        ("something_else", "📋 Activity Update"),
    ])
    def test_titles_by_category(self, category, title):
        payload = compose_activity_notification(activity(category=category))
        assert payload.title == title
        assert payload.body == "Poured slab for level 3 by Priya Shah in Tower A"

    def test_staff_category_uses_for(self):
        payload = compose_activity_notification(activity(category="staff", description="Assigned 2 engineers"))
        assert payload.title == "👥 Staff Update"
        assert payload.body == "Assigned 2 engineers by Priya Shah for Tower A"

    def test_project_created(self):
        payload = compose_activity_notification(activity(category="project", activity_type="project_created"))
        assert payload.title == "🏗️ Project Update"
        assert payload.body == 'New project "Tower A" created by Priya Shah'

    def test_project_updated_without_name(self):
        payload = compose_activity_notification(
            activity(category="project", activity_type="project_updated", project_name=None)
        )
        assert payload.body == 'Project "Unknown" updated by Priya Shah'

    def test_message_is_appended(self):
        payload = compose_activity_notification(activity(category="labor", message="Crew of 12 on site"))
        assert payload.body.endswith("\n💬 Crew of 12 on site")

    def test_blank_message_is_ignored(self):
        payload = compose_activity_notification(activity(category="labor", message="   "))
        assert "💬" not in payload.body

    def test_missing_actor_defaults_to_someone(self):
        payload = compose_activity_notification(ActivityEvent(description="Updated schedule", category="section"))
        assert payload.body == "Updated schedule by Someone"

    def test_data_payload(self):
        payload = compose_activity_notification(
            activity(category="section", activity_type="section_updated", action="update")
        )
        assert payload.data == {
            "activity_id": "act-1",
            "project_id": "p1",
            "activity_type": "section_updated",
            "category": "section",
            "action": "update",
            "route": "notification",
        }


def material_event(activity_name: str, materials: list[str], **kwargs) -> MaterialActivityEvent:
    return MaterialActivityEvent(
        id="mat-1",
        client_id="c1",
        project_id="p2",
        project_name="Tower B",
        user={"user_id": "s1", "full_name": "Priya Shah"},
        activity=activity_name,
        materials=[{"name": name} for name in materials],
        **kwargs,
    )


class TestMaterialNotifications:
    def test_imported_single_material(self):
        payload = compose_material_activity_notification(material_event("imported", ["Cement"]))
        assert payload.title == "📥 Materials Imported"
        assert payload.body == "Priya Shah imported 1 material: Cement in Tower B"

    def test_used_many_materials(self):
        payload = compose_material_activity_notification(material_event("used", ["Cement", "Sand", "Steel", "Brick"]))
        assert payload.title == "🔨 Materials Used"
        assert payload.body == "Priya Shah used 4 materials: Cement, Sand and 2 more in Tower B"

    def test_transfer_with_details(self):
        event = material_event(
            "transferred",
            ["Cement", "Sand"],
            transfer_details={"from_project": {"id": "p1", "name": "Tower A"}, "to_project": {"id": "p2", "name": "Tower B"}},
        )
        payload = compose_material_activity_notification(event)
        assert payload.title == "🔄 Materials Transferred"
        assert payload.body == "Priya Shah transferred 2 materials from Tower A to Tower B"
        assert payload.data["action"] == "transferred"
        assert payload.data["category"] == "material"

    def test_unknown_activity(self):
        payload = compose_material_activity_notification(material_event("audited", ["Cement"], message="All counted"))
        assert payload.title == "📦 Material Activity"
        assert payload.body == "Priya Shah performed material activity: Cement in Tower B\n💬 All counted"

    def test_transfer_out_variant(self):
        event = material_event(
            "transferred",
            ["Cement"],
            transfer_details={"from_project": {"id": "p1", "name": "Tower A"}, "to_project": {"id": "p2", "name": "Tower B"}},
        )
        payload = compose_material_activity_notification(event)
        out = compose_transfer_out_notification(event, payload)
        assert out.title == "📤 Materials Transferred Out"
        assert out.body == "Priya Shah transferred out to Tower B 1 material from Tower A to Tower B"
        assert out.data == payload.data
