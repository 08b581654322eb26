"""
Builds push notification title, body and data payload from domain events.
Pure functions: no I/O.
"""
from typing import Any

from pydantic import BaseModel, Field


class EventActor(BaseModel):
    user_id: str | None = None
    full_name: str = "Someone"


class ActivityEvent(BaseModel):
    id: str | None = None
    client_id: str | None = None
    project_id: str | None = None
    project_name: str | None = None
    user: EventActor = Field(default_factory=EventActor)
    activity_type: str | None = None
    category: str | None = None
    action: str | None = None
    description: str = ""
    message: str | None = None


class MaterialItem(BaseModel):
    name: str
    quantity: float | None = None
    unit: str | None = None


class ProjectRef(BaseModel):
    id: str | None = None
    name: str | None = None


class TransferDetails(BaseModel):
    from_project: ProjectRef | None = None
    to_project: ProjectRef | None = None


class MaterialActivityEvent(BaseModel):
    id: str | None = None
    client_id: str | None = None
    project_id: str | None = None
    project_name: str | None = None
    user: EventActor = Field(default_factory=EventActor)
    activity: str = Field(..., description="imported, used or transferred")
    materials: list[MaterialItem] = []
    message: str | None = None
    transfer_details: TransferDetails | None = None


class NotificationPayload(BaseModel):
    title: str
    body: str
    data: dict[str, Any] = {}
    sound: str = "default"


# category -> (title, preposition used before the project name)
ACTIVITY_TEMPLATES: dict[str, tuple[str, str]] = {
    "project": ("🏗️ Project Update", "in"),
    "section": ("📐 Section Update", "in"),
    "mini_section": ("🔧 Mini Section Update", "in"),
    "staff": ("👥 Staff Update", "for"),
    "labor": ("👷 Labor Update", "in"),
    "material": ("📦 Material Update", "in"),
    "completion": ("✅ Completion Update", "in"),
}
DEFAULT_ACTIVITY_TEMPLATE = ("📋 Activity Update", "in")

MATERIAL_TITLES = {
    "imported": "📥 Materials Imported",
    "used": "🔨 Materials Used",
    "transferred": "🔄 Materials Transferred",
}
DEFAULT_MATERIAL_TITLE = "📦 Material Activity"
TRANSFER_OUT_TITLE = "📤 Materials Transferred Out"


def _with_message(body: str, message: str | None) -> str:
    if message and message.strip():
        return f"{body}\n💬 {message}"
    return body


def compose_activity_notification(event: ActivityEvent) -> NotificationPayload:
    actor = event.user.full_name
    category = event.category or ""
    title, preposition = ACTIVITY_TEMPLATES.get(category, DEFAULT_ACTIVITY_TEMPLATE)

    if category == "project" and event.activity_type == "project_created":
        body = f'New project "{event.project_name or "Unknown"}" created by {actor}'
    elif category == "project" and event.activity_type == "project_updated":
        body = f'Project "{event.project_name or "Unknown"}" updated by {actor}'
    else:
        body = f"{event.description} by {actor}"
        if category != "project" and event.project_name:
            body += f" {preposition} {event.project_name}"

    return NotificationPayload(
        title=title,
        body=_with_message(body, event.message),
        data={
            "activity_id": event.id,
            "project_id": event.project_id,
            "activity_type": event.activity_type,
            "category": event.category,
            "action": event.action,
            "route": "notification",
        },
    )


def _material_summary(materials: list[MaterialItem]) -> tuple[int, str]:
    count = len(materials)
    names = ", ".join(m.name for m in materials[:2]) or "materials"
    if count > 2:
        names += f" and {count - 2} more"
    return count, names


def _plural(count: int) -> str:
    return "materials" if count > 1 else "material"


def compose_material_activity_notification(event: MaterialActivityEvent) -> NotificationPayload:
    actor = event.user.full_name
    count, names = _material_summary(event.materials)
    title = MATERIAL_TITLES.get(event.activity, DEFAULT_MATERIAL_TITLE)

    if event.activity == "imported":
        body = f"{actor} imported {count} {_plural(count)}: {names}"
    elif event.activity == "used":
        body = f"{actor} used {count} {_plural(count)}: {names}"
    elif event.activity == "transferred" and event.transfer_details:
        source = (event.transfer_details.from_project and event.transfer_details.from_project.name) or "Unknown"
        destination = (event.transfer_details.to_project and event.transfer_details.to_project.name) or "Unknown"
        body = f"{actor} transferred {count} {_plural(count)} from {source} to {destination}"
    elif event.activity == "transferred":
        body = f"{actor} transferred {count} {_plural(count)}: {names}"
    else:
        body = f"{actor} performed material activity: {names}"

    if event.project_name and event.activity != "transferred":
        body += f" in {event.project_name}"

    return NotificationPayload(
        title=title,
        body=_with_message(body, event.message),
        data={
            "activity_id": event.id,
            "project_id": event.project_id,
            "activity_type": "material_activity",
            "category": "material",
            "action": event.activity,
            "route": "notification",
        },
    )


def compose_transfer_out_notification(event: MaterialActivityEvent, payload: NotificationPayload) -> NotificationPayload:
    """Variant of a transfer notification addressed to the source project."""
    destination = "Unknown"
    if event.transfer_details and event.transfer_details.to_project and event.transfer_details.to_project.name:
        destination = event.transfer_details.to_project.name
    return payload.model_copy(update={
        "title": TRANSFER_OUT_TITLE,
        "body": payload.body.replace("transferred", f"transferred out to {destination}", 1),
    })
