"""
Push provider clients.
ExpoPushGateway posts JSON batches to the Expo push endpoint over httpx.
FirebasePushGateway sends through the Firebase Admin SDK; it is initialized from a service
account file path or JSON string and only used when PUSH_PROVIDER=fcm.
"""
import asyncio
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import httpx

from app.core.config import BASE_DIR, Settings
from app.core.exceptions import PushGatewayError
from app.core.utils import token_preview

logger = logging.getLogger(__name__)

DEVICE_NOT_REGISTERED = "DeviceNotRegistered"
FIREBASE_APP_NAME = "push-notifications"


@dataclass
class PushMessage:
    to: str
    title: str
    body: str
    data: dict[str, Any] = field(default_factory=dict)
    sound: str | None = "default"
    badge: int | None = None
    priority: str = "high"
    ttl: int = 3600
    channel_id: str | None = None

    def to_expo(self) -> dict[str, Any]:
        message = {
            "to": self.to,
            "title": self.title,
            "body": self.body,
            "data": self.data,
            "sound": self.sound,
            "priority": self.priority,
            "ttl": self.ttl,
        }
        if self.badge is not None:
            message["badge"] = self.badge
        if self.channel_id:
            message["channelId"] = self.channel_id
        return message


@dataclass
class PushTicket:
    """Provider verdict for one message of a batch, in request order."""
    status: str  # "ok" or "error"
    id: str | None = None
    message: str | None = None
    error: str | None = None  # provider error code, e.g. DeviceNotRegistered

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    @classmethod
    def from_expo(cls, raw: dict[str, Any]) -> "PushTicket":
        details = raw.get("details") or {}
        return cls(
            status=raw.get("status", "error"),
            id=raw.get("id"),
            message=raw.get("message") or details.get("error"),
            error=details.get("error"),
        )


class PushGateway(ABC):
    name = "push"

    @abstractmethod
    async def send(self, messages: list[PushMessage]) -> list[PushTicket]:
        """Send one batch. Raises PushGatewayError when the whole batch is rejected."""

    async def aclose(self) -> None:
        return None


class ExpoPushGateway(PushGateway):
    name = "expo"

    def __init__(
        self,
        url: str,
        access_token: str = "",
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.url = url
        headers = {
            "Accept": "application/json",
            "Accept-Encoding": "gzip, deflate",
            "Content-Type": "application/json",
        }
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"
        self._client = client or httpx.AsyncClient(timeout=timeout, headers=headers)
        self._owns_client = client is None

    async def send(self, messages: list[PushMessage]) -> list[PushTicket]:
        try:
            response = await self._client.post(self.url, json=[m.to_expo() for m in messages])
        except httpx.HTTPError as e:
            raise PushGatewayError(f"Expo push request failed: {e}") from e

        if response.status_code >= 400:
            raise PushGatewayError(f"HTTP {response.status_code}: {response.text[:512]}", response.status_code)

        try:
            payload = response.json()
        except ValueError as e:
            raise PushGatewayError("Unexpected response format from Expo") from e

        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, list):
            raise PushGatewayError("Unexpected response format from Expo")
        return [PushTicket.from_expo(item) for item in data]

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


def load_firebase_credentials(settings: Settings) -> dict[str, Any] | None:
    """Load Firebase credentials from FIREBASE_CREDENTIALS_JSON (preferred) or FIREBASE_CREDENTIALS_PATH."""
    json_str = (settings.FIREBASE_CREDENTIALS_JSON or "").strip()
    if json_str:
        try:
            return json.loads(json_str)
        except json.JSONDecodeError as e:
            logger.warning("Firebase credentials JSON invalid: %s", e)
            return None
    path = (settings.FIREBASE_CREDENTIALS_PATH or "").strip()
    if path:
        p = Path(path)
        full_path = p if p.is_absolute() else BASE_DIR / path
        if full_path.exists():
            with open(full_path) as f:
                return json.load(f)
        logger.warning("Firebase credentials path not found: %s", full_path)
    return None


class FirebasePushGateway(PushGateway):
    name = "fcm"

    def __init__(self, credentials_dict: dict[str, Any]):
        import firebase_admin
        from firebase_admin import credentials

        try:
            self._app = firebase_admin.get_app(FIREBASE_APP_NAME)
            logger.info("Reusing initialized Firebase app %s", FIREBASE_APP_NAME)
        except ValueError:
            self._app = firebase_admin.initialize_app(
                credentials.Certificate(credentials_dict), name=FIREBASE_APP_NAME,
            )
            logger.info("Firebase Admin SDK initialized")

    def _to_fcm(self, message: PushMessage):
        from firebase_admin import messaging

        return messaging.Message(
            token=message.to,
            notification=messaging.Notification(title=message.title, body=message.body),
            # FCM requires string key-value pairs
            data={k: str(v) for k, v in message.data.items() if v is not None},
            android=messaging.AndroidConfig(
                priority="high" if message.priority == "high" else "normal",
                ttl=message.ttl,
            ),
        )

    def _send_each(self, messages: list[PushMessage]) -> list[PushTicket]:
        from firebase_admin import messaging

        response = messaging.send_each([self._to_fcm(m) for m in messages], app=self._app)
        tickets = []
        for message, item in zip(messages, response.responses):
            if item.success:
                tickets.append(PushTicket(status="ok", id=item.message_id))
            elif isinstance(item.exception, messaging.UnregisteredError):
                logger.warning("FCM: device token %s no longer valid (unregistered)", token_preview(message.to))
                tickets.append(PushTicket(status="error", message=str(item.exception), error=DEVICE_NOT_REGISTERED))
            else:
                tickets.append(PushTicket(status="error", message=str(item.exception)))
        return tickets

    async def send(self, messages: list[PushMessage]) -> list[PushTicket]:
        try:
            return await asyncio.to_thread(self._send_each, messages)
        except Exception as e:
            raise PushGatewayError(f"FCM send failed: {e}") from e

    async def aclose(self) -> None:
        import firebase_admin

        firebase_admin.delete_app(self._app)


def build_push_gateway(settings: Settings) -> PushGateway:
    if settings.PUSH_PROVIDER == "fcm":
        cred_dict = load_firebase_credentials(settings)
        if cred_dict:
            return FirebasePushGateway(cred_dict)
        logger.warning("PUSH_PROVIDER=fcm but no Firebase credentials configured; falling back to Expo")
    return ExpoPushGateway(
        settings.EXPO_PUSH_URL,
        access_token=settings.EXPO_ACCESS_TOKEN,
        timeout=settings.PUSH_REQUEST_TIMEOUT_SECONDS,
    )
