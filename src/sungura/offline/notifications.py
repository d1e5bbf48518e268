"""
Push notification decoding and display.

Push payloads arrive as JSON ``{body, id, url}`` or as plain text. They are
turned into a Notification and handed to a NotificationSink, the surface
that actually shows it to the user.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

import orjson

from sungura.types import generate_id, utc_now

DEFAULT_ICON = "/icons/icon-192x192.png"
DEFAULT_BADGE = "/icons/icon-72x72.png"
DEFAULT_VIBRATE: tuple[int, ...] = (100, 50, 100)


@dataclass(frozen=True)
class NotificationAction:
    """Button shown on a notification."""

    action: str
    title: str


DEFAULT_ACTIONS: tuple[NotificationAction, ...] = (
    NotificationAction(action="view", title="View"),
    NotificationAction(action="dismiss", title="Dismiss"),
)


@dataclass(frozen=True)
class Notification:
    """User-facing notification descriptor."""

    title: str
    body: str
    icon: str = DEFAULT_ICON
    badge: str = DEFAULT_BADGE
    vibrate: tuple[int, ...] = DEFAULT_VIBRATE
    data: dict[str, Any] = field(default_factory=dict)
    actions: tuple[NotificationAction, ...] = DEFAULT_ACTIONS
    tag: str | None = None

    @property
    def url(self) -> str:
        """Target URL opened when the notification is viewed."""
        return str(self.data.get("url") or "/")


@dataclass(frozen=True)
class NotificationClick:
    """A user interaction with a displayed notification.

    ``action`` is the button pressed ("view", "dismiss") or empty for a
    click on the notification body.
    """

    notification: Notification
    action: str = ""


def decode_push_payload(payload: bytes | str | dict[str, Any] | None) -> dict[str, Any] | None:
    """Decode a push payload into ``{body, id, url}``.

    Args:
        payload: Raw push data.

    Returns:
        Decoded fields, or None if there is nothing to show.

    Raises:
        ValueError: If the payload cannot be decoded as text.
    """
    if payload is None:
        return None

    if isinstance(payload, dict):
        decoded: Any = payload
    else:
        text = payload.decode("utf-8") if isinstance(payload, bytes) else payload
        text = text.strip()
        if not text:
            return None
        try:
            decoded = orjson.loads(text)
        except orjson.JSONDecodeError:
            decoded = {"body": text}

    if not isinstance(decoded, dict):
        decoded = {"body": str(decoded)}

    body = decoded.get("body")
    if not body:
        return None

    return {
        "body": str(body),
        "id": decoded.get("id"),
        "url": decoded.get("url") or "/",
    }


def build_notification(fields: dict[str, Any], title: str) -> Notification:
    """Build the notification shown for decoded push fields."""
    primary_key = fields.get("id") or generate_id("push")
    return Notification(
        title=title,
        body=fields["body"],
        tag=str(primary_key),
        data={
            "date_of_arrival": utc_now().isoformat(),
            "primary_key": primary_key,
            "url": fields.get("url") or "/",
        },
    )


class NotificationSink(ABC):
    """Surface that displays notifications."""

    @abstractmethod
    async def show(self, notification: Notification) -> None:
        """Display a notification."""
        ...

    @abstractmethod
    async def close(self, notification: Notification) -> None:
        """Dismiss a displayed notification."""
        ...


class MemoryNotificationSink(NotificationSink):
    """Keeps displayed notifications in a list."""

    def __init__(self) -> None:
        self.displayed: list[Notification] = []

    async def show(self, notification: Notification) -> None:
        self.displayed.append(notification)

    async def close(self, notification: Notification) -> None:
        if notification in self.displayed:
            self.displayed.remove(notification)
