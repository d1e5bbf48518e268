"""
User-facing notices for sync outcomes.

The Notifier is an explicit object passed to whoever needs to tell the user
something (a failed reconcile, a rejected write). It keeps the toasts it
was given and echoes each one to the log.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable

from sungura.logging import get_logger
from sungura.types import utc_now

logger = get_logger(__name__)


class ToastLevel(str, Enum):
    SUCCESS = "success"
    INFO = "info"
    ERROR = "error"


@dataclass(frozen=True)
class Toast:
    """A short message for the user."""

    level: ToastLevel
    title: str
    message: str = ""
    created_at: datetime = field(default_factory=utc_now)


class Notifier:
    """Collects toasts and forwards them to subscribers and the log."""

    def __init__(self) -> None:
        self.toasts: list[Toast] = []
        self._subscribers: list[Callable[[Toast], None]] = []

    def subscribe(self, callback: Callable[[Toast], None]) -> None:
        """Receive every future toast."""
        self._subscribers.append(callback)

    def publish(self, level: ToastLevel, title: str, message: str = "") -> Toast:
        toast = Toast(level=level, title=title, message=message)
        self.toasts.append(toast)

        if level is ToastLevel.ERROR:
            logger.warning(title, detail=message)
        else:
            logger.info(title, detail=message)

        for callback in list(self._subscribers):
            callback(toast)
        return toast

    def success(self, title: str, message: str = "") -> Toast:
        return self.publish(ToastLevel.SUCCESS, title, message)

    def info(self, title: str, message: str = "") -> Toast:
        return self.publish(ToastLevel.INFO, title, message)

    def error(self, title: str, message: str = "") -> Toast:
        return self.publish(ToastLevel.ERROR, title, message)

    def clear(self) -> None:
        self.toasts.clear()
