"""
Application clients and lifecycle signals.

An AppClient is one open instance of the application shell (a window or
tab). The ClientRegistry tracks them so a controller can claim every client
on activation and open or focus windows from notification clicks.

SignalBus carries the lifecycle signals the shell listens to:
"installed", "activated", "update_available", "controllerchange".
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Callable

from sungura.logging import get_logger
from sungura.types import generate_id

logger = get_logger(__name__)

Listener = Callable[..., None]


class SignalBus:
    """Synchronous publish/subscribe for lifecycle signals.

    A failing listener is logged and skipped; it never blocks the lifecycle
    step that emitted the signal.
    """

    def __init__(self) -> None:
        self._listeners: dict[str, list[Listener]] = defaultdict(list)
        self.history: list[str] = []

    def on(self, signal: str, listener: Listener) -> None:
        """Subscribe a listener to a signal."""
        self._listeners[signal].append(listener)

    def off(self, signal: str, listener: Listener) -> None:
        """Unsubscribe a listener."""
        if listener in self._listeners.get(signal, []):
            self._listeners[signal].remove(listener)

    def emit(self, signal: str, **payload: Any) -> None:
        """Call every listener of a signal with the payload."""
        self.history.append(signal)
        for listener in list(self._listeners.get(signal, [])):
            try:
                listener(**payload)
            except Exception as e:
                logger.warning("Lifecycle listener failed", signal=signal, error=str(e))


@dataclass(eq=False)
class AppClient:
    """An open instance of the application shell."""

    id: str
    url: str
    controller: Any = None
    focused: bool = False

    def focus(self) -> None:
        """Bring this client to the foreground."""
        self.focused = True


class ClientRegistry:
    """Tracks open application clients."""

    def __init__(self) -> None:
        self._clients: dict[str, AppClient] = {}

    def connect(self, url: str, controller: Any = None) -> AppClient:
        """Register a newly opened client."""
        client = AppClient(id=generate_id("client"), url=url, controller=controller)
        self._clients[client.id] = client
        return client

    def disconnect(self, client_id: str) -> None:
        """Forget a closed client."""
        self._clients.pop(client_id, None)

    def all(self) -> list[AppClient]:
        """All open clients, in connection order."""
        return list(self._clients.values())

    def find(self, url: str) -> AppClient | None:
        """First client currently showing ``url``."""
        for client in self._clients.values():
            if client.url == url:
                return client
        return None

    def open_window(self, url: str, controller: Any = None) -> AppClient:
        """Open a new focused client at ``url``."""
        client = self.connect(url, controller=controller)
        client.focus()
        logger.info("Opened client window", url=url, client_id=client.id)
        return client

    def claim(self, controller: Any) -> int:
        """Make ``controller`` the controller of every open client.

        Returns:
            Number of clients claimed.
        """
        for client in self._clients.values():
            client.controller = controller
        return len(self._clients)
