"""
Controller registration and version handover.

The ControllerRegistry plays the part of the browser's service worker
registration: it installs a new controller version, announces the update,
and promotes it to active, retiring the previous version so that no stale
controller keeps routing requests.
"""

from __future__ import annotations

from sungura.logging import get_logger
from sungura.offline.clients import ClientRegistry, SignalBus
from sungura.offline.controller import ControllerState, OfflineCacheController

logger = get_logger(__name__)


class ControllerRegistry:
    """Tracks the active and waiting controller versions.

    Signals emitted on the bus:
        update_available: a new version installed while another is active
        controllerchange: the active controller changed
    """

    def __init__(
        self,
        clients: ClientRegistry | None = None,
        signals: SignalBus | None = None,
    ) -> None:
        self.clients = clients or ClientRegistry()
        self.signals = signals or SignalBus()
        self.active: OfflineCacheController | None = None
        self.waiting: OfflineCacheController | None = None

    async def register(self, controller: OfflineCacheController) -> OfflineCacheController:
        """Install a controller and promote it when allowed.

        A controller that requested skip-waiting (the default after install),
        or that arrives when nothing is active, is activated immediately.
        Otherwise it waits until skip_waiting() is called.

        Args:
            controller: Freshly built controller.

        Returns:
            The registered controller.
        """
        if controller.clients is None:
            controller.clients = self.clients

        await controller.install()

        if self.active is not None and self.active is not controller:
            logger.info(
                "New controller version available",
                current=self.active.cache_name,
                incoming=controller.cache_name,
            )
            self.signals.emit("update_available", controller=controller)

        if self.active is None or controller.skip_waiting_requested:
            await self._promote(controller)
        else:
            self.waiting = controller

        return controller

    async def skip_waiting(self) -> OfflineCacheController | None:
        """Promote the waiting controller, if any."""
        if self.waiting is None:
            return None
        controller = self.waiting
        await self._promote(controller)
        return controller

    async def _promote(self, controller: OfflineCacheController) -> None:
        previous = self.active
        self.waiting = None

        await controller.activate()

        if previous is not None and previous is not controller:
            previous.state = ControllerState.REDUNDANT
        self.active = controller

        logger.info("Controller change", cache_name=controller.cache_name)
        self.signals.emit("controllerchange", controller=controller)
