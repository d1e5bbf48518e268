"""
httpx transport that routes requests through the active offline controller.

Mount it on the application's AsyncClient so every request the shell makes
is answered the way the offline controller decides:

    registry = ControllerRegistry()
    client = httpx.AsyncClient(transport=OfflineTransport(registry))
"""

from __future__ import annotations

import httpx

from sungura.offline.controller import detach_response
from sungura.offline.registry import ControllerRegistry


class OfflineTransport(httpx.AsyncBaseTransport):
    """Routes requests to ``registry.active``, or to the network when none is active."""

    def __init__(
        self,
        registry: ControllerRegistry,
        network: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.registry = registry
        self._network = network or httpx.AsyncHTTPTransport()

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        controller = self.registry.active
        if controller is None:
            return await self._network.handle_async_request(request)

        response = await controller.handle(request)
        return detach_response(response, request)

    async def aclose(self) -> None:
        await self._network.aclose()
