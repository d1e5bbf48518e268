"""
Tests for controller registration and the offline transport.
"""

from __future__ import annotations

from typing import AsyncGenerator

import httpx
import pytest

from conftest import ORIGIN, FakeNetwork
from sungura.offline.clients import ClientRegistry, SignalBus
from sungura.offline.controller import ControllerState, OfflineCacheController
from sungura.offline.registry import ControllerRegistry
from sungura.offline.storage import MemoryCacheStorage
from sungura.offline.transport import OfflineTransport


@pytest.fixture
async def network(fake_network: FakeNetwork) -> AsyncGenerator[httpx.AsyncClient, None]:
    client = httpx.AsyncClient(transport=fake_network.transport)
    yield client
    await client.aclose()


def build(storage: MemoryCacheStorage, network: httpx.AsyncClient, version: int) -> OfflineCacheController:
    return OfflineCacheController(
        storage,
        network,
        origin=ORIGIN,
        cache_name=f"sungura-master-v{version}",
    )


class TestSignalBus:
    """Tests for lifecycle signal delivery."""

    def test_listeners_receive_payload(self) -> None:
        bus = SignalBus()
        received: list[str] = []
        bus.on("controllerchange", lambda controller: received.append(controller))

        bus.emit("controllerchange", controller="v2")

        assert received == ["v2"]
        assert bus.history == ["controllerchange"]

    def test_failing_listener_does_not_block_others(self) -> None:
        bus = SignalBus()
        received: list[str] = []

        def broken(**payload: object) -> None:
            raise RuntimeError("listener bug")

        bus.on("installed", broken)
        bus.on("installed", lambda **payload: received.append("ok"))
        bus.emit("installed")

        assert received == ["ok"]

    def test_off(self) -> None:
        bus = SignalBus()
        received: list[int] = []
        listener = lambda **payload: received.append(1)  # noqa: E731
        bus.on("activated", listener)
        bus.off("activated", listener)

        bus.emit("activated")

        assert received == []


class TestClientRegistry:
    """Tests for tracking open application clients."""

    def test_connect_find_disconnect(self) -> None:
        clients = ClientRegistry()
        home = clients.connect(f"{ORIGIN}/")
        rabbits = clients.connect(f"{ORIGIN}/rabbits")

        assert clients.find(f"{ORIGIN}/rabbits") is rabbits

        clients.disconnect(rabbits.id)

        assert clients.all() == [home]
        assert clients.find(f"{ORIGIN}/rabbits") is None

    def test_claim_sets_controller(self) -> None:
        clients = ClientRegistry()
        clients.connect(f"{ORIGIN}/")
        clients.connect(f"{ORIGIN}/hutches")

        assert clients.claim("v2") == 2
        assert {c.controller for c in clients.all()} == {"v2"}


class TestControllerRegistry:
    """Tests for version handover."""

    @pytest.mark.asyncio
    async def test_first_registration_activates(self, network: httpx.AsyncClient) -> None:
        registry = ControllerRegistry()
        controller = build(MemoryCacheStorage(), network, 2)

        await registry.register(controller)

        assert registry.active is controller
        assert registry.waiting is None
        assert controller.state is ControllerState.ACTIVATED
        assert controller.clients is registry.clients
        assert registry.signals.history == ["controllerchange"]

    @pytest.mark.asyncio
    async def test_new_version_replaces_old(self, network: httpx.AsyncClient) -> None:
        """Test that a new version announces itself, takes over and purges the old store."""
        storage = MemoryCacheStorage()
        clients = ClientRegistry()
        tab = clients.connect(f"{ORIGIN}/")
        registry = ControllerRegistry(clients=clients, signals=SignalBus())
        old = build(storage, network, 1)
        await registry.register(old)
        await storage.open("sungura-master-v1")

        new = build(storage, network, 2)
        await registry.register(new)

        assert registry.signals.history == [
            "controllerchange",
            "update_available",
            "controllerchange",
        ]
        assert registry.active is new
        assert old.state is ControllerState.REDUNDANT
        assert tab.controller is new
        assert "sungura-master-v1" not in await storage.keys()

    @pytest.mark.asyncio
    async def test_waits_without_skip_waiting(self, network: httpx.AsyncClient) -> None:
        """Test that a controller that did not ask to skip waiting stays waiting."""
        registry = ControllerRegistry()
        old = build(MemoryCacheStorage(), network, 1)
        await registry.register(old)

        new = build(MemoryCacheStorage(), network, 2)
        new.skip_waiting = lambda: None  # type: ignore[method-assign]
        await registry.register(new)

        assert registry.active is old
        assert registry.waiting is new
        assert new.state is ControllerState.INSTALLED

        promoted = await registry.skip_waiting()

        assert promoted is new
        assert registry.active is new
        assert old.state is ControllerState.REDUNDANT

    @pytest.mark.asyncio
    async def test_skip_waiting_with_nothing_waiting(self) -> None:
        assert await ControllerRegistry().skip_waiting() is None


class TestOfflineTransport:
    """Tests for routing an AsyncClient through the active controller."""

    @pytest.mark.asyncio
    async def test_no_active_controller_uses_network(self, fake_network: FakeNetwork) -> None:
        fake_network.add("GET", "/rabbits", httpx.Response(200, content=b"live"))
        registry = ControllerRegistry()

        async with httpx.AsyncClient(
            transport=OfflineTransport(registry, network=fake_network.transport)
        ) as client:
            response = await client.get(f"{ORIGIN}/rabbits")

        assert response.content == b"live"

    @pytest.mark.asyncio
    async def test_active_controller_serves_offline(
        self, fake_network: FakeNetwork, network: httpx.AsyncClient
    ) -> None:
        """Test that requests made while offline are answered by the controller."""
        fake_network.add("GET", "/app.js", httpx.Response(200, content=b"js"))
        registry = ControllerRegistry()
        await registry.register(build(MemoryCacheStorage(), network, 2))

        async with httpx.AsyncClient(
            transport=OfflineTransport(registry, network=fake_network.transport)
        ) as client:
            first = await client.get(f"{ORIGIN}/app.js")
            fake_network.offline = True
            second = await client.get(f"{ORIGIN}/app.js")
            page = await client.get(f"{ORIGIN}/hutches", headers={"accept": "text/html"})

        assert first.content == b"js"
        assert second.content == b"js"
        assert page.status_code == 200
        assert "You're currently offline" in page.text
