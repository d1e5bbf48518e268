"""
Tests for snapshot reconciliation and confirmed writes.
"""

from __future__ import annotations

from datetime import date
from typing import Any, AsyncGenerator, Callable

import httpx
import orjson
import pytest

from conftest import FakeNetwork, envelope
from sungura.config import Settings
from sungura.exceptions import ReconcileError, RemoteWriteError
from sungura.sync.api import FarmApiClient
from sungura.sync.kv import MemoryKeyValueBackend
from sungura.sync.notify import Notifier, ToastLevel
from sungura.sync.reconciler import ReconciliationCache
from sungura.sync.retry import RetryPolicy
from sungura.sync.store import EntityStore, version_key
from sungura.types import EntityKind, Hutch, Rabbit, RemovalRecord

PREFIX = "/api/v1"
FARM = "farm-1"


@pytest.fixture
def store() -> EntityStore:
    return EntityStore(MemoryKeyValueBackend())


@pytest.fixture
def notifier() -> Notifier:
    return Notifier()


@pytest.fixture
async def cache(
    mock_settings: Settings,
    fake_network: FakeNetwork,
    store: EntityStore,
    notifier: Notifier,
) -> AsyncGenerator[ReconciliationCache, None]:
    """Reconciliation cache with one immediate retry."""
    http = httpx.AsyncClient(transport=fake_network.transport)
    api = FarmApiClient(mock_settings, client=http)
    yield ReconciliationCache(store, api, RetryPolicy(max_attempts=2, delay_seconds=0), notifier)
    await http.aclose()


def hutches(*ids: str) -> list[dict[str, Any]]:
    return [{"id": h, "name": f"Hutch {h}"} for h in ids]


class TestLoad:
    """Tests for showing persisted snapshots."""

    @pytest.mark.asyncio
    async def test_load_marks_view_stale(self, cache: ReconciliationCache, store: EntityStore) -> None:
        await store.save(FARM, EntityKind.HUTCHES, [Hutch(id="H-1", name="A1")])

        items = cache.load(FARM, EntityKind.HUTCHES)

        assert [h.id for h in items] == ["H-1"]
        assert EntityKind.HUTCHES in cache.view(FARM).stale

    @pytest.mark.asyncio
    async def test_load_empty(self, cache: ReconciliationCache) -> None:
        assert cache.load(FARM, EntityKind.ROWS) == []


class TestReconcile:
    """Tests for reconcile()."""

    @pytest.mark.asyncio
    async def test_saves_before_returning(
        self, cache: ReconciliationCache, fake_network: FakeNetwork, store: EntityStore
    ) -> None:
        fake_network.add("GET", f"{PREFIX}/hutches/{FARM}", httpx.Response(200, json=envelope(hutches("H-1", "H-2"))))

        fresh = await cache.reconcile(FARM, EntityKind.HUTCHES)

        assert [h.id for h in fresh] == ["H-1", "H-2"]
        assert store.load(FARM, EntityKind.HUTCHES) == fresh
        assert cache.view(FARM).items(EntityKind.HUTCHES) == fresh
        assert EntityKind.HUTCHES not in cache.view(FARM).stale

    @pytest.mark.asyncio
    async def test_one_retry_then_success(
        self, cache: ReconciliationCache, fake_network: FakeNetwork, notifier: Notifier
    ) -> None:
        """Test that a transient server error is retried exactly once."""
        fake_network.add(
            "GET",
            f"{PREFIX}/hutches/{FARM}",
            [httpx.Response(500), httpx.Response(200, json=envelope(hutches("H-1")))],
        )

        fresh = await cache.reconcile(FARM, EntityKind.HUTCHES)

        assert [h.id for h in fresh] == ["H-1"]
        assert len(fake_network.calls("GET", f"{PREFIX}/hutches/{FARM}")) == 2
        assert notifier.toasts == []

    @pytest.mark.asyncio
    async def test_failure_keeps_stale_snapshot(
        self,
        cache: ReconciliationCache,
        fake_network: FakeNetwork,
        store: EntityStore,
        notifier: Notifier,
    ) -> None:
        """Test that exhausting retries surfaces the saved data and an error notice."""
        await store.save(FARM, EntityKind.HUTCHES, [Hutch(id="H-1", name="A1")])
        fake_network.add("GET", f"{PREFIX}/hutches/{FARM}", httpx.Response(503))

        with pytest.raises(ReconcileError) as exc_info:
            await cache.reconcile(FARM, EntityKind.HUTCHES)

        assert [h.id for h in exc_info.value.stale] == ["H-1"]
        assert len(fake_network.calls("GET", f"{PREFIX}/hutches/{FARM}")) == 2
        assert [h.id for h in store.load(FARM, EntityKind.HUTCHES)] == ["H-1"]
        assert notifier.toasts[-1].level is ToastLevel.ERROR
        assert EntityKind.HUTCHES in cache.view(FARM).stale

    @pytest.mark.asyncio
    async def test_undecodable_response_keeps_stale_snapshot(
        self,
        cache: ReconciliationCache,
        fake_network: FakeNetwork,
        store: EntityStore,
        notifier: Notifier,
    ) -> None:
        await store.save(FARM, EntityKind.HUTCHES, [Hutch(id="H-1", name="A1")])
        fake_network.add(
            "GET",
            f"{PREFIX}/hutches/{FARM}",
            lambda request: httpx.Response(200, content=b"{}", headers={"content-encoding": "gzip"}),
        )

        with pytest.raises(ReconcileError) as exc_info:
            await cache.reconcile(FARM, EntityKind.HUTCHES)

        assert [h.id for h in exc_info.value.stale] == ["H-1"]
        assert len(fake_network.calls("GET", f"{PREFIX}/hutches/{FARM}")) == 2
        assert notifier.toasts[-1].level is ToastLevel.ERROR

    @pytest.mark.asyncio
    async def test_client_errors_not_retried(
        self, cache: ReconciliationCache, fake_network: FakeNetwork
    ) -> None:
        with pytest.raises(ReconcileError):
            await cache.reconcile(FARM, EntityKind.ROWS)

        assert len(fake_network.calls("GET", f"{PREFIX}/rows/{FARM}")) == 1

    @pytest.mark.asyncio
    async def test_network_down_retried(
        self, cache: ReconciliationCache, fake_network: FakeNetwork
    ) -> None:
        fake_network.offline = True

        with pytest.raises(ReconcileError):
            await cache.reconcile(FARM, EntityKind.RABBITS)

        assert len(fake_network.requests) == 2

    @pytest.mark.asyncio
    async def test_malformed_response_keeps_snapshot(
        self, cache: ReconciliationCache, fake_network: FakeNetwork, store: EntityStore
    ) -> None:
        await store.save(FARM, EntityKind.HUTCHES, [Hutch(id="H-1", name="A1")])
        fake_network.add("GET", f"{PREFIX}/hutches/{FARM}", httpx.Response(200, json=envelope([{"id": "H-2"}])))

        with pytest.raises(ReconcileError):
            await cache.reconcile(FARM, EntityKind.HUTCHES)

        assert [h.id for h in store.load(FARM, EntityKind.HUTCHES)] == ["H-1"]

    @pytest.mark.asyncio
    async def test_write_during_fetch_triggers_refetch(
        self, cache: ReconciliationCache, fake_network: FakeNetwork, store: EntityStore
    ) -> None:
        """Test that a snapshot written while a fetch is in flight is not overwritten blindly."""
        responses = [hutches("H-1"), hutches("H-1", "H-2")]

        def respond(request: httpx.Request) -> httpx.Response:
            if len(responses) == 2:
                # Another writer lands between the version read and the save
                store.backend.set(version_key(FARM, EntityKind.HUTCHES), "7")
            return httpx.Response(200, json=envelope(responses.pop(0)))

        fake_network.add("GET", f"{PREFIX}/hutches/{FARM}", respond)

        fresh = await cache.reconcile(FARM, EntityKind.HUTCHES)

        assert [h.id for h in fresh] == ["H-1", "H-2"]
        assert len(fake_network.calls("GET", f"{PREFIX}/hutches/{FARM}")) == 2
        assert store.version(FARM, EntityKind.HUTCHES) == 8

    @pytest.mark.asyncio
    async def test_removals_not_reconciled_farm_wide(self, cache: ReconciliationCache) -> None:
        with pytest.raises(ValueError):
            await cache.reconcile(FARM, EntityKind.REMOVALS)

    @pytest.mark.asyncio
    async def test_reconcile_all_is_independent(
        self,
        cache: ReconciliationCache,
        fake_network: FakeNetwork,
        rabbit_data: Callable[..., dict[str, Any]],
    ) -> None:
        """Test that one failing kind does not stop the others."""
        fake_network.add("GET", f"{PREFIX}/rows/{FARM}", httpx.Response(500))
        fake_network.add("GET", f"{PREFIX}/hutches/{FARM}", httpx.Response(200, json=envelope(hutches("H-1"))))
        fake_network.add("GET", f"{PREFIX}/rabbits/{FARM}", httpx.Response(200, json=envelope([rabbit_data()])))

        outcome = await cache.reconcile_all(FARM)

        assert isinstance(outcome[EntityKind.ROWS], ReconcileError)
        assert [h.id for h in outcome[EntityKind.HUTCHES]] == ["H-1"]
        assert [r.rabbit_id for r in outcome[EntityKind.RABBITS]] == ["RB-001"]


class TestHutchHistory:
    """Tests for merging removal history."""

    @pytest.mark.asyncio
    async def test_merge_keeps_other_hutches(
        self, cache: ReconciliationCache, fake_network: FakeNetwork, store: EntityStore
    ) -> None:
        await store.save(
            FARM,
            EntityKind.REMOVALS,
            [
                RemovalRecord(rabbit_id="RB-020", reason="Death", hutch_id="H-2"),
                RemovalRecord(rabbit_id="RB-010", reason="Cull", hutch_id="H-1"),
            ],
        )
        fake_network.add(
            "GET",
            f"{PREFIX}/hutches/{FARM}/H-1/history",
            httpx.Response(
                200,
                json=envelope(
                    [
                        {"rabbit_id": "RB-011", "reason": "Sale", "hutch_id": "H-1"},
                        {"rabbit_id": "RB-012", "reason": "Death", "hutch_id": "H-1"},
                    ]
                ),
            ),
        )

        history = await cache.load_hutch_history(FARM, "H-1")

        assert [r.rabbit_id for r in history] == ["RB-011", "RB-012"]
        assert [r.rabbit_id for r in store.load(FARM, EntityKind.REMOVALS)] == ["RB-020", "RB-011", "RB-012"]

    @pytest.mark.asyncio
    async def test_failure_returns_hutch_records(
        self, cache: ReconciliationCache, fake_network: FakeNetwork, store: EntityStore
    ) -> None:
        await store.save(
            FARM,
            EntityKind.REMOVALS,
            [
                RemovalRecord(rabbit_id="RB-020", reason="Death", hutch_id="H-2"),
                RemovalRecord(rabbit_id="RB-010", reason="Cull", hutch_id="H-1"),
            ],
        )
        fake_network.offline = True

        with pytest.raises(ReconcileError) as exc_info:
            await cache.load_hutch_history(FARM, "H-1")

        assert [r.rabbit_id for r in exc_info.value.stale] == ["RB-010"]


class TestCreate:
    """Tests for server-first creates."""

    @pytest.mark.asyncio
    async def test_failed_create_leaves_snapshot_untouched(
        self,
        cache: ReconciliationCache,
        fake_network: FakeNetwork,
        store: EntityStore,
        notifier: Notifier,
    ) -> None:
        """Test that a rejected create never reaches the snapshot."""
        await store.save(FARM, EntityKind.HUTCHES, [Hutch(id="H-1", name="A1")])
        version = store.version(FARM, EntityKind.HUTCHES)
        fake_network.add("POST", f"{PREFIX}/hutches/{FARM}", httpx.Response(500))

        with pytest.raises(RemoteWriteError) as exc_info:
            await cache.create(FARM, EntityKind.HUTCHES, {"name": "B2"})

        assert exc_info.value.status_code == 500
        assert store.version(FARM, EntityKind.HUTCHES) == version
        assert [h.id for h in store.load(FARM, EntityKind.HUTCHES)] == ["H-1"]
        assert cache.view(FARM).pending_items(EntityKind.HUTCHES) == []
        assert notifier.toasts[-1].title == "Failed to add hutch"
        # Writes are not retried
        assert len(fake_network.calls("POST", f"{PREFIX}/hutches/{FARM}")) == 1

    @pytest.mark.asyncio
    async def test_create_without_token(
        self,
        mock_settings: Settings,
        fake_network: FakeNetwork,
        store: EntityStore,
        notifier: Notifier,
    ) -> None:
        settings = mock_settings.model_copy(update={"API_TOKEN": None})
        async with httpx.AsyncClient(transport=fake_network.transport) as http:
            cache = ReconciliationCache(
                store, FarmApiClient(settings, client=http), RetryPolicy(delay_seconds=0), notifier
            )

            with pytest.raises(RemoteWriteError) as exc_info:
                await cache.create(FARM, EntityKind.HUTCHES, {"name": "B2"})

        assert exc_info.value.status_code is None
        assert "API_TOKEN" in exc_info.value.message
        assert cache.view(FARM).pending_items(EntityKind.HUTCHES) == []
        assert notifier.toasts[-1].title == "Failed to add hutch"
        assert fake_network.requests == []

    @pytest.mark.asyncio
    async def test_pending_while_in_flight(
        self, cache: ReconciliationCache, fake_network: FakeNetwork
    ) -> None:
        seen: list[int] = []

        def respond(request: httpx.Request) -> httpx.Response:
            seen.append(len(cache.view(FARM).pending_items(EntityKind.ROWS)))
            return httpx.Response(201, json=envelope({"id": "row-2"}))

        fake_network.add("POST", f"{PREFIX}/rows/{FARM}", respond)

        await cache.create(FARM, EntityKind.ROWS, {"name": "Row B"})

        assert seen == [1]
        assert cache.view(FARM).pending_items(EntityKind.ROWS) == []

    @pytest.mark.asyncio
    async def test_confirmed_create_is_saved(
        self,
        cache: ReconciliationCache,
        fake_network: FakeNetwork,
        store: EntityStore,
        notifier: Notifier,
    ) -> None:
        await store.save(FARM, EntityKind.HUTCHES, [Hutch(id="H-1", name="A1")])
        fake_network.add(
            "POST", f"{PREFIX}/hutches/{FARM}", httpx.Response(201, json=envelope({"id": "H-2"}))
        )

        hutch = await cache.create(FARM, EntityKind.HUTCHES, {"name": "B2"})

        assert hutch == Hutch(id="H-2", name="B2")
        assert [h.id for h in store.load(FARM, EntityKind.HUTCHES)] == ["H-1", "H-2"]
        assert notifier.toasts[-1].title == "Hutch added"


class TestUpdate:
    """Tests for rabbit updates."""

    @pytest.mark.asyncio
    async def test_update_replaces_by_identity(
        self,
        cache: ReconciliationCache,
        fake_network: FakeNetwork,
        store: EntityStore,
        rabbit_data: Callable[..., dict[str, Any]],
    ) -> None:
        await store.save(
            FARM,
            EntityKind.RABBITS,
            [
                Rabbit.from_dict(rabbit_data()),
                Rabbit.from_dict(rabbit_data(id="r-2", rabbit_id="RB-002", name="Thumper")),
            ],
        )
        fake_network.add(
            "PUT",
            f"{PREFIX}/rabbits/{FARM}/RB-001",
            httpx.Response(200, json=envelope(rabbit_data(weight=4.1))),
        )

        await cache.update(FARM, EntityKind.RABBITS, "RB-001", {"weight": 4.1})

        rabbits = store.load(FARM, EntityKind.RABBITS)
        assert [r.rabbit_id for r in rabbits] == ["RB-001", "RB-002"]
        assert rabbits[0].weight == 4.1

    @pytest.mark.asyncio
    async def test_only_rabbits_are_updatable(self, cache: ReconciliationCache) -> None:
        with pytest.raises(ValueError):
            await cache.update(FARM, EntityKind.HUTCHES, "H-1", {"name": "x"})


class TestRemoveRabbit:
    """Tests for rabbit removal."""

    @pytest.fixture
    async def daisy(self, store: EntityStore, rabbit_data: Callable[..., dict[str, Any]]) -> Rabbit:
        rabbit = Rabbit.from_dict(rabbit_data(hutch_name="A1"))
        await store.save(FARM, EntityKind.RABBITS, [rabbit])
        await store.save(
            FARM, EntityKind.REMOVALS, [RemovalRecord(rabbit_id="RB-000", reason="Death", hutch_id="H-3")]
        )
        return rabbit

    @pytest.mark.asyncio
    async def test_sale_records_removal_and_earnings(
        self,
        cache: ReconciliationCache,
        fake_network: FakeNetwork,
        store: EntityStore,
        daisy: Rabbit,
    ) -> None:
        """Test that a sale drops the rabbit, prepends the record and books the income."""
        fake_network.add(
            "POST",
            f"{PREFIX}/rabbits/rabbit_removals/{FARM}/RB-001",
            httpx.Response(200, json=envelope(None, message="Rabbit removed")),
        )
        fake_network.add("POST", f"{PREFIX}/earnings", httpx.Response(201, json=envelope({"id": "E-1"})))

        record = await cache.remove_rabbit(
            FARM, "RB-001", "Sale", notes="Market", removal_date=date(2024, 6, 1), sale_amount=35.0, currency="KES"
        )

        assert record.hutch_id == "H-1"
        assert record.hutch_name == "A1"
        assert store.load(FARM, EntityKind.RABBITS) == []
        assert [r.rabbit_id for r in store.load(FARM, EntityKind.REMOVALS)] == ["RB-001", "RB-000"]

        earnings = store.load(FARM, EntityKind.EARNINGS)
        assert len(earnings) == 1
        assert earnings[0].type == "rabbit_sale"
        assert earnings[0].amount == 35.0
        sent = orjson.loads(fake_network.calls("POST", f"{PREFIX}/earnings")[0].content)
        assert sent["date"] == "2024-06-01"
        assert sent["currency"] == "KES"

    @pytest.mark.asyncio
    async def test_earnings_failure_keeps_removal(
        self,
        cache: ReconciliationCache,
        fake_network: FakeNetwork,
        store: EntityStore,
        notifier: Notifier,
        daisy: Rabbit,
    ) -> None:
        fake_network.add(
            "POST",
            f"{PREFIX}/rabbits/rabbit_removals/{FARM}/RB-001",
            httpx.Response(200, json=envelope(None)),
        )

        record = await cache.remove_rabbit(FARM, "RB-001", "Sale", sale_amount=20.0)

        assert record.rabbit_id == "RB-001"
        assert store.load(FARM, EntityKind.RABBITS) == []
        assert store.load(FARM, EntityKind.EARNINGS) == []
        assert notifier.toasts[-1].title == "Rabbit removed"

    @pytest.mark.asyncio
    async def test_death_creates_no_earnings(
        self, cache: ReconciliationCache, fake_network: FakeNetwork, daisy: Rabbit
    ) -> None:
        fake_network.add(
            "POST",
            f"{PREFIX}/rabbits/rabbit_removals/{FARM}/RB-001",
            httpx.Response(200, json=envelope(None)),
        )

        await cache.remove_rabbit(FARM, "RB-001", "Death")

        assert fake_network.calls("POST", f"{PREFIX}/earnings") == []

    @pytest.mark.asyncio
    async def test_rejected_removal_keeps_rabbit(
        self,
        cache: ReconciliationCache,
        fake_network: FakeNetwork,
        store: EntityStore,
        daisy: Rabbit,
    ) -> None:
        fake_network.add(
            "POST",
            f"{PREFIX}/rabbits/rabbit_removals/{FARM}/RB-001",
            httpx.Response(400, json=envelope(success=False, message="Rabbit already removed")),
        )

        with pytest.raises(RemoteWriteError):
            await cache.remove_rabbit(FARM, "RB-001", "Death")

        assert store.load(FARM, EntityKind.RABBITS) == [daisy]


class TestDeletes:
    """Tests for hutch and row deletion."""

    @pytest.mark.asyncio
    async def test_delete_hutch(
        self, cache: ReconciliationCache, fake_network: FakeNetwork, store: EntityStore
    ) -> None:
        await store.save(FARM, EntityKind.HUTCHES, [Hutch(id="H-1", name="A1"), Hutch(id="H-2", name="A2")])
        fake_network.add("DELETE", f"{PREFIX}/hutches/{FARM}/H-1", httpx.Response(200, json=envelope()))

        await cache.delete_hutch(FARM, "H-1")

        assert [h.id for h in store.load(FARM, EntityKind.HUTCHES)] == ["H-2"]

    @pytest.mark.asyncio
    async def test_failed_delete_keeps_hutch(
        self, cache: ReconciliationCache, store: EntityStore
    ) -> None:
        await store.save(FARM, EntityKind.HUTCHES, [Hutch(id="H-1", name="A1")])

        with pytest.raises(RemoteWriteError):
            await cache.delete_hutch(FARM, "H-1")

        assert [h.id for h in store.load(FARM, EntityKind.HUTCHES)] == ["H-1"]
