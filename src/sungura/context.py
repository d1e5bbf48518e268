"""
Application context: every long-lived collaborator, built once at bootstrap.

    ctx = await AppContext.create()
    try:
        await ctx.reconciler.reconcile_all("farm-1")
    finally:
        await ctx.aclose()
"""

from __future__ import annotations

from dataclasses import dataclass

import httpx

from sungura.config import Settings, get_settings
from sungura.logging import get_logger
from sungura.offline.clients import ClientRegistry, SignalBus
from sungura.offline.controller import OfflineCacheController
from sungura.offline.notifications import MemoryNotificationSink, NotificationSink
from sungura.offline.registry import ControllerRegistry
from sungura.offline.storage import CacheStorage, MemoryCacheStorage, SQLiteCacheStorage
from sungura.offline.transport import OfflineTransport
from sungura.sync.api import FarmApiClient
from sungura.sync.kv import KeyValueBackend, MemoryKeyValueBackend, SQLiteKeyValueBackend
from sungura.sync.notify import Notifier
from sungura.sync.reconciler import ReconciliationCache
from sungura.sync.retry import RetryPolicy
from sungura.sync.store import EntityStore

logger = get_logger(__name__)


@dataclass
class AppContext:
    """Holds the collaborators shared by the offline and sync layers."""

    settings: Settings
    cache_storage: CacheStorage
    kv_backend: KeyValueBackend
    entity_store: EntityStore
    notifier: Notifier
    signals: SignalBus
    clients: ClientRegistry
    registry: ControllerRegistry
    notifications: NotificationSink
    network: httpx.AsyncClient
    http: httpx.AsyncClient
    api: FarmApiClient
    reconciler: ReconciliationCache

    @classmethod
    async def create(
        cls,
        settings: Settings | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        in_memory: bool = False,
    ) -> AppContext:
        """Build and initialize the context.

        Args:
            settings: Application settings (defaults to get_settings()).
            transport: Network transport, e.g. httpx.MockTransport in tests.
            in_memory: Use memory backends instead of SQLite files.
        """
        settings = settings or get_settings()

        if in_memory:
            cache_storage: CacheStorage = MemoryCacheStorage(quota_bytes=settings.CACHE_QUOTA_BYTES)
            kv_backend: KeyValueBackend = MemoryKeyValueBackend()
        else:
            settings.ensure_directories()
            sqlite_storage = SQLiteCacheStorage(settings.cache_db_path, settings.CACHE_QUOTA_BYTES)
            await sqlite_storage.init()
            cache_storage = sqlite_storage
            sqlite_kv = SQLiteKeyValueBackend(settings.snapshot_db_path)
            sqlite_kv.init()
            kv_backend = sqlite_kv

        signals = SignalBus()
        clients = ClientRegistry()
        registry = ControllerRegistry(clients=clients, signals=signals)
        notifier = Notifier()
        entity_store = EntityStore(kv_backend)

        network = httpx.AsyncClient(
            transport=transport,
            timeout=settings.REQUEST_TIMEOUT,
            follow_redirects=True,
        )
        http = httpx.AsyncClient(
            transport=OfflineTransport(registry, network=transport),
            headers={"Accept": "application/json"},
            timeout=settings.REQUEST_TIMEOUT,
        )
        api = FarmApiClient(settings, client=http)
        reconciler = ReconciliationCache(
            entity_store,
            api,
            retry_policy=RetryPolicy.from_settings(settings),
            notifier=notifier,
        )

        logger.info(
            "Application context ready",
            api_base_url=settings.API_BASE_URL,
            cache_name=settings.current_cache_name,
            in_memory=in_memory,
        )

        return cls(
            settings=settings,
            cache_storage=cache_storage,
            kv_backend=kv_backend,
            entity_store=entity_store,
            notifier=notifier,
            signals=signals,
            clients=clients,
            registry=registry,
            notifications=MemoryNotificationSink(),
            network=network,
            http=http,
            api=api,
            reconciler=reconciler,
        )

    def build_controller(self) -> OfflineCacheController:
        """A controller for the current cache version, wired to this context."""
        return OfflineCacheController.from_settings(
            self.settings,
            self.cache_storage,
            self.network,
            clients=self.clients,
            notifications=self.notifications,
            signals=self.signals,
        )

    async def install_controller(self) -> OfflineCacheController:
        """Install and activate the current controller version."""
        return await self.registry.register(self.build_controller())

    async def aclose(self) -> None:
        """Close HTTP clients and storage backends."""
        await self.api.close()
        await self.http.aclose()
        await self.network.aclose()
        if isinstance(self.cache_storage, SQLiteCacheStorage):
            await self.cache_storage.close()
        self.kv_backend.close()
