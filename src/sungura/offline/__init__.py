"""
Offline package: request caching for the application shell.

This package provides:
- Cache storage backends (memory and SQLite) with quota-aware eviction
- Request classification (cacheable or not, destination)
- The offline cache controller (install, activate, handle, push)
- Controller registration and an httpx transport that routes through it
"""

from sungura.offline.classify import Cacheability, Destination, classify_request
from sungura.offline.clients import AppClient, ClientRegistry, SignalBus
from sungura.offline.controller import (
    ControllerState,
    InstallManifest,
    InstallReport,
    OfflineCacheController,
)
from sungura.offline.notifications import (
    MemoryNotificationSink,
    Notification,
    NotificationClick,
    NotificationSink,
)
from sungura.offline.registry import ControllerRegistry
from sungura.offline.storage import (
    CacheStorage,
    MemoryCacheStorage,
    SQLiteCacheStorage,
    StorageEstimate,
)
from sungura.offline.transport import OfflineTransport

__all__ = [
    "AppClient",
    "CacheStorage",
    "Cacheability",
    "ClientRegistry",
    "ControllerRegistry",
    "ControllerState",
    "Destination",
    "InstallManifest",
    "InstallReport",
    "MemoryCacheStorage",
    "MemoryNotificationSink",
    "Notification",
    "NotificationClick",
    "NotificationSink",
    "OfflineCacheController",
    "OfflineTransport",
    "SQLiteCacheStorage",
    "SignalBus",
    "StorageEstimate",
    "classify_request",
]
