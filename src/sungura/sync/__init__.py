"""
Sync package: farm records kept locally and reconciled with the server.

This package provides:
- Key-value backends (kv.py) standing in for browser localStorage
- EntityStore (store.py): per-farm, per-kind snapshots with versioned writes
- FarmApiClient (api.py): the farm REST API
- RetryPolicy (retry.py): the shared retry policy for fetches
- Notifier (notify.py): user-facing toasts
- ReconciliationCache (reconciler.py): optimistic reads, confirmed writes
"""

from sungura.sync.api import FarmApiClient
from sungura.sync.kv import KeyValueBackend, MemoryKeyValueBackend, SQLiteKeyValueBackend
from sungura.sync.notify import Notifier, Toast, ToastLevel
from sungura.sync.reconciler import FarmView, ReconciliationCache
from sungura.sync.retry import RetryPolicy
from sungura.sync.store import EntityStore, snapshot_key

__all__ = [
    "EntityStore",
    "FarmApiClient",
    "FarmView",
    "KeyValueBackend",
    "MemoryKeyValueBackend",
    "Notifier",
    "ReconciliationCache",
    "RetryPolicy",
    "SQLiteKeyValueBackend",
    "Toast",
    "ToastLevel",
    "snapshot_key",
]
