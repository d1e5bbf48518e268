"""
Durable cache storage for the offline controller.

A CacheStorage holds named, versioned cache stores. Each store maps a
request key (method + normalized URL) to a stored HTTP response. Entries
have no TTL; they live until their store is deleted or until quota pressure
evicts the least recently accessed entries of the store being written.

Backends:
- MemoryCacheStorage: dict-backed, with failure and usage simulation for tests
- SQLiteCacheStorage: aiosqlite-backed, persists across restarts
"""

from __future__ import annotations

import itertools
import sqlite3
from abc import ABC, abstractmethod
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import aiosqlite
import httpx
import orjson

from sungura.exceptions import CacheStorageError, QuotaExceededError
from sungura.logging import get_logger
from sungura.types import utc_now

logger = get_logger(__name__)

_DEFAULT_PORTS = {"http": 80, "https": 443}

# Errors a storage backend may raise; callers degrade instead of failing
STORAGE_ERRORS: tuple[type[Exception], ...] = (CacheStorageError, sqlite3.Error, OSError)


def normalize_url(url: str | httpx.URL) -> str:
    """Normalize a URL for use in a cache key.

    Lower-cases scheme and host, drops default ports and fragments, and
    sorts query parameters so equivalent URLs share one entry.
    """
    parts = urlsplit(str(url))
    scheme = parts.scheme.lower()
    host = (parts.hostname or "").lower()
    port = parts.port
    netloc = host if port is None or _DEFAULT_PORTS.get(scheme) == port else f"{host}:{port}"
    query = urlencode(sorted(parse_qsl(parts.query, keep_blank_values=True)))
    return urlunsplit((scheme, netloc, parts.path or "/", query, ""))


def request_key(request: httpx.Request) -> str:
    """Cache key for a request: ``METHOD normalized-url``."""
    return f"{request.method.upper()} {normalize_url(request.url)}"


@dataclass(frozen=True)
class StorageEstimate:
    """Storage usage estimate in bytes."""

    usage: int
    quota: int

    @property
    def ratio(self) -> float:
        """Fraction of the quota in use."""
        if self.quota <= 0:
            return 1.0
        return self.usage / self.quota


@dataclass
class StoredResponse:
    """A response as held in a cache store."""

    url: str
    status_code: int
    headers: list[tuple[str, str]]
    content: bytes
    stored_at: datetime = field(default_factory=utc_now)

    @property
    def size(self) -> int:
        return len(self.content)

    @classmethod
    def from_response(cls, response: httpx.Response, url: str) -> StoredResponse:
        """Capture a fully read httpx response."""
        headers = [
            (k, v)
            for k, v in response.headers.multi_items()
            # Body is stored decoded, so encoding/length headers no longer apply
            if k.lower() not in ("content-encoding", "content-length", "transfer-encoding")
        ]
        return cls(
            url=url,
            status_code=response.status_code,
            headers=headers,
            content=response.content,
        )

    def to_response(self, request: httpx.Request) -> httpx.Response:
        """Rebuild an httpx response bound to the given request."""
        return httpx.Response(
            status_code=self.status_code,
            headers=self.headers,
            content=self.content,
            request=request,
        )


class CacheStore:
    """Handle to one named cache store inside a CacheStorage."""

    def __init__(self, storage: CacheStorage, name: str) -> None:
        self.storage = storage
        self.name = name

    async def match(self, request: httpx.Request) -> httpx.Response | None:
        """Return the cached response for a request, or None."""
        stored = await self.storage._get_entry(self.name, request_key(request))
        return stored.to_response(request) if stored is not None else None

    async def put(self, request: httpx.Request, response: httpx.Response) -> None:
        """Store a response for a request, evicting LRU entries if needed."""
        stored = StoredResponse.from_response(response, str(request.url))
        await self.storage._make_room(self.name, stored.size)
        await self.storage._put_entry(self.name, request_key(request), stored)

    async def delete(self, request: httpx.Request) -> bool:
        """Remove the entry for a request. Returns True if one existed."""
        return await self.storage._delete_entry(self.name, request_key(request))

    async def keys(self) -> list[str]:
        """Request keys held by this store."""
        return await self.storage._entry_keys(self.name)


class CacheStorage(ABC):
    """Abstract collection of named cache stores."""

    def __init__(self, quota_bytes: int | None = None) -> None:
        self.quota_bytes = quota_bytes

    async def open(self, name: str) -> CacheStore:
        """Open (creating if needed) the named store."""
        await self._create_store(name)
        return CacheStore(self, name)

    async def estimate(self) -> StorageEstimate | None:
        """Estimate usage against quota, or None when no quota is known."""
        if self.quota_bytes is None:
            return None
        return StorageEstimate(usage=await self._usage(), quota=self.quota_bytes)

    async def _make_room(self, store: str, size: int) -> None:
        """Evict least recently accessed entries of ``store`` until ``size`` fits."""
        if self.quota_bytes is None:
            return
        if size > self.quota_bytes:
            raise QuotaExceededError(
                "Entry larger than storage quota",
                context={"store": store, "size": size, "quota": self.quota_bytes},
            )
        usage = await self._usage()
        while usage + size > self.quota_bytes:
            victim = await self._lru_key(store)
            if victim is None:
                raise QuotaExceededError(
                    "Storage quota exhausted",
                    context={"store": store, "usage": usage, "size": size, "quota": self.quota_bytes},
                )
            await self._delete_entry(store, victim)
            logger.debug("Evicted cache entry under quota pressure", store=store, key=victim)
            usage = await self._usage()

    @abstractmethod
    async def keys(self) -> list[str]:
        """Names of all stores, oldest first."""
        ...

    @abstractmethod
    async def delete(self, name: str) -> bool:
        """Delete a store and all its entries. Returns True if it existed."""
        ...

    @abstractmethod
    async def _create_store(self, name: str) -> None: ...

    @abstractmethod
    async def _get_entry(self, store: str, key: str) -> StoredResponse | None: ...

    @abstractmethod
    async def _put_entry(self, store: str, key: str, stored: StoredResponse) -> None: ...

    @abstractmethod
    async def _delete_entry(self, store: str, key: str) -> bool: ...

    @abstractmethod
    async def _entry_keys(self, store: str) -> list[str]: ...

    @abstractmethod
    async def _usage(self) -> int: ...

    @abstractmethod
    async def _lru_key(self, store: str) -> str | None: ...


class MemoryCacheStorage(CacheStorage):
    """In-memory cache storage.

    Args:
        quota_bytes: Optional quota; enables estimate() and LRU eviction.
        fail_on: Operation names ("open", "match", "put", "delete", "keys",
            "estimate") that raise CacheStorageError, for failure simulation.
        usage_override: Report this usage from estimate() instead of the
            real byte count, for quota-guard simulation.
    """

    def __init__(
        self,
        quota_bytes: int | None = None,
        fail_on: set[str] | None = None,
        usage_override: int | None = None,
    ) -> None:
        super().__init__(quota_bytes)
        self.fail_on: set[str] = set(fail_on or ())
        self.usage_override = usage_override
        self._stores: dict[str, OrderedDict[str, StoredResponse]] = {}

    def _check(self, operation: str, store: str | None = None) -> None:
        if operation in self.fail_on:
            raise CacheStorageError(
                f"Simulated {operation} failure",
                context={"store": store, "operation": operation},
            )

    async def keys(self) -> list[str]:
        self._check("keys")
        return list(self._stores)

    async def delete(self, name: str) -> bool:
        self._check("delete", name)
        return self._stores.pop(name, None) is not None

    async def estimate(self) -> StorageEstimate | None:
        self._check("estimate")
        if self.quota_bytes is None:
            return None
        usage = self.usage_override if self.usage_override is not None else await self._usage()
        return StorageEstimate(usage=usage, quota=self.quota_bytes)

    async def _create_store(self, name: str) -> None:
        self._check("open", name)
        self._stores.setdefault(name, OrderedDict())

    async def _get_entry(self, store: str, key: str) -> StoredResponse | None:
        self._check("match", store)
        entries = self._stores.get(store)
        if entries is None or key not in entries:
            return None
        entries.move_to_end(key)
        return entries[key]

    async def _put_entry(self, store: str, key: str, stored: StoredResponse) -> None:
        self._check("put", store)
        entries = self._stores.setdefault(store, OrderedDict())
        entries[key] = stored
        entries.move_to_end(key)

    async def _delete_entry(self, store: str, key: str) -> bool:
        entries = self._stores.get(store)
        if entries is None:
            return False
        return entries.pop(key, None) is not None

    async def _entry_keys(self, store: str) -> list[str]:
        return list(self._stores.get(store, ()))

    async def _usage(self) -> int:
        return sum(s.size for entries in self._stores.values() for s in entries.values())

    async def _lru_key(self, store: str) -> str | None:
        entries = self._stores.get(store)
        if not entries:
            return None
        return next(iter(entries))


class SQLiteCacheStorage(CacheStorage):
    """Cache storage persisted in a SQLite database via aiosqlite.

    Bodies are stored as BLOBs beside their status and headers. LRU order
    comes from a monotonically increasing access sequence.
    """

    def __init__(self, db_path: str | Path, quota_bytes: int | None = None) -> None:
        """Initialize cache storage.

        Args:
            db_path: Path to the SQLite database file.
            quota_bytes: Optional quota; enables estimate() and LRU eviction.
        """
        super().__init__(quota_bytes)
        self.db_path = Path(db_path)
        self._db: aiosqlite.Connection | None = None
        self._access_seq = itertools.count()

    async def init(self) -> None:
        """Open the database and create the schema. Safe to call twice."""
        if self._db is not None:
            return

        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(self.db_path)
        self._db.row_factory = aiosqlite.Row

        await self._db.execute("""
            CREATE TABLE IF NOT EXISTS stores (
                name TEXT PRIMARY KEY,
                created_at TEXT NOT NULL
            )
        """)
        await self._db.execute("""
            CREATE TABLE IF NOT EXISTS entries (
                store TEXT NOT NULL,
                key TEXT NOT NULL,
                url TEXT NOT NULL,
                status_code INTEGER NOT NULL,
                headers TEXT NOT NULL,
                body BLOB NOT NULL,
                size INTEGER NOT NULL,
                stored_at TEXT NOT NULL,
                access_seq INTEGER NOT NULL,
                PRIMARY KEY (store, key)
            )
        """)
        await self._db.execute(
            "CREATE INDEX IF NOT EXISTS idx_entries_lru ON entries(store, access_seq)"
        )
        await self._db.commit()

        async with self._db.execute("SELECT MAX(access_seq) AS seq FROM entries") as cursor:
            row = await cursor.fetchone()
        start = (row["seq"] or 0) + 1 if row else 1
        self._access_seq = itertools.count(start)

        logger.info("Offline cache storage initialized", db_path=str(self.db_path))

    async def close(self) -> None:
        """Close the database connection."""
        if self._db:
            await self._db.close()
            self._db = None

    def _conn(self) -> aiosqlite.Connection:
        if self._db is None:
            raise CacheStorageError(
                "SQLiteCacheStorage not initialized. Call init() first.",
                context={"db_path": str(self.db_path)},
            )
        return self._db

    async def keys(self) -> list[str]:
        async with self._conn().execute(
            "SELECT name FROM stores ORDER BY created_at, rowid"
        ) as cursor:
            rows = await cursor.fetchall()
        return [row["name"] for row in rows]

    async def delete(self, name: str) -> bool:
        db = self._conn()
        cursor = await db.execute("DELETE FROM stores WHERE name = ?", (name,))
        existed = cursor.rowcount > 0
        await db.execute("DELETE FROM entries WHERE store = ?", (name,))
        await db.commit()
        return existed

    async def _create_store(self, name: str) -> None:
        db = self._conn()
        await db.execute(
            "INSERT OR IGNORE INTO stores (name, created_at) VALUES (?, ?)",
            (name, utc_now().isoformat()),
        )
        await db.commit()

    async def _get_entry(self, store: str, key: str) -> StoredResponse | None:
        db = self._conn()
        async with db.execute(
            "SELECT url, status_code, headers, body, stored_at FROM entries "
            "WHERE store = ? AND key = ?",
            (store, key),
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None

        await db.execute(
            "UPDATE entries SET access_seq = ? WHERE store = ? AND key = ?",
            (next(self._access_seq), store, key),
        )
        await db.commit()

        return StoredResponse(
            url=row["url"],
            status_code=row["status_code"],
            headers=[tuple(h) for h in orjson.loads(row["headers"])],
            content=bytes(row["body"]),
            stored_at=datetime.fromisoformat(row["stored_at"]),
        )

    async def _put_entry(self, store: str, key: str, stored: StoredResponse) -> None:
        db = self._conn()
        await db.execute(
            """
            INSERT OR REPLACE INTO entries (
                store, key, url, status_code, headers, body, size, stored_at, access_seq
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                store,
                key,
                stored.url,
                stored.status_code,
                orjson.dumps([list(h) for h in stored.headers]).decode("utf-8"),
                stored.content,
                stored.size,
                stored.stored_at.isoformat(),
                next(self._access_seq),
            ),
        )
        await db.commit()

    async def _delete_entry(self, store: str, key: str) -> bool:
        db = self._conn()
        cursor = await db.execute(
            "DELETE FROM entries WHERE store = ? AND key = ?", (store, key)
        )
        await db.commit()
        return cursor.rowcount > 0

    async def _entry_keys(self, store: str) -> list[str]:
        async with self._conn().execute(
            "SELECT key FROM entries WHERE store = ? ORDER BY access_seq", (store,)
        ) as cursor:
            rows = await cursor.fetchall()
        return [row["key"] for row in rows]

    async def _usage(self) -> int:
        async with self._conn().execute("SELECT COALESCE(SUM(size), 0) AS used FROM entries") as cursor:
            row = await cursor.fetchone()
        return int(row["used"]) if row else 0

    async def _lru_key(self, store: str) -> str | None:
        async with self._conn().execute(
            "SELECT key FROM entries WHERE store = ? ORDER BY access_seq LIMIT 1", (store,)
        ) as cursor:
            row = await cursor.fetchone()
        return row["key"] if row else None
