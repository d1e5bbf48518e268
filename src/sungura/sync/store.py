"""
EntityStore: persisted per-farm, per-kind entity snapshots.

Each snapshot is the last authoritative server response for one
``(farm, entity kind)`` pair, kept under ``rabbit_farm_<kind>_<farm>``.
Snapshots are replaced wholesale on every save.

Writers to the same key are serialized through a per-key asyncio.Lock,
and every write bumps a version stamp kept beside the snapshot so callers
can detect lost updates with compare-and-swap saves.
"""

from __future__ import annotations

import asyncio
import re
from typing import Any, Callable, Sequence

import orjson

from sungura.exceptions import ResponseValidationError, SnapshotConflictError
from sungura.logging import get_logger
from sungura.sync.kv import KeyValueBackend
from sungura.types import Entity, EntityKind, parse_entities

logger = get_logger(__name__)

SNAPSHOT_KEY_PREFIX = "rabbit_farm_"
VERSION_SUFFIX = "__version"
RABBIT_ID_PATTERN = re.compile(r"RB-(\d+)")


def snapshot_key(scope: str, kind: EntityKind) -> str:
    """Persisted key for a farm's snapshot of one entity kind."""
    return f"{SNAPSHOT_KEY_PREFIX}{kind.value}_{scope}"


def version_key(scope: str, kind: EntityKind) -> str:
    """Key of the version stamp kept beside a snapshot."""
    return snapshot_key(scope, kind) + VERSION_SUFFIX


class EntityStore:
    """Snapshot store over a KeyValueBackend.

    Loads never raise: a missing, corrupt or invalid snapshot reads as
    empty. Saves fully replace the stored collection.
    """

    def __init__(self, backend: KeyValueBackend) -> None:
        """Initialize the store.

        Args:
            backend: Key-value storage holding serialized snapshots.
        """
        self.backend = backend
        self._locks: dict[tuple[str, EntityKind], asyncio.Lock] = {}

    def lock(self, scope: str, kind: EntityKind) -> asyncio.Lock:
        """The single-writer lock for one snapshot key."""
        key = (scope, kind)
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    def load(self, scope: str, kind: EntityKind) -> list[Any]:
        """Read a snapshot.

        Args:
            scope: Farm ID.
            kind: Entity kind.

        Returns:
            The stored entities, or [] if absent or unreadable.
        """
        key = snapshot_key(scope, kind)
        raw = self.backend.get(key)
        if raw is None:
            return []

        try:
            data = orjson.loads(raw)
        except orjson.JSONDecodeError as e:
            logger.warning("Discarding corrupt snapshot", key=key, error=str(e))
            return []

        if not isinstance(data, list):
            logger.warning("Discarding non-list snapshot", key=key, type=type(data).__name__)
            return []

        try:
            return parse_entities(kind, data)
        except ResponseValidationError as e:
            logger.warning("Discarding invalid snapshot", key=key, error=str(e))
            return []

    def version(self, scope: str, kind: EntityKind) -> int:
        """Current version stamp of a snapshot (0 if never written)."""
        raw = self.backend.get(version_key(scope, kind))
        try:
            return int(raw) if raw is not None else 0
        except ValueError:
            return 0

    async def save(
        self,
        scope: str,
        kind: EntityKind,
        items: Sequence[Entity],
        expected_version: int | None = None,
    ) -> int:
        """Replace a snapshot.

        Args:
            scope: Farm ID.
            kind: Entity kind.
            items: Full collection to persist.
            expected_version: If given, only write when the stored version
                still equals it.

        Returns:
            The new version stamp.

        Raises:
            SnapshotConflictError: If expected_version does not match.
        """
        async with self.lock(scope, kind):
            current = self.version(scope, kind)
            if expected_version is not None and current != expected_version:
                raise SnapshotConflictError(
                    "Snapshot changed since it was read",
                    context={
                        "key": snapshot_key(scope, kind),
                        "expected_version": expected_version,
                        "current_version": current,
                    },
                )
            return self._write(scope, kind, items)

    async def update(
        self,
        scope: str,
        kind: EntityKind,
        fn: Callable[[list[Any]], Sequence[Entity]],
    ) -> list[Any]:
        """Read-modify-write a snapshot under its lock.

        Args:
            scope: Farm ID.
            kind: Entity kind.
            fn: Receives the current items and returns the new collection.

        Returns:
            The collection that was written.
        """
        async with self.lock(scope, kind):
            items = list(fn(self.load(scope, kind)))
            self._write(scope, kind, items)
            return items

    def clear(self, scope: str, kind: EntityKind) -> None:
        """Remove a snapshot and its version stamp."""
        self.backend.remove(snapshot_key(scope, kind))
        self.backend.remove(version_key(scope, kind))

    def snapshot_keys(self, scope: str | None = None) -> list[str]:
        """Persisted snapshot keys, optionally limited to one farm."""
        keys = [
            k
            for k in self.backend.keys(SNAPSHOT_KEY_PREFIX)
            if not k.endswith(VERSION_SUFFIX)
        ]
        if scope is not None:
            wanted = {snapshot_key(scope, kind) for kind in EntityKind}
            keys = [k for k in keys if k in wanted]
        return keys

    def next_rabbit_id(self) -> str:
        """Next sequential ``RB-NNN`` business ID across every farm's rabbits."""
        highest = 0
        prefix = f"{SNAPSHOT_KEY_PREFIX}{EntityKind.RABBITS.value}_"
        for key in self.snapshot_keys():
            if not key.startswith(prefix):
                continue
            scope = key[len(prefix):]
            for rabbit in self.load(scope, EntityKind.RABBITS):
                match = RABBIT_ID_PATTERN.fullmatch(rabbit.rabbit_id or "")
                if match:
                    highest = max(highest, int(match.group(1)))
        return f"RB-{highest + 1:03d}"

    def _write(self, scope: str, kind: EntityKind, items: Sequence[Entity]) -> int:
        key = snapshot_key(scope, kind)
        payload = orjson.dumps([item.to_dict() for item in items]).decode("utf-8")
        new_version = self.version(scope, kind) + 1
        self.backend.set(key, payload)
        self.backend.set(version_key(scope, kind), str(new_version))
        logger.debug("Saved snapshot", key=key, count=len(items), version=new_version)
        return new_version
