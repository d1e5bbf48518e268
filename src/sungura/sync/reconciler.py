"""
ReconciliationCache: local snapshots reconciled against the farm API.

Reads are optimistic: the last persisted snapshot is shown immediately,
then replaced with the server's answer once it arrives. Writes go through
the server first; only confirmed entities ever reach a snapshot.

    cache = ReconciliationCache(store, api)
    rabbits = cache.load("farm-1", EntityKind.RABBITS)       # render now
    rabbits = await cache.reconcile("farm-1", EntityKind.RABBITS)
"""

from __future__ import annotations

import asyncio
import dataclasses
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Sequence

from sungura.exceptions import (
    ConfigurationError,
    ReconcileError,
    RemoteAPIError,
    RemoteWriteError,
    ResponseValidationError,
    SnapshotConflictError,
)
from sungura.logging import get_logger, log_context
from sungura.sync.api import FarmApiClient
from sungura.sync.notify import Notifier
from sungura.sync.retry import RetryPolicy
from sungura.sync.store import EntityStore
from sungura.types import Entity, EntityKind, Rabbit, RemovalRecord, generate_id

logger = get_logger(__name__)

# Collections the dashboard refreshes together
DASHBOARD_KINDS: tuple[EntityKind, ...] = (
    EntityKind.ROWS,
    EntityKind.HUTCHES,
    EntityKind.RABBITS,
)

_LABELS = {
    EntityKind.RABBITS: "rabbit",
    EntityKind.HUTCHES: "hutch",
    EntityKind.ROWS: "row",
    EntityKind.REMOVALS: "removal record",
    EntityKind.BREEDS: "breeding record",
    EntityKind.EARNINGS: "earnings record",
}


@dataclass(frozen=True)
class PendingItem:
    """A create awaiting server confirmation. Never persisted."""

    id: str
    kind: EntityKind
    payload: dict[str, Any]


@dataclass
class FarmView:
    """In-memory collections of one farm, as currently rendered."""

    farm_id: str
    collections: dict[EntityKind, list[Any]] = field(default_factory=dict)
    pending: dict[EntityKind, list[PendingItem]] = field(default_factory=dict)
    stale: set[EntityKind] = field(default_factory=set)

    def items(self, kind: EntityKind) -> list[Any]:
        return list(self.collections.get(kind, []))

    def set_items(self, kind: EntityKind, items: Sequence[Any], stale: bool = False) -> None:
        self.collections[kind] = list(items)
        if stale:
            self.stale.add(kind)
        else:
            self.stale.discard(kind)

    def add_pending(self, kind: EntityKind, payload: dict[str, Any]) -> PendingItem:
        item = PendingItem(id=generate_id("pending"), kind=kind, payload=payload)
        self.pending.setdefault(kind, []).append(item)
        return item

    def drop_pending(self, kind: EntityKind, pending_id: str) -> None:
        self.pending[kind] = [p for p in self.pending.get(kind, []) if p.id != pending_id]

    def pending_items(self, kind: EntityKind) -> list[PendingItem]:
        return list(self.pending.get(kind, []))


def _replace_or_append(items: list[Any], entity: Entity) -> list[Any]:
    """Replace the item sharing an identifier with ``entity``, else append."""
    replaced = False
    result: list[Any] = []
    for item in items:
        if not replaced and any(item.matches(i) for i in entity.identifiers):
            result.append(entity)
            replaced = True
        else:
            result.append(item)
    if not replaced:
        result.append(entity)
    return result


class ReconciliationCache:
    """Per-farm entity snapshots kept in step with the server.

    Args:
        store: Persisted snapshots.
        api: Farm REST API client.
        retry_policy: Policy applied to every reconciliation fetch.
        notifier: Receives user-facing success and error notices.
    """

    def __init__(
        self,
        store: EntityStore,
        api: FarmApiClient,
        retry_policy: RetryPolicy | None = None,
        notifier: Notifier | None = None,
    ) -> None:
        self.store = store
        self.api = api
        self.retry_policy = retry_policy or RetryPolicy()
        self.notifier = notifier or Notifier()
        self._views: dict[str, FarmView] = {}

    def view(self, scope: str) -> FarmView:
        """The in-memory view of a farm, created on first use."""
        if scope not in self._views:
            self._views[scope] = FarmView(farm_id=scope)
        return self._views[scope]

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def load(self, scope: str, kind: EntityKind) -> list[Any]:
        """Read the persisted snapshot and show it. Never raises."""
        items = self.store.load(scope, kind)
        self.view(scope).set_items(kind, items, stale=True)
        return items

    async def save(self, scope: str, kind: EntityKind, items: Sequence[Entity]) -> int:
        """Persist a full collection and show it.

        Returns:
            The new snapshot version.
        """
        version = await self.store.save(scope, kind, items)
        self.view(scope).set_items(kind, items)
        return version

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    async def reconcile(self, scope: str, kind: EntityKind) -> list[Any]:
        """Replace the local snapshot with the server's collection.

        The fetch runs under the retry policy. The fresh collection is saved
        before it is returned. If a confirmed local write lands while the
        fetch is in flight, the fetch is repeated once so it is not lost.

        Args:
            scope: Farm ID.
            kind: Entity kind (not REMOVALS; see load_hutch_history()).

        Returns:
            The fresh collection.

        Raises:
            ReconcileError: When every attempt failed. ``stale`` holds the
                local snapshot, which stays on display.
        """
        if kind is EntityKind.REMOVALS:
            raise ValueError("Removal records are reconciled per hutch via load_hutch_history()")

        with log_context(farm_id=scope, entity_kind=kind.value, component="sync"):
            for attempt in (1, 2):
                version = self.store.version(scope, kind)
                fresh = await self._fetch_or_fail(scope, kind)
                try:
                    await self.store.save(
                        scope, kind, fresh, expected_version=version if attempt == 1 else None
                    )
                except SnapshotConflictError:
                    logger.info("Snapshot changed during fetch, fetching again")
                    continue
                break

            self.view(scope).set_items(kind, fresh)
            logger.info("Reconciled snapshot", count=len(fresh))
            return fresh

    async def _fetch_or_fail(self, scope: str, kind: EntityKind) -> list[Any]:
        try:
            return await self.retry_policy.call(self.api.fetch, scope, kind)
        except (RemoteAPIError, ResponseValidationError) as e:
            stale = self.load(scope, kind)
            self.notifier.error(
                f"Could not refresh {_LABELS[kind]}s",
                f"{e.message}. Showing saved data.",
            )
            raise ReconcileError(
                f"Failed to reconcile {kind.value}",
                stale=stale,
                context={"farm_id": scope, "kind": kind.value, "error": str(e)},
            ) from e

    async def reconcile_all(
        self,
        scope: str,
        kinds: Sequence[EntityKind] = DASHBOARD_KINDS,
    ) -> dict[EntityKind, list[Any] | ReconcileError]:
        """Reconcile several kinds concurrently, each independently.

        Returns:
            Fresh collection or the ReconcileError, per kind.
        """
        results = await asyncio.gather(
            *(self.reconcile(scope, kind) for kind in kinds),
            return_exceptions=True,
        )
        outcome: dict[EntityKind, list[Any] | ReconcileError] = {}
        for kind, result in zip(kinds, results):
            if isinstance(result, BaseException) and not isinstance(result, ReconcileError):
                raise result
            outcome[kind] = result  # type: ignore[assignment]
        return outcome

    async def load_hutch_history(self, scope: str, hutch_id: str) -> list[RemovalRecord]:
        """Fetch a hutch's removal history and merge it into the removals snapshot.

        Records of other hutches already in the snapshot are kept.

        Raises:
            ReconcileError: When every attempt failed.
        """
        kind = EntityKind.REMOVALS
        with log_context(farm_id=scope, entity_kind=kind.value, component="sync"):
            try:
                records = await self.retry_policy.call(self.api.hutch_history, scope, hutch_id)
            except (RemoteAPIError, ResponseValidationError) as e:
                stale = [r for r in self.load(scope, kind) if r.hutch_id == hutch_id]
                self.notifier.error("Error fetching removal history", e.message)
                raise ReconcileError(
                    "Failed to load removal history",
                    stale=stale,
                    context={"farm_id": scope, "hutch_id": hutch_id, "error": str(e)},
                ) from e

            history = [r for r in records if r.hutch_id == hutch_id]
            items = await self.store.update(
                scope,
                kind,
                lambda current: [r for r in current if r.hutch_id != hutch_id] + history,
            )
            self.view(scope).set_items(kind, items)
            return history

    # ------------------------------------------------------------------
    # Confirmed writes
    # ------------------------------------------------------------------

    async def apply_optimistic_create(self, scope: str, kind: EntityKind, item: Entity) -> list[Any]:
        """Add a server-confirmed entity to the view and the snapshot."""
        items = await self.store.update(scope, kind, lambda current: _replace_or_append(current, item))
        self.view(scope).set_items(kind, items)
        return items

    async def apply_confirmed_update(self, scope: str, kind: EntityKind, item: Entity) -> list[Any]:
        """Replace an entity by identity with its server-confirmed version."""
        items = await self.store.update(scope, kind, lambda current: _replace_or_append(current, item))
        self.view(scope).set_items(kind, items)
        return items

    async def apply_confirmed_removal(self, scope: str, kind: EntityKind, identifier: str) -> list[Any]:
        """Drop a server-confirmed removal from the view and the snapshot."""
        items = await self.store.update(
            scope, kind, lambda current: [i for i in current if not i.matches(identifier)]
        )
        self.view(scope).set_items(kind, items)
        return items

    async def create(self, scope: str, kind: EntityKind, payload: dict[str, Any]) -> Any:
        """Create an entity on the server, then record it locally.

        The item shows as pending in memory while the call is in flight.
        On failure it is dropped and the snapshot is left untouched.

        Raises:
            RemoteWriteError: If the server rejected or never received it, or
                no API token is configured.
        """
        label = _LABELS[kind]
        view = self.view(scope)
        pending = view.add_pending(kind, payload)

        with log_context(farm_id=scope, entity_kind=kind.value, component="sync"):
            try:
                confirmed = await self.api.create(scope, kind, payload)
            except (ConfigurationError, RemoteAPIError, ResponseValidationError) as e:
                self.notifier.error(f"Failed to add {label}", e.message)
                raise self._write_error(f"Create {label} failed", e, scope, kind) from e
            finally:
                view.drop_pending(kind, pending.id)

            await self.apply_optimistic_create(scope, kind, confirmed)
            logger.info("Created entity", identity=confirmed.identity)

        self.notifier.success(f"{label.capitalize()} added")
        return confirmed

    async def update(
        self,
        scope: str,
        kind: EntityKind,
        identifier: str,
        changes: dict[str, Any],
    ) -> Any:
        """Update an entity on the server, then replace it locally.

        Raises:
            RemoteWriteError: If the server rejected the update.
        """
        if kind is not EntityKind.RABBITS:
            raise ValueError(f"Updating {kind.value} is not supported by the API")

        with log_context(farm_id=scope, entity_kind=kind.value, component="sync"):
            try:
                confirmed = await self.api.update_rabbit(scope, identifier, changes)
            except (ConfigurationError, RemoteAPIError, ResponseValidationError) as e:
                self.notifier.error("Failed to update rabbit", e.message)
                raise self._write_error("Update rabbit failed", e, scope, kind) from e

            await self.apply_confirmed_update(scope, kind, confirmed)

        self.notifier.success("Rabbit updated", f"{confirmed.name} has been updated.")
        return confirmed

    async def remove_rabbit(
        self,
        scope: str,
        rabbit_id: str,
        reason: str,
        notes: str = "",
        removal_date: date | None = None,
        sale_amount: float | None = None,
        currency: str | None = None,
    ) -> RemovalRecord:
        """Remove a rabbit on the server, then from the local snapshots.

        The confirmed removal record is prepended to the removals snapshot.
        A sale with an amount also records an earnings entry; if that fails
        the removal still stands.

        Raises:
            RemoteWriteError: If the server rejected the removal.
        """
        rabbit = self._find_rabbit(scope, rabbit_id)

        with log_context(farm_id=scope, entity_kind=EntityKind.RABBITS.value, component="sync"):
            try:
                record = await self.api.remove_rabbit(
                    scope,
                    rabbit_id,
                    reason=reason,
                    notes=notes,
                    removal_date=removal_date,
                    sale_amount=sale_amount,
                )
            except (ConfigurationError, RemoteAPIError, ResponseValidationError) as e:
                self.notifier.error("Failed to remove rabbit", e.message)
                raise self._write_error("Remove rabbit failed", e, scope, EntityKind.RABBITS) from e

            if rabbit is not None and not record.hutch_id:
                record = dataclasses.replace(
                    record, hutch_id=rabbit.hutch_id, hutch_name=rabbit.hutch_name
                )

            await self.apply_confirmed_removal(scope, EntityKind.RABBITS, rabbit_id)
            removals = await self.store.update(
                scope, EntityKind.REMOVALS, lambda current: [record, *current]
            )
            self.view(scope).set_items(EntityKind.REMOVALS, removals)
            logger.info("Removed rabbit", rabbit_id=rabbit_id, reason=reason)

        if reason.lower() == "sale" and sale_amount:
            try:
                await self.create(
                    scope,
                    EntityKind.EARNINGS,
                    {
                        "type": "rabbit_sale",
                        "rabbit_id": rabbit_id,
                        "amount": sale_amount,
                        "currency": currency,
                        "date": record.date.isoformat() if record.date else None,
                        "notes": notes,
                    },
                )
            except RemoteWriteError as e:
                logger.warning("Sale recorded without earnings entry", rabbit_id=rabbit_id, error=str(e))

        self.notifier.success("Rabbit removed", f"{rabbit_id} removed: {reason}")
        return record

    async def delete_hutch(self, scope: str, hutch_id: str) -> None:
        """Delete a hutch on the server, then locally."""
        try:
            await self.api.delete_hutch(scope, hutch_id)
        except (ConfigurationError, RemoteAPIError, ResponseValidationError) as e:
            self.notifier.error("Failed to delete hutch", e.message)
            raise self._write_error("Delete hutch failed", e, scope, EntityKind.HUTCHES) from e
        await self.apply_confirmed_removal(scope, EntityKind.HUTCHES, hutch_id)
        self.notifier.success("Hutch deleted")

    async def delete_row(self, scope: str, row_name: str) -> None:
        """Delete a row on the server, then locally."""
        try:
            await self.api.delete_row(scope, row_name)
        except (ConfigurationError, RemoteAPIError, ResponseValidationError) as e:
            self.notifier.error("Failed to delete row", e.message)
            raise self._write_error("Delete row failed", e, scope, EntityKind.ROWS) from e
        await self.apply_confirmed_removal(scope, EntityKind.ROWS, row_name)
        self.notifier.success("Row deleted")

    def _find_rabbit(self, scope: str, rabbit_id: str) -> Rabbit | None:
        items = self.view(scope).items(EntityKind.RABBITS) or self.store.load(scope, EntityKind.RABBITS)
        return next((r for r in items if r.matches(rabbit_id)), None)

    @staticmethod
    def _write_error(
        message: str,
        error: ConfigurationError | RemoteAPIError | ResponseValidationError,
        scope: str,
        kind: EntityKind,
    ) -> RemoteWriteError:
        return RemoteWriteError(
            f"{message}: {error.message}",
            status_code=getattr(error, "status_code", None),
            context={"farm_id": scope, "kind": kind.value, **error.context},
        )
