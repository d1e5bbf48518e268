"""
Core types for sungura.

This module defines the data structures shared across the package:
- Enums for entity kinds and classifications
- Frozen dataclasses for farm entities (Rabbit, Hutch, Row, RemovalRecord,
  BreedingRecord, EarningsRecord), each parsed from API JSON via from_dict()
- ApiEnvelope for the server's {success, data, message} responses
- Helper functions for ID generation, timestamps and serialization
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, ClassVar, TypeVar

from uuid6 import uuid7

from sungura.exceptions import ResponseValidationError
from sungura.validation import FieldReader, validate_envelope


def generate_id(prefix: str = "") -> str:
    """Generate a time-ordered unique ID using UUID7.

    Args:
        prefix: Optional prefix for the ID (e.g., "pending", "note")

    Returns:
        A unique ID string, optionally prefixed.
    """
    uid = str(uuid7())
    return f"{prefix}_{uid}" if prefix else uid


def utc_now() -> datetime:
    """Get current UTC time with timezone info."""
    return datetime.now(timezone.utc)


class EntityKind(str, Enum):
    """Server-held collections mirrored in local snapshots."""

    RABBITS = "rabbits"
    HUTCHES = "hutches"
    ROWS = "rows"
    REMOVALS = "rabbit_removals"
    BREEDS = "breeds"
    EARNINGS = "earnings"


class Gender(str, Enum):
    """Rabbit gender."""

    MALE = "male"
    FEMALE = "female"


class RabbitStatus(str, Enum):
    """Lifecycle status of a rabbit."""

    ACTIVE = "active"
    INACTIVE = "inactive"
    SOLD = "sold"
    REMOVED = "removed"


def _serialize(value: Any) -> Any:
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, tuple):
        return [_serialize(v) for v in value]
    return value


class Entity:
    """Mixin for farm entities: identity and JSON conversion."""

    kind: ClassVar[EntityKind]

    @property
    def identifiers(self) -> tuple[str, ...]:
        """All identifiers this entity can be addressed by."""
        values = (getattr(self, "id", None), getattr(self, "rabbit_id", None))
        return tuple(v for v in values if v)

    @property
    def identity(self) -> str | None:
        """Primary identity used to replace or remove the entity."""
        ids = self.identifiers
        return ids[0] if ids else None

    def matches(self, identifier: str) -> bool:
        """Check whether the entity is addressed by the given identifier."""
        return identifier in self.identifiers

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-ready dict."""
        return {
            f.name: _serialize(getattr(self, f.name))
            for f in dataclasses.fields(self)  # type: ignore[arg-type]
        }


@dataclass(frozen=True)
class Rabbit(Entity):
    """A rabbit as reported by the farm API."""

    kind: ClassVar[EntityKind] = EntityKind.RABBITS

    name: str
    gender: Gender
    farm_id: str | None = None
    id: str | None = None
    rabbit_id: str | None = None
    breed: str = ""
    color: str = ""
    weight: float = 0.0
    birth_date: date | None = None
    hutch_id: str | None = None
    hutch_name: str | None = None
    parent_male_id: str | None = None
    parent_female_id: str | None = None
    is_pregnant: bool = False
    last_mating_date: date | None = None
    mated_with: str | None = None
    pregnancy_start_date: date | None = None
    expected_birth_date: date | None = None
    actual_birth_date: date | None = None
    total_litters: int = 0
    total_kits: int = 0
    status: RabbitStatus = RabbitStatus.ACTIVE
    notes: str | None = None
    next_due: date | None = None
    created_at: str | None = None

    @property
    def parent_ids(self) -> tuple[str, ...]:
        """Recorded parent IDs (sire first)."""
        return tuple(p for p in (self.parent_male_id, self.parent_female_id) if p)

    @classmethod
    def from_dict(cls, data: Any) -> Rabbit:
        r = FieldReader(data, "rabbit")
        record_id = r.string("id")
        rabbit_id = r.string("rabbit_id")
        if not record_id and not rabbit_id:
            r.errors.append("one of id or rabbit_id is required")
        gender = r.choice("gender", ("male", "female"), required=True)
        status = r.choice("status", tuple(s.value for s in RabbitStatus), default="active")
        rabbit = cls(
            name=r.string("name", required=True) or "",
            gender=Gender(gender or "female"),
            farm_id=r.string("farm_id"),
            id=record_id,
            rabbit_id=rabbit_id,
            breed=r.string("breed", default="") or "",
            color=r.string("color", default="") or "",
            weight=r.number("weight", default=0.0) or 0.0,
            birth_date=r.date("birth_date"),
            hutch_id=r.string("hutch_id"),
            hutch_name=r.string("hutch_name"),
            parent_male_id=r.string("parent_male_id"),
            parent_female_id=r.string("parent_female_id"),
            is_pregnant=r.boolean("is_pregnant"),
            last_mating_date=r.date("last_mating_date"),
            mated_with=r.string("mated_with"),
            pregnancy_start_date=r.date("pregnancy_start_date"),
            expected_birth_date=r.date("expected_birth_date"),
            actual_birth_date=r.date("actual_birth_date"),
            total_litters=r.integer("total_litters"),
            total_kits=r.integer("total_kits"),
            status=RabbitStatus(status or "active"),
            notes=r.string("notes"),
            next_due=r.date("next_due"),
            created_at=r.string("created_at"),
        )
        r.raise_for_errors()
        return rabbit


@dataclass(frozen=True)
class Hutch(Entity):
    """A hutch within a row."""

    kind: ClassVar[EntityKind] = EntityKind.HUTCHES

    id: str
    name: str
    row_id: str | None = None
    farm_id: str | None = None
    row_name: str | None = None
    level: str = ""
    position: int = 0
    size: str = ""
    material: str = ""
    features: tuple[str, ...] = field(default_factory=tuple)
    is_occupied: bool = False
    last_cleaned: str | None = None
    is_deleted: bool = False
    created_at: str | None = None
    updated_at: str | None = None

    @classmethod
    def from_dict(cls, data: Any) -> Hutch:
        r = FieldReader(data, "hutch")
        hutch = cls(
            id=r.string("id", required=True) or "",
            name=r.string("name", required=True) or "",
            row_id=r.string("row_id"),
            farm_id=r.string("farm_id"),
            row_name=r.string("row_name"),
            level=r.string("level", default="") or "",
            position=r.integer("position"),
            size=r.string("size", default="") or "",
            material=r.string("material", default="") or "",
            features=r.string_list("features"),
            is_occupied=r.boolean("is_occupied"),
            last_cleaned=r.string("last_cleaned"),
            is_deleted=r.boolean("is_deleted"),
            created_at=r.string("created_at"),
            updated_at=r.string("updated_at"),
        )
        r.raise_for_errors()
        return hutch


@dataclass(frozen=True)
class Row(Entity):
    """A row of hutches."""

    kind: ClassVar[EntityKind] = EntityKind.ROWS

    name: str
    id: str | None = None
    farm_id: str | None = None
    description: str | None = None
    capacity: int = 0
    occupied: int = 0
    is_deleted: bool = False
    levels: tuple[str, ...] = field(default_factory=tuple)
    created_at: str | None = None
    updated_at: str | None = None

    @property
    def identifiers(self) -> tuple[str, ...]:
        # Rows are addressed by name in the delete endpoint
        return tuple(v for v in (self.id, self.name) if v)

    @classmethod
    def from_dict(cls, data: Any) -> Row:
        r = FieldReader(data, "row")
        row = cls(
            name=r.string("name", required=True) or "",
            id=r.string("id"),
            farm_id=r.string("farm_id"),
            description=r.string("description"),
            capacity=r.integer("capacity"),
            occupied=r.integer("occupied"),
            is_deleted=r.boolean("is_deleted"),
            levels=r.string_list("levels"),
            created_at=r.string("created_at"),
            updated_at=r.string("updated_at"),
        )
        r.raise_for_errors()
        return row


@dataclass(frozen=True)
class RemovalRecord(Entity):
    """History entry written when a rabbit leaves the farm."""

    kind: ClassVar[EntityKind] = EntityKind.REMOVALS

    rabbit_id: str
    reason: str
    date: date | None = None
    id: str | None = None
    hutch_id: str | None = None
    hutch_name: str | None = None
    notes: str = ""
    sale_amount: float | None = None
    removed_at: str | None = None

    @classmethod
    def from_dict(cls, data: Any) -> RemovalRecord:
        r = FieldReader(data, "removal record")
        record = cls(
            rabbit_id=r.string("rabbit_id", required=True) or "",
            reason=r.string("reason", required=True) or "",
            date=r.date("date"),
            id=r.string("id"),
            hutch_id=r.string("hutch_id"),
            hutch_name=r.string("hutch_name"),
            notes=r.string("notes", default="") or "",
            sale_amount=r.number("sale_amount"),
            removed_at=r.string("removed_at"),
        )
        r.raise_for_errors()
        return record


@dataclass(frozen=True)
class BreedingRecord(Entity):
    """A mating between a doe and a buck."""

    kind: ClassVar[EntityKind] = EntityKind.BREEDS

    doe_id: str
    buck_id: str
    mating_date: date | None
    id: str | None = None
    farm_id: str | None = None
    doe_name: str | None = None
    buck_name: str | None = None
    is_pregnant: bool = False
    expected_birth_date: date | None = None
    actual_birth_date: date | None = None
    number_of_kits: int = 0
    notes: str | None = None

    @classmethod
    def from_dict(cls, data: Any) -> BreedingRecord:
        r = FieldReader(data, "breeding record")
        record = cls(
            doe_id=r.string("doe_id", required=True) or "",
            buck_id=r.string("buck_id", required=True) or "",
            mating_date=r.date("mating_date", required=True),
            id=r.string("id"),
            farm_id=r.string("farm_id"),
            doe_name=r.string("doe_name"),
            buck_name=r.string("buck_name"),
            is_pregnant=r.boolean("is_pregnant"),
            expected_birth_date=r.date("expected_birth_date"),
            actual_birth_date=r.date("actual_birth_date"),
            number_of_kits=r.integer("number_of_kits"),
            notes=r.string("notes"),
        )
        r.raise_for_errors()
        return record


@dataclass(frozen=True)
class EarningsRecord(Entity):
    """Income entry, e.g. a sale recorded on rabbit removal."""

    kind: ClassVar[EntityKind] = EntityKind.EARNINGS

    type: str
    amount: float
    id: str | None = None
    farm_id: str | None = None
    rabbit_id: str | None = None
    currency: str | None = None
    date: date | None = None
    notes: str | None = None

    @property
    def identifiers(self) -> tuple[str, ...]:
        return (self.id,) if self.id else ()

    @classmethod
    def from_dict(cls, data: Any) -> EarningsRecord:
        r = FieldReader(data, "earnings record")
        record = cls(
            type=r.string("type", required=True) or "",
            amount=r.number("amount", required=True) or 0.0,
            id=r.string("id"),
            farm_id=r.string("farm_id"),
            rabbit_id=r.string("rabbit_id"),
            currency=r.string("currency"),
            date=r.date("date"),
            notes=r.string("notes"),
        )
        r.raise_for_errors()
        return record


ENTITY_TYPES: dict[EntityKind, type[Any]] = {
    EntityKind.RABBITS: Rabbit,
    EntityKind.HUTCHES: Hutch,
    EntityKind.ROWS: Row,
    EntityKind.REMOVALS: RemovalRecord,
    EntityKind.BREEDS: BreedingRecord,
    EntityKind.EARNINGS: EarningsRecord,
}

EntityT = TypeVar("EntityT", bound=Entity)


def parse_entity(kind: EntityKind, data: Any) -> Any:
    """Parse one raw API item into the entity type for ``kind``."""
    return ENTITY_TYPES[kind].from_dict(data)


def parse_entities(kind: EntityKind, data: Any) -> list[Any]:
    """Parse a raw API collection, rejecting the whole batch on any bad item.

    Raises:
        ResponseValidationError: If data is not a list or any item is malformed.
    """
    if data is None:
        return []
    if not isinstance(data, list):
        raise ResponseValidationError(
            f"Expected a list of {kind.value}",
            context={"entity": kind.value, "errors": [f"got {type(data).__name__}"]},
        )
    return [parse_entity(kind, item) for item in data]


@dataclass(frozen=True)
class ApiEnvelope:
    """Decoded ``{success, data, message?}`` response body."""

    success: bool
    data: Any = None
    message: str | None = None

    @classmethod
    def from_dict(cls, payload: Any) -> ApiEnvelope:
        errors = validate_envelope(payload)
        if errors:
            raise ResponseValidationError(
                "Malformed API envelope",
                context={"entity": "envelope", "errors": errors},
            )
        return cls(
            success=payload["success"],
            data=payload.get("data"),
            message=payload.get("message"),
        )
