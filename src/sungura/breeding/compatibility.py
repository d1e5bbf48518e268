"""
Breeding compatibility check.

Pure, in-memory evaluation of a doe/buck pair against the farm's loaded
rabbit collection. Checks run in a fixed order and the first failing one
decides the result:

1. invalid selection (missing rabbit or wrong gender)
2. inbreeding (one is an ancestor of the other, or they share a parent)
3. doe already pregnant
4. either rabbit below its breed's maturity age
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Iterable

from sungura.breeding.gestation import age_in_months
from sungura.types import Gender, Rabbit

DEFAULT_MATURITY_MONTHS = 6

SMALL_BREEDS = frozenset({
    "netherland dwarf",
    "polish",
    "dutch",
    "mini rex",
    "holland lop",
    "lionhead",
    "mini lop",
})
GIANT_BREEDS = frozenset({
    "flemish giant",
    "checkered giant",
    "continental giant",
    "french lop",
})
SMALL_BREED_MATURITY_MONTHS = 5
GIANT_BREED_MATURITY_MONTHS = 8


class CompatibilityCode(str, Enum):
    COMPATIBLE = "compatible"
    INVALID_SELECTION = "invalid_selection"
    INBREEDING = "inbreeding"
    PREGNANT = "pregnant"
    IMMATURE = "immature"


@dataclass(frozen=True)
class CompatibilityResult:
    """Verdict for a doe/buck pair. Not persisted."""

    compatible: bool
    reason: str
    code: CompatibilityCode


def maturity_months(breed: str) -> int:
    """Breeding age in months for a breed (6 when the breed is unknown)."""
    key = breed.strip().lower()
    if key in SMALL_BREEDS:
        return SMALL_BREED_MATURITY_MONTHS
    if key in GIANT_BREEDS:
        return GIANT_BREED_MATURITY_MONTHS
    return DEFAULT_MATURITY_MONTHS


def is_mature(rabbit: Rabbit, today: date | None = None) -> bool:
    """Rabbits without a recorded birth date count as mature."""
    if rabbit.birth_date is None:
        return True
    return age_in_months(rabbit.birth_date, today) >= maturity_months(rabbit.breed)


def index_rabbits(rabbits: Iterable[Rabbit]) -> dict[str, Rabbit]:
    """Map every identifier (id and rabbit_id) to its rabbit."""
    index: dict[str, Rabbit] = {}
    for rabbit in rabbits:
        for identifier in rabbit.identifiers:
            index.setdefault(identifier, rabbit)
    return index


def ancestor_ids(rabbit: Rabbit, index: dict[str, Rabbit]) -> set[str]:
    """Identifiers of every recorded ancestor reachable through parent links.

    Parents missing from the collection still count by their ID; the walk
    just stops there. Cycles in bad data are tolerated.
    """
    found: set[str] = set()
    queue = list(rabbit.parent_ids)
    while queue:
        parent_id = queue.pop()
        if parent_id in found:
            continue
        found.add(parent_id)
        parent = index.get(parent_id)
        if parent is None:
            continue
        found.update(parent.identifiers)
        queue.extend(p for p in parent.parent_ids if p not in found)
    return found


def is_inbred_pair(doe: Rabbit, buck: Rabbit, index: dict[str, Rabbit]) -> bool:
    """True if one is an ancestor of the other or they share a parent."""
    if set(doe.identifiers) & ancestor_ids(buck, index):
        return True
    if set(buck.identifiers) & ancestor_ids(doe, index):
        return True
    if doe.parent_male_id and doe.parent_male_id == buck.parent_male_id:
        return True
    if doe.parent_female_id and doe.parent_female_id == buck.parent_female_id:
        return True
    return False


def _resolve(rabbit: Rabbit | str | None, index: dict[str, Rabbit]) -> Rabbit | None:
    if isinstance(rabbit, str):
        return index.get(rabbit)
    return rabbit


def check_compatibility(
    doe: Rabbit | str | None,
    buck: Rabbit | str | None,
    rabbits: Iterable[Rabbit] = (),
    today: date | None = None,
) -> CompatibilityResult:
    """Decide whether a doe and a buck may be bred.

    Args:
        doe: The doe, or its identifier in ``rabbits``.
        buck: The buck, or its identifier in ``rabbits``.
        rabbits: The loaded farm collection used for lineage lookups.
        today: Reference date for maturity.

    Returns:
        CompatibilityResult with the first failing check, or compatible.
    """
    index = index_rabbits(rabbits)
    doe_rabbit = _resolve(doe, index)
    buck_rabbit = _resolve(buck, index)

    if (
        doe_rabbit is None
        or buck_rabbit is None
        or doe_rabbit.gender is not Gender.FEMALE
        or buck_rabbit.gender is not Gender.MALE
    ):
        return CompatibilityResult(False, "Invalid selection", CompatibilityCode.INVALID_SELECTION)

    for rabbit in (doe_rabbit, buck_rabbit):
        for identifier in rabbit.identifiers:
            index.setdefault(identifier, rabbit)

    if is_inbred_pair(doe_rabbit, buck_rabbit, index):
        return CompatibilityResult(
            False, "Potential inbreeding detected", CompatibilityCode.INBREEDING
        )

    if doe_rabbit.is_pregnant:
        return CompatibilityResult(False, "Doe is currently pregnant", CompatibilityCode.PREGNANT)

    for label, rabbit in (("Doe", doe_rabbit), ("Buck", buck_rabbit)):
        if not is_mature(rabbit, today):
            needed = maturity_months(rabbit.breed)
            return CompatibilityResult(
                False,
                f"{label} is not yet mature (needs {needed} months)",
                CompatibilityCode.IMMATURE,
            )

    return CompatibilityResult(True, "Compatible for breeding", CompatibilityCode.COMPATIBLE)
