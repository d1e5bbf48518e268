"""
Farm dashboard alerts derived from the rabbit collection.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from enum import Enum
from typing import Iterable

from sungura.breeding.compatibility import is_mature
from sungura.breeding.gestation import (
    NESTING_BOX_DAY,
    WEANING_DAYS,
    days_since,
    days_until,
    rebreed_date,
)
from sungura.types import Gender, Rabbit, utc_now

DEFAULT_ALERT_LIMIT = 3

# Birth Expected window around the expected date
BIRTH_WINDOW_BEFORE_DAYS = 7
BIRTH_WINDOW_AFTER_DAYS = 2
NESTING_WINDOW_END_DAY = 30


class AlertVariant(str, Enum):
    """Urgency of an alert, most urgent first."""

    DESTRUCTIVE = "destructive"
    SECONDARY = "secondary"
    OUTLINE = "outline"


_VARIANT_ORDER = {
    AlertVariant.DESTRUCTIVE: 0,
    AlertVariant.SECONDARY: 1,
    AlertVariant.OUTLINE: 2,
}


@dataclass(frozen=True)
class Alert:
    type: str
    message: str
    variant: AlertVariant
    rabbit_id: str | None = None


@dataclass(frozen=True)
class BreedingSummary:
    available_does: int
    pregnant_does: int
    bucks: int
    breeding_ready: int


def _label(rabbit: Rabbit) -> str:
    return f"{rabbit.name} ({rabbit.hutch_id or 'no hutch'})"


def _alerts_for(rabbit: Rabbit, today: date) -> list[Alert]:
    alerts: list[Alert] = []
    rid = rabbit.identity

    if rabbit.is_pregnant and rabbit.pregnancy_start_date:
        start = rabbit.pregnancy_start_date
        pregnancy_day = days_since(start, today)

        if 0 <= pregnancy_day < NESTING_BOX_DAY:
            alerts.append(Alert(
                "Pregnancy Noticed",
                f"{_label(rabbit)} - Confirmed pregnant since {start.isoformat()}",
                AlertVariant.SECONDARY,
                rid,
            ))
        if NESTING_BOX_DAY <= pregnancy_day <= NESTING_WINDOW_END_DAY:
            alerts.append(Alert(
                "Nesting Box Needed",
                f"{_label(rabbit)} - Add nesting box, {NESTING_BOX_DAY} days since mating "
                f"on {start.isoformat()}",
                AlertVariant.SECONDARY,
                rid,
            ))

        if rabbit.expected_birth_date:
            remaining = days_until(rabbit.expected_birth_date, today)
            if -BIRTH_WINDOW_AFTER_DAYS <= remaining <= BIRTH_WINDOW_BEFORE_DAYS:
                when = f"in {remaining} days" if remaining > 0 else f"overdue by {abs(remaining)} days"
                alerts.append(Alert(
                    "Birth Expected",
                    f"{_label(rabbit)} - Expected to give birth {when}",
                    AlertVariant.DESTRUCTIVE if remaining <= 0 else AlertVariant.SECONDARY,
                    rid,
                ))

    if rabbit.gender is Gender.FEMALE and not rabbit.is_pregnant:
        past_last_pregnancy = (
            rabbit.pregnancy_start_date is None
            or today > rabbit.pregnancy_start_date + timedelta(days=WEANING_DAYS)
        )
        past_rebreed = (
            rabbit.actual_birth_date is None
            or today > rebreed_date(rabbit.actual_birth_date)
        )
        if past_last_pregnancy and past_rebreed:
            alerts.append(Alert(
                "Breeding Ready",
                f"{_label(rabbit)} - Ready for next breeding cycle",
                AlertVariant.OUTLINE,
                rid,
            ))

    if rabbit.next_due:
        remaining = days_until(rabbit.next_due, today)
        if remaining <= 0:
            alerts.append(Alert(
                "Medication Due",
                f"{_label(rabbit)} - Vaccination overdue by {abs(remaining)} days",
                AlertVariant.DESTRUCTIVE,
                rid,
            ))

    return alerts


def generate_alerts(
    rabbits: Iterable[Rabbit],
    today: date | None = None,
    limit: int | None = DEFAULT_ALERT_LIMIT,
) -> list[Alert]:
    """Build the dashboard alerts, most urgent first.

    Args:
        rabbits: The farm's rabbits.
        today: Reference date (defaults to the current UTC date).
        limit: Maximum number of alerts returned; None for all.

    Returns:
        Alerts sorted destructive, then secondary, then outline.
    """
    today = today or utc_now().date()
    alerts = [alert for rabbit in rabbits for alert in _alerts_for(rabbit, today)]
    # Stable sort keeps collection order within a variant
    alerts.sort(key=lambda a: _VARIANT_ORDER[a.variant])
    return alerts if limit is None else alerts[:limit]


def breeding_summary(rabbits: Iterable[Rabbit], today: date | None = None) -> BreedingSummary:
    """Counts shown on the breeding overview."""
    rabbits = list(rabbits)
    does = [r for r in rabbits if r.gender is Gender.FEMALE]
    pregnant = [r for r in does if r.is_pregnant]
    bucks = [r for r in rabbits if r.gender is Gender.MALE]
    ready = [
        r for r in rabbits
        if is_mature(r, today) and not (r.gender is Gender.FEMALE and r.is_pregnant)
    ]
    return BreedingSummary(
        available_does=len(does) - len(pregnant),
        pregnant_does=len(pregnant),
        bucks=len(bucks),
        breeding_ready=len(ready),
    )
