"""
Pregnancy and age arithmetic for rabbits.

All functions take an explicit ``today`` so results are reproducible; it
defaults to the current UTC date.
"""

from __future__ import annotations

from datetime import date, timedelta

from sungura.types import utc_now

GESTATION_DAYS = 31
NESTING_BOX_DAY = 26
WEANING_DAYS = 42
REBREED_AFTER_WEANING_DAYS = 7


def _today(today: date | None) -> date:
    return today or utc_now().date()


def age_in_months(birth_date: date, today: date | None = None) -> int:
    """Whole calendar months between birth and today (day of month ignored)."""
    today = _today(today)
    return (today.year - birth_date.year) * 12 + (today.month - birth_date.month)


def expected_birth_date(mating_date: date) -> date:
    """Kindling date for a mating."""
    return mating_date + timedelta(days=GESTATION_DAYS)


def nesting_box_date(mating_date: date) -> date:
    """Day the nesting box should go in."""
    return mating_date + timedelta(days=NESTING_BOX_DAY)


def weaning_date(birth_date: date) -> date:
    """Day a litter born on birth_date is weaned."""
    return birth_date + timedelta(days=WEANING_DAYS)


def rebreed_date(birth_date: date) -> date:
    """Earliest day a doe that kindled on birth_date should be bred again."""
    return weaning_date(birth_date) + timedelta(days=REBREED_AFTER_WEANING_DAYS)


def days_until(target: date, today: date | None = None) -> int:
    """Days from today to target; negative once target has passed."""
    return (target - _today(today)).days


def days_since(start: date, today: date | None = None) -> int:
    """Days elapsed since start; negative if start is in the future."""
    return (_today(today) - start).days
