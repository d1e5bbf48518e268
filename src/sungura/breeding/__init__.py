"""
Breeding package: compatibility checks, pregnancy dates and farm alerts.
"""

from sungura.breeding.alerts import Alert, AlertVariant, BreedingSummary, breeding_summary, generate_alerts
from sungura.breeding.compatibility import (
    CompatibilityCode,
    CompatibilityResult,
    check_compatibility,
    maturity_months,
)
from sungura.breeding.gestation import age_in_months, days_until, expected_birth_date

__all__ = [
    "Alert",
    "AlertVariant",
    "BreedingSummary",
    "CompatibilityCode",
    "CompatibilityResult",
    "age_in_months",
    "breeding_summary",
    "check_compatibility",
    "days_until",
    "expected_birth_date",
    "generate_alerts",
    "maturity_months",
]
