"""
Ingress validation for data returned by the farm API.

Server payloads are untyped JSON. FieldReader pulls typed values out of a
mapping, collecting field-level errors instead of failing on the first one,
so a malformed record is rejected with every problem listed.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import date, datetime
from typing import Any

from sungura.exceptions import ResponseValidationError

_TRUE_STRINGS = {"true", "1", "yes"}
_FALSE_STRINGS = {"false", "0", "no", ""}


def parse_date(value: Any) -> date | None:
    """Parse a calendar date from an API value.

    Accepts date/datetime objects, ``YYYY-MM-DD`` strings and full ISO 8601
    timestamps (a trailing ``Z`` is allowed). Empty values yield None.

    Raises:
        ValueError: If the value is not a recognizable date.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        raise ValueError(f"expected ISO date string, got {type(value).__name__}")

    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        return date.fromisoformat(text[:10])


class FieldReader:
    """Reads typed fields from a raw mapping and records what is wrong."""

    def __init__(self, data: Any, entity: str) -> None:
        self.entity = entity
        self.errors: list[str] = []
        if isinstance(data, Mapping):
            self.data: Mapping[str, Any] = data
        else:
            self.data = {}
            self.errors.append(f"{entity} must be an object, got {type(data).__name__}")

    def _missing(self, name: str) -> bool:
        return self.data.get(name) is None

    def string(self, name: str, required: bool = False, default: str | None = None) -> str | None:
        if self._missing(name):
            if required:
                self.errors.append(f"{name} is required")
            return default
        value = self.data[name]
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            # Numeric primary keys come back as numbers from some endpoints
            return str(value)
        if not isinstance(value, str):
            self.errors.append(f"{name} must be a string")
            return default
        return value

    def choice(
        self,
        name: str,
        choices: tuple[str, ...],
        required: bool = False,
        default: str | None = None,
    ) -> str | None:
        value = self.string(name, required=required, default=default)
        if value is not None and value not in choices:
            self.errors.append(f"{name} must be one of {', '.join(choices)}; got {value!r}")
            return default
        return value

    def number(
        self,
        name: str,
        required: bool = False,
        default: float | None = None,
    ) -> float | None:
        if self._missing(name) or self.data[name] == "":
            if required:
                self.errors.append(f"{name} is required")
            return default
        value = self.data[name]
        if isinstance(value, bool):
            self.errors.append(f"{name} must be a number")
            return default
        if isinstance(value, (int, float)):
            return float(value)
        if isinstance(value, str):
            try:
                return float(value)
            except ValueError:
                pass
        self.errors.append(f"{name} must be a number")
        return default

    def integer(self, name: str, default: int = 0) -> int:
        value = self.number(name, default=float(default))
        if value is None:
            return default
        if not float(value).is_integer():
            self.errors.append(f"{name} must be an integer")
            return default
        return int(value)

    def boolean(self, name: str, default: bool = False) -> bool:
        if self._missing(name):
            return default
        value = self.data[name]
        if isinstance(value, bool):
            return value
        if isinstance(value, int) and value in (0, 1):
            return bool(value)
        if isinstance(value, str) and value.lower() in _TRUE_STRINGS | _FALSE_STRINGS:
            return value.lower() in _TRUE_STRINGS
        self.errors.append(f"{name} must be a boolean")
        return default

    def date(self, name: str, required: bool = False) -> date | None:
        if required and self._missing(name):
            self.errors.append(f"{name} is required")
            return None
        try:
            return parse_date(self.data.get(name))
        except ValueError as e:
            self.errors.append(f"{name} is not a valid date: {e}")
            return None

    def string_list(self, name: str) -> tuple[str, ...]:
        if self._missing(name):
            return ()
        value = self.data[name]
        if isinstance(value, str):
            # Some endpoints send JSON-encoded arrays as strings
            value = [part.strip() for part in value.strip("[]").replace('"', "").split(",") if part.strip()]
        if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
            self.errors.append(f"{name} must be a list of strings")
            return ()
        return tuple(value)

    def raise_for_errors(self) -> None:
        """Raise ResponseValidationError if any field failed."""
        if self.errors:
            raise ResponseValidationError(
                f"Malformed {self.entity} in API response",
                context={"entity": self.entity, "errors": list(self.errors)},
            )


def validate_envelope(payload: Any) -> list[str]:
    """Validate a ``{success, data, message?}`` response envelope.

    Args:
        payload: Decoded JSON body.

    Returns:
        List of error messages. Empty list means valid.
    """
    errors: list[str] = []

    if not isinstance(payload, Mapping):
        return [f"envelope must be an object, got {type(payload).__name__}"]

    if not isinstance(payload.get("success"), bool):
        errors.append("envelope.success must be a boolean")

    message = payload.get("message")
    if message is not None and not isinstance(message, str):
        errors.append("envelope.message must be a string")

    return errors
