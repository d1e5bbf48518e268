"""
Tests for entity types and ingress validation.
"""

from __future__ import annotations

from datetime import date
from typing import Any, Callable

import pytest

from sungura.exceptions import ResponseValidationError
from sungura.types import (
    ApiEnvelope,
    BreedingRecord,
    EarningsRecord,
    EntityKind,
    Gender,
    Hutch,
    Rabbit,
    RabbitStatus,
    RemovalRecord,
    Row,
    generate_id,
    parse_entities,
)
from sungura.validation import parse_date, validate_envelope


class TestParseDate:
    """Tests for API date parsing."""

    def test_plain_date(self) -> None:
        assert parse_date("2024-03-01") == date(2024, 3, 1)

    def test_iso_timestamp_with_z(self) -> None:
        assert parse_date("2024-03-01T10:15:00.000Z") == date(2024, 3, 1)

    def test_empty_values(self) -> None:
        assert parse_date(None) is None
        assert parse_date("") is None

    def test_garbage_raises(self) -> None:
        with pytest.raises(ValueError):
            parse_date("not a date")


class TestRabbit:
    """Tests for Rabbit parsing."""

    def test_from_dict(self, rabbit_data: Callable[..., dict[str, Any]]) -> None:
        """Test that a well-formed rabbit parses with typed fields."""
        rabbit = Rabbit.from_dict(
            rabbit_data(weight="3.5", is_pregnant="true", parent_male_id="RB-010")
        )

        assert rabbit.name == "Daisy"
        assert rabbit.gender is Gender.FEMALE
        assert rabbit.birth_date == date(2024, 1, 10)
        assert rabbit.weight == 3.5
        assert rabbit.is_pregnant is True
        assert rabbit.status is RabbitStatus.ACTIVE
        assert rabbit.parent_ids == ("RB-010",)

    def test_numeric_id_is_stringified(self, rabbit_data: Callable[..., dict[str, Any]]) -> None:
        rabbit = Rabbit.from_dict(rabbit_data(id=42))
        assert rabbit.id == "42"

    def test_all_errors_reported(self) -> None:
        """Test that every bad field is listed, not just the first."""
        with pytest.raises(ResponseValidationError) as exc_info:
            Rabbit.from_dict({"gender": "unknown", "weight": "heavy"})

        errors = exc_info.value.context["errors"]
        assert any("name is required" in e for e in errors)
        assert any("gender" in e for e in errors)
        assert any("weight" in e for e in errors)
        assert any("id or rabbit_id" in e for e in errors)

    def test_non_object_rejected(self) -> None:
        with pytest.raises(ResponseValidationError):
            Rabbit.from_dict(["not", "a", "rabbit"])

    def test_identity_prefers_id(self, rabbit_data: Callable[..., dict[str, Any]]) -> None:
        """Test identity falls back to the business ID when id is absent."""
        with_id = Rabbit.from_dict(rabbit_data())
        without_id = Rabbit.from_dict(rabbit_data(id=None))

        assert with_id.identity == "r-1"
        assert with_id.matches("RB-001")
        assert without_id.identity == "RB-001"

    def test_to_dict_round_trips(self, rabbit_data: Callable[..., dict[str, Any]]) -> None:
        rabbit = Rabbit.from_dict(rabbit_data(next_due="2024-06-01"))
        data = rabbit.to_dict()

        assert data["birth_date"] == "2024-01-10"
        assert data["gender"] == "female"
        assert Rabbit.from_dict(data) == rabbit


class TestOtherEntities:
    """Tests for hutches, rows and records."""

    def test_hutch_features_from_string(self) -> None:
        """Test that features sent as an encoded array string are accepted."""
        hutch = Hutch.from_dict({"id": "H-1", "name": "A1", "features": '["water", "feeder"]'})
        assert hutch.features == ("water", "feeder")

    def test_row_identified_by_name(self) -> None:
        row = Row.from_dict({"name": "Row A", "capacity": 12})
        assert row.identity == "Row A"
        assert row.capacity == 12

    def test_removal_record_requires_reason(self) -> None:
        with pytest.raises(ResponseValidationError):
            RemovalRecord.from_dict({"rabbit_id": "RB-001"})

    def test_breeding_record_requires_mating_date(self) -> None:
        with pytest.raises(ResponseValidationError) as exc_info:
            BreedingRecord.from_dict({"doe_id": "RB-001", "buck_id": "RB-002"})
        assert "mating_date is required" in exc_info.value.context["errors"]

    def test_earnings_identity_is_id_only(self) -> None:
        record = EarningsRecord.from_dict({"type": "rabbit_sale", "amount": "25", "rabbit_id": "RB-001"})
        assert record.amount == 25.0
        assert record.identity is None
        assert not record.matches("RB-001")


class TestParseEntities:
    """Tests for batch parsing."""

    def test_none_is_empty(self) -> None:
        assert parse_entities(EntityKind.RABBITS, None) == []

    def test_non_list_rejected(self) -> None:
        with pytest.raises(ResponseValidationError):
            parse_entities(EntityKind.HUTCHES, {"id": "H-1"})

    def test_one_bad_item_rejects_batch(self, rabbit_data: Callable[..., dict[str, Any]]) -> None:
        with pytest.raises(ResponseValidationError):
            parse_entities(EntityKind.RABBITS, [rabbit_data(), {"name": "Nameless"}])


class TestEnvelope:
    """Tests for response envelope validation."""

    def test_valid_envelope(self) -> None:
        envelope = ApiEnvelope.from_dict({"success": True, "data": [1, 2], "message": "ok"})
        assert envelope.success is True
        assert envelope.data == [1, 2]

    def test_success_must_be_bool(self) -> None:
        assert validate_envelope({"success": "yes"}) == ["envelope.success must be a boolean"]

    def test_non_object_rejected(self) -> None:
        with pytest.raises(ResponseValidationError):
            ApiEnvelope.from_dict("<html>")


class TestGenerateId:
    """Tests for ID generation."""

    def test_prefix_and_uniqueness(self) -> None:
        first = generate_id("pending")
        second = generate_id("pending")

        assert first.startswith("pending_")
        assert first != second
