"""Unit tests for FieldValidator."""

from datetime import date, datetime, timezone
from uuid import uuid4

import pytest

from recordbase.errors import ValidationError
from recordbase.models.enums import FieldType
from recordbase.models.record import Record
from recordbase.models.table import FieldDefinition, FieldValidation
from recordbase.services.validator import FieldValidator, is_blank, values_equal


def _field(name: str, field_type: FieldType, **extra) -> FieldDefinition:
    return FieldDefinition(
        id=str(uuid4()),
        name=name,
        display_name=name.replace("_", " ").title(),
        type=field_type,
        **extra,
    )


def _record(data: dict) -> Record:
    now = datetime(2024, 1, 1, tzinfo=timezone.utc)
    return Record(id=str(uuid4()), table_id=str(uuid4()), data=data, created_at=now, updated_at=now)


@pytest.fixture
def validator() -> FieldValidator:
    return FieldValidator()


class TestRequired:
    """Tests for the required check."""

    @pytest.mark.parametrize("payload", [{}, {"email": None}, {"email": ""}])
    def test_blank_required_value_fails(self, validator: FieldValidator, payload: dict) -> None:
        field = _field("email", FieldType.TEXT, required=True)

        with pytest.raises(ValidationError) as exc_info:
            validator.validate([field], payload)

        assert exc_info.value.message == 'Field "Email" is required'
        assert exc_info.value.field == "email"
        assert exc_info.value.constraint == "required"

    def test_optional_field_may_be_absent(self, validator: FieldValidator) -> None:
        field = _field("age", FieldType.NUMBER)

        assert validator.validate([field], {}) == {}

    def test_required_accepts_zero_and_false(self, validator: FieldValidator) -> None:
        fields = [
            _field("count", FieldType.NUMBER, required=True),
            _field("active", FieldType.BOOLEAN, required=True),
        ]

        assert validator.validate(fields, {"count": 0, "active": False}) == {"count": 0, "active": False}

    def test_unknown_keys_pass_through(self, validator: FieldValidator) -> None:
        field = _field("email", FieldType.TEXT)

        result = validator.validate([field], {"email": "a@x.com", "legacy": [1, 2]})

        assert result == {"email": "a@x.com", "legacy": [1, 2]}

    def test_first_failing_field_wins(self, validator: FieldValidator) -> None:
        fields = [_field("first", FieldType.TEXT, required=True), _field("second", FieldType.TEXT, required=True)]

        with pytest.raises(ValidationError) as exc_info:
            validator.validate(fields, {})

        assert exc_info.value.field == "first"


class TestNumber:
    """Tests for number fields."""

    @pytest.mark.parametrize(
        ("value", "expected"),
        [(42, 42), (3.5, 3.5), ("42", 42), ("3.25", 3.25), (0, 0)],
    )
    def test_accepts_and_normalizes(self, validator: FieldValidator, value, expected) -> None:
        field = _field("score", FieldType.NUMBER)

        result = validator.validate([field], {"score": value})

        assert result["score"] == expected
        assert type(result["score"]) is type(expected)

    @pytest.mark.parametrize("value", ["abc", "", "-5", "1e3", True, [1], float("nan")])
    def test_rejects_non_numbers(self, validator: FieldValidator, value) -> None:
        field = _field("score", FieldType.NUMBER)

        with pytest.raises(ValidationError) as exc_info:
            validator.validate([field], {"score": value})

        assert exc_info.value.message == 'Field "Score" must be a number'
        assert exc_info.value.constraint == "type"

    def test_enforces_bounds(self, validator: FieldValidator) -> None:
        field = _field("age", FieldType.NUMBER, validation=FieldValidation(min=18, max=65))

        with pytest.raises(ValidationError) as too_low:
            validator.validate([field], {"age": 17})
        with pytest.raises(ValidationError) as too_high:
            validator.validate([field], {"age": 66})

        assert too_low.value.message == 'Field "Age" must be at least 18'
        assert too_low.value.constraint == "min"
        assert too_high.value.message == 'Field "Age" must be at most 65'
        assert validator.validate([field], {"age": 18}) == {"age": 18}
        assert validator.validate([field], {"age": 65}) == {"age": 65}

    def test_bounds_apply_to_numeric_strings(self, validator: FieldValidator) -> None:
        field = _field("age", FieldType.NUMBER, validation=FieldValidation(min=18))

        with pytest.raises(ValidationError):
            validator.validate([field], {"age": "17"})


class TestBoolean:
    """Tests for boolean fields."""

    @pytest.mark.parametrize(("value", "expected"), [(True, True), (False, False), ("true", True), ("false", False)])
    def test_accepts(self, validator: FieldValidator, value, expected: bool) -> None:
        field = _field("active", FieldType.BOOLEAN)

        assert validator.validate([field], {"active": value})["active"] is expected

    @pytest.mark.parametrize("value", ["yes", "TRUE", 1, 0, "1"])
    def test_rejects(self, validator: FieldValidator, value) -> None:
        field = _field("active", FieldType.BOOLEAN)

        with pytest.raises(ValidationError) as exc_info:
            validator.validate([field], {"active": value})

        assert exc_info.value.message == 'Field "Active" must be a boolean'


class TestDate:
    """Tests for date fields."""

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ("2024-03-01", "2024-03-01"),
            ("2024-03-01T10:00:00+00:00", "2024-03-01T10:00:00+00:00"),
            (date(2024, 3, 1), "2024-03-01"),
            (datetime(2024, 3, 1, 10, 0, tzinfo=timezone.utc), "2024-03-01T10:00:00+00:00"),
        ],
    )
    def test_accepts_and_normalizes_to_iso(self, validator: FieldValidator, value, expected: str) -> None:
        field = _field("hired_on", FieldType.DATE)

        assert validator.validate([field], {"hired_on": value})["hired_on"] == expected

    @pytest.mark.parametrize(
        "value", ["not a date", "2024-13-01", "", 20240301, "2024/01/05", "01/05/2024", "Jan 5, 2024"]
    )
    def test_rejects(self, validator: FieldValidator, value) -> None:
        field = _field("hired_on", FieldType.DATE)

        with pytest.raises(ValidationError) as exc_info:
            validator.validate([field], {"hired_on": value})

        assert exc_info.value.message == 'Field "Hired On" must be a valid date'


class TestText:
    """Tests for text fields."""

    def test_rejects_non_strings(self, validator: FieldValidator) -> None:
        field = _field("email", FieldType.TEXT)

        with pytest.raises(ValidationError) as exc_info:
            validator.validate([field], {"email": 12})

        assert exc_info.value.message == 'Field "Email" must be a string'

    def test_pattern_is_searched(self, validator: FieldValidator) -> None:
        field = _field("email", FieldType.TEXT, validation=FieldValidation(pattern="@"))

        assert validator.validate([field], {"email": "a@x.com"}) == {"email": "a@x.com"}
        with pytest.raises(ValidationError) as exc_info:
            validator.validate([field], {"email": "nope"})

        assert exc_info.value.message == 'Field "Email" does not match required pattern'
        assert exc_info.value.constraint == "pattern"

    def test_length_bounds(self, validator: FieldValidator) -> None:
        field = _field("code", FieldType.TEXT, validation=FieldValidation(min=2, max=4))

        with pytest.raises(ValidationError) as too_short:
            validator.validate([field], {"code": "a"})
        with pytest.raises(ValidationError) as too_long:
            validator.validate([field], {"code": "abcde"})

        assert too_short.value.message == 'Field "Code" must be at least 2 characters'
        assert too_long.value.message == 'Field "Code" must be at most 4 characters'
        assert validator.validate([field], {"code": "abc"}) == {"code": "abc"}


class TestRelationAndComputed:
    """Relation and computed values are not type checked."""

    def test_values_pass_through(self, validator: FieldValidator) -> None:
        fields = [
            _field("manager", FieldType.RELATION),
            _field("label", FieldType.COMPUTED, formula="'x'"),
        ]

        result = validator.validate(fields, {"manager": {"id": 1}, "label": 7})

        assert result == {"manager": {"id": 1}, "label": 7}


class TestUnique:
    """Tests for the uniqueness scan."""

    def test_finds_duplicate(self, validator: FieldValidator) -> None:
        field = _field("email", FieldType.TEXT, unique=True)
        records = [_record({"email": "b@x.com"}), _record({"email": "a@x.com"})]

        assert validator.find_duplicate(field, "a@x.com", records) is records[1]
        with pytest.raises(ValidationError) as exc_info:
            validator.ensure_unique(field, "a@x.com", records)

        assert exc_info.value.message == 'Value "a@x.com" for field "Email" already exists'
        assert exc_info.value.constraint == "unique"

    def test_match_is_exact(self, validator: FieldValidator) -> None:
        field = _field("email", FieldType.TEXT, unique=True)
        records = [_record({"email": "A@X.com"}), _record({})]

        validator.ensure_unique(field, "a@x.com", records)

    def test_booleans_do_not_match_numbers(self, validator: FieldValidator) -> None:
        field = _field("flag", FieldType.NUMBER, unique=True)

        assert validator.find_duplicate(field, 1, [_record({"flag": True})]) is None


def test_values_equal() -> None:
    assert values_equal(1, 1.0)
    assert values_equal("a", "a")
    assert values_equal(True, True)
    assert not values_equal(True, 1)
    assert not values_equal(0, False)


def test_is_blank() -> None:
    assert is_blank(None)
    assert is_blank("")
    assert not is_blank(0)
    assert not is_blank(False)
