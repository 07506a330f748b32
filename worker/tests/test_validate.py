import json

from placesync.core.models import PendingRecord
from placesync.etl import transform, validate


def _row(**overrides):
    row = {"metabase_id": "m-1", "place_id": "ChIJ1", "name": "Bar Pepe"}
    row.update(overrides)
    return row


def test_string_values_are_coerced():
    result = validate.validate_place_row(
        _row(latitude="40.4168", longitude="-3.7038", rating="4.5", reviews="120", verified="true")
    )

    assert result.is_valid
    assert result.errors == []
    data = result.sanitized_data
    assert data["latitude"] == 40.4168
    assert data["longitude"] == -3.7038
    assert data["rating"] == 4.5
    assert data["reviews"] == 120
    assert data["verified"] is True


def test_false_like_strings_become_false():
    for raw in ("false", "FALSE", "0", "no", "off", ""):
        assert validate.validate_place_row(_row(verified=raw)).sanitized_data["verified"] is False
    assert validate.validate_place_row(_row(verified=1)).sanitized_data["verified"] is True


def test_out_of_range_coordinates_fail():
    result = validate.validate_place_row(_row(latitude=95, longitude=-200))

    assert not result.is_valid
    assert "invalid latitude: 95" in result.errors
    assert "invalid longitude: -200" in result.errors


def test_rating_above_five_fails():
    result = validate.validate_place_row(_row(rating="9.9"))

    assert not result.is_valid
    assert result.errors == ["invalid rating: '9.9'"]


def test_non_numeric_and_negative_counts_fail():
    result = validate.validate_place_row(_row(reviews="many", photos_count=-1, latitude=float("nan")))

    assert len(result.errors) == 3


def test_integer_fields_truncate_floats():
    assert validate.validate_place_row(_row(reviews="12.7")).sanitized_data["reviews"] == 12


def test_required_fields_are_reported():
    result = validate.validate_place_row({"name": "Bar Pepe"})

    assert result.errors == ["metabase_id is required", "place_id is required"]


def test_long_strings_are_truncated_with_warning():
    result = validate.validate_place_row(_row(description="x" * 1500))

    assert result.is_valid
    assert len(result.sanitized_data["description"]) == validate.MAX_STRING_LENGTH
    assert result.warnings == ["description is too long (1500 chars), truncated to 1000"]


def test_lists_are_joined_for_text_columns():
    result = validate.validate_place_row(_row(subtypes=["Bar", "Restaurant"]))

    assert result.sanitized_data["subtypes"] == "Bar,Restaurant"


def test_structured_fields_are_serialized():
    hours = {"Monday": ["9-17"], "Tuesday": "Cerrado"}
    result = validate.validate_place_row(_row(working_hours=hours, about='{"a":1}'))

    assert json.loads(result.sanitized_data["working_hours"]) == hours
    assert result.sanitized_data["about"] == '{"a":1}'


def test_oversized_json_is_truncated():
    result = validate.validate_place_row(_row(about={"text": "y" * 20000}))

    assert result.is_valid
    assert len(result.sanitized_data["about"]) == validate.MAX_JSON_LENGTH
    assert any("about JSON is too large" in warning for warning in result.warnings)


def test_unserializable_json_is_an_error():
    result = validate.validate_place_row(_row(order_links={"link": object()}))

    assert not result.is_valid
    assert result.sanitized_data["order_links"] is None


def test_updated_at_is_normalized():
    result = validate.validate_place_row(_row(updated_at="2024-05-01T10:00:00+02:00"))

    assert result.sanitized_data["updated_at"] == "2024-05-01T08:00:00.000Z"
    assert not validate.validate_place_row(_row(updated_at="yesterday")).is_valid


def test_input_is_not_mutated_and_result_is_stable():
    row = _row(latitude="40.4168", verified="false", description="z" * 1200)
    original = dict(row)

    first = validate.validate_place_row(row)
    second = validate.validate_place_row(first.sanitized_data)

    assert row == original
    assert second.sanitized_data == first.sanitized_data
    assert second.warnings == []


def test_diff_fields_reports_changes():
    original = _row(latitude="40.4168")
    result = validate.validate_place_row(original)

    assert ("latitude", "40.4168", 40.4168) in validate.diff_fields(original, result.sanitized_data)


def test_mapped_structured_fields_are_capped_and_checked():
    pending = PendingRecord(id="1", external_key="m-1", name="Bar Pepe")
    candidate = {
        "place_id": "ChIJ1",
        "about": {"text": "y" * 20000},
        "working_hours": {"Monday": float("nan")},
    }

    result = validate.validate_place_row(transform.map_candidate(candidate, pending))

    assert not result.is_valid
    assert len(result.sanitized_data["about"]) == validate.MAX_JSON_LENGTH
    assert any("about JSON is too large" in warning for warning in result.warnings)
    assert any(error.startswith("working_hours is not valid JSON") for error in result.errors)
    assert result.sanitized_data["working_hours"] is None


def test_json_strings_are_parsed_not_rewritten():
    assert not validate.validate_place_row(_row(about='{"a":')).is_valid
    assert not validate.validate_place_row(_row(about='{"a":NaN}')).is_valid

    spaced = '{ "a": [1, 2] }'
    result = validate.validate_place_row(_row(about=spaced))
    assert result.is_valid
    assert result.sanitized_data["about"] == spaced


def test_truncated_json_revalidates_cleanly():
    first = validate.validate_place_row(_row(about={"text": "y" * 20000}))
    second = validate.validate_place_row(first.sanitized_data)

    assert second.is_valid
    assert second.warnings == []
    assert second.sanitized_data == first.sanitized_data


def test_numbers_with_trailing_text_are_rejected():
    result = validate.validate_place_row(_row(rating="4.5 stars", reviews="100+"))

    assert result.errors == ["invalid rating: '4.5 stars'", "invalid reviews: '100+'"]
