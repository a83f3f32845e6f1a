"""Tests for date-preserving JSON serialization."""

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import BaseModel

from jorel.core.serialization import (
    deserialize,
    parse_iso_datetime,
    revive_dates,
    serialize,
    to_json_data,
    to_jsonable,
)


class Forecast(BaseModel):
    city: str
    temp: float


def test_datetimes_survive_a_round_trip():
    when = datetime(2024, 5, 1, 12, 30, 0, tzinfo=timezone.utc)
    restored = deserialize(serialize({"at": when, "nested": [{"at": when}]}))
    assert restored["at"] == when
    assert restored["nested"][0]["at"] == when


def test_non_date_strings_are_untouched():
    assert deserialize(serialize({"name": "2024-05-01"})) == {"name": "2024-05-01"}


def test_parse_iso_datetime_with_offset():
    parsed = parse_iso_datetime("2024-05-01T12:30:00.5+02:00")
    assert parsed.microsecond == 500000
    assert parsed.utcoffset() == timedelta(hours=2)


def test_parse_iso_datetime_rejects_invalid_dates():
    assert parse_iso_datetime("2024-13-01T00:00:00Z") is None
    assert parse_iso_datetime("not a date") is None


def test_revive_dates_walks_lists():
    assert revive_dates(["2024-01-01T00:00:00Z", 3])[0].year == 2024


def test_pydantic_models_are_dumped():
    assert deserialize(serialize(Forecast(city="Paris", temp=21.5))) == {
        "city": "Paris",
        "temp": 21.5,
    }


def test_to_jsonable_normalises_tuples_and_sets():
    assert to_jsonable({"a": (1, 2), "b": {"y", "x"}}) == {"a": [1, 2], "b": ["x", "y"]}


def test_to_json_data_keeps_dates_as_strings():
    when = datetime(2024, 5, 1, 12, 30, 0, tzinfo=timezone.utc)
    assert to_json_data({"at": when, "tags": ("a",)}) == {"at": "2024-05-01T12:30:00+00:00", "tags": ["a"]}


def test_unserializable_values_raise():
    with pytest.raises(TypeError):
        serialize({"value": object()})
