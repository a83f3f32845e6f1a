"""
Date-preserving JSON encoding.

Tool arguments and results cross an LLM text boundary, so they are stored
as JSON-compatible data. Datetimes are written as ISO-8601 strings and
revived on the way back in, anywhere in the structure.
"""

from __future__ import annotations

import dataclasses
import json
import re
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel

ISO_DATE_PATTERN = re.compile(
    r"^(\d{4})-(\d{2})-(\d{2})T(\d{2}):(\d{2}):(\d{2})(?:\.(\d+))?(Z|[+-]\d{2}:\d{2})?$"
)


def _default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (set, frozenset)):
        return sorted(value, key=str)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def parse_iso_datetime(text: str) -> datetime | None:
    """Parse an ISO-8601 timestamp, or return None if it is not one."""
    match = ISO_DATE_PATTERN.match(text)
    if not match:
        return None
    year, month, day, hour, minute, second, fraction, tz = match.groups()
    microsecond = int((fraction or "0")[:6].ljust(6, "0"))
    tzinfo = None
    if tz == "Z":
        tzinfo = timezone.utc
    elif tz:
        sign = 1 if tz[0] == "+" else -1
        hours, minutes = int(tz[1:3]), int(tz[4:6])
        tzinfo = timezone(sign * timedelta(hours=hours, minutes=minutes))
    try:
        return datetime(
            int(year),
            int(month),
            int(day),
            int(hour),
            int(minute),
            int(second),
            microsecond,
            tzinfo=tzinfo,
        )
    except ValueError:
        return None


def revive_dates(value: Any) -> Any:
    """Walk a decoded JSON structure and turn ISO-8601 strings into datetimes."""
    if isinstance(value, str):
        parsed = parse_iso_datetime(value)
        return parsed if parsed is not None else value
    if isinstance(value, list):
        return [revive_dates(item) for item in value]
    if isinstance(value, dict):
        return {key: revive_dates(item) for key, item in value.items()}
    return value


def serialize(value: Any, indent: int | None = None) -> str:
    return json.dumps(value, default=_default, indent=indent)


def deserialize(text: str) -> Any:
    return revive_dates(json.loads(text))


def to_jsonable(value: Any) -> Any:
    """Normalise a value to plain JSON data, keeping datetimes as datetimes."""
    return deserialize(serialize(value))


def to_json_data(value: Any) -> Any:
    """Normalise a value to plain JSON data, with datetimes as ISO-8601 strings."""
    return json.loads(serialize(value))
