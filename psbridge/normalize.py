"""Flatten remote object graphs into JSON-safe values."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, Protocol, Union, runtime_checkable
from uuid import UUID

MAX_DEPTH = 5

FlattenedValue = Union[str, bool, int, float, datetime, date, time, timedelta, list["FlattenedValue"], dict[str, "FlattenedValue"]]
FlattenedRecord = dict[str, FlattenedValue]

_SCALARS = (str, bool, int, float, datetime, date, time, timedelta)
_STRUCTURAL_MARKERS = ("{", ";")


@runtime_checkable
class RawRecord(Protocol):
    """Handle to one remote result object, adapted per protocol library."""

    def unwrap(self) -> object | None:
        """Return the native value behind the record, or ``None`` for composites."""

    def property_names(self) -> Iterable[str]:
        """Enumerate the record's property names."""

    def read_property(self, name: str) -> object:
        """Read one property; may raise for properties that cannot be read."""


def flatten(value: Any, depth: int = 0) -> FlattenedValue:
    """Recursively flatten ``value`` into scalars, lists and string-keyed maps.

    Rules are applied in order and each is terminal:

    1. beyond ``MAX_DEPTH`` the value's string form is returned, which bounds
       recursion on graphs with back-references;
    2. native scalars are returned as-is (wrapped records are unwrapped first);
    3. enum members become their name;
    4. mappings become dicts, other collections become lists (``None``
       entries skipped);
    5. a composite record whose string form is non-empty and free of ``{``
       and ``;`` is treated as a simple value (durations, distinguished
       names, remote enums);
    6. any other composite record becomes a dict of its readable properties.
    """

    if depth > MAX_DEPTH:
        return "" if value is None else str(value)
    if isinstance(value, RawRecord):
        base = value.unwrap()
        if isinstance(base, RawRecord):
            return flatten(base, depth + 1)
        if base is not None:
            value = base
    if isinstance(value, Enum):
        return value.name
    if isinstance(value, _SCALARS):
        return value
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, Mapping):
        return {
            str(key): flatten(item, depth + 1)
            for key, item in value.items()
            if item is not None
        }
    if isinstance(value, RawRecord):
        rendering = str(value)
        if rendering and not any(marker in rendering for marker in _STRUCTURAL_MARKERS):
            return rendering
        return _properties(value, depth + 1)
    if isinstance(value, Iterable):
        return [flatten(item, depth + 1) for item in value if item is not None]
    return "" if value is None else str(value)


def flatten_record(record: Any) -> FlattenedRecord:
    """Convert one top-level result into a property map.

    Unlike :func:`flatten`, a composite record is always expanded to its
    properties here; scalar outputs are returned under a ``Value`` key.
    """

    value = record
    if isinstance(value, RawRecord):
        base = value.unwrap()
        if base is None:
            return _properties(value, 0)
        value = base
    flattened = flatten(value)
    if isinstance(flattened, dict):
        return flattened
    return {"Value": flattened}


def normalize_records(records: Iterable[Any]) -> list[FlattenedRecord]:
    """Flatten every record, dropping empty results."""

    flattened = (flatten_record(record) for record in records if record is not None)
    return [record for record in flattened if record]


def _properties(record: RawRecord, depth: int) -> FlattenedRecord:
    result: FlattenedRecord = {}
    try:
        names = list(record.property_names())
    except Exception:  # an unenumerable record has no readable properties
        return result
    for name in names:
        try:
            item = record.read_property(name)
        except Exception:  # unreadable properties are omitted
            continue
        if item is None:
            continue
        result[str(name)] = flatten(item, depth)
    return result


__all__ = [
    "FlattenedRecord",
    "FlattenedValue",
    "MAX_DEPTH",
    "RawRecord",
    "flatten",
    "flatten_record",
    "normalize_records",
]
