"""
Normalize JSON of unknown shape into a table.

Real-world APIs wrap their records in different ways, so the value is first
classified into one of a few shapes, and each shape has its own normalizer:

- ``ARRAY_OF_RECORDS``: ``[{...}, {...}]``
- ``OBJECT_WITH_ARRAY_FIELD``: ``{"data": [{...}], "meta": ...}``; the first
  array-valued field holds the records, sibling fields are ignored
- ``OBJECT_OF_OBJECTS``: ``{"data": {"id1": {...}, "id2": {...}}}``; the values
  of the first object-valued field are the records
- ``SINGLE_RECORD``: any other object becomes one row
- ``PRIMITIVE``: scalars become one ``value`` row
"""

from __future__ import annotations

import enum
import json
from typing import Any, Callable, Dict, List, Tuple

from .rules import MAX_ROWS, VALUE_COLUMN
from .schema import ParseResult, discover_columns, project


class JsonShape(enum.Enum):
    ARRAY_OF_RECORDS = "array_of_records"
    OBJECT_WITH_ARRAY_FIELD = "object_with_array_field"
    OBJECT_OF_OBJECTS = "object_of_objects"
    SINGLE_RECORD = "single_record"
    PRIMITIVE = "primitive"


def classify_json(value: Any) -> Tuple[JsonShape, Any]:
    """Return the shape of ``value`` and the part of it holding the records."""
    if isinstance(value, list):
        return JsonShape.ARRAY_OF_RECORDS, value
    if not isinstance(value, dict):
        return JsonShape.PRIMITIVE, value

    for v in value.values():
        if isinstance(v, list):
            return JsonShape.OBJECT_WITH_ARRAY_FIELD, v
    for v in value.values():
        if isinstance(v, dict):
            return JsonShape.OBJECT_OF_OBJECTS, list(v.values())
    return JsonShape.SINGLE_RECORD, value


def _records(items: List[Any]) -> ParseResult:
    return project(discover_columns(items), items, MAX_ROWS)


def _single_record(obj: Dict[str, Any]) -> ParseResult:
    columns = [str(k) for k in obj]
    return ParseResult(columns=columns, rows=[{str(k): v for k, v in obj.items()}])


def scalar_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False)


def _primitive(value: Any) -> ParseResult:
    return ParseResult(columns=[VALUE_COLUMN], rows=[{VALUE_COLUMN: scalar_text(value)}])


_NORMALIZERS: Dict[JsonShape, Callable[[Any], ParseResult]] = {
    JsonShape.ARRAY_OF_RECORDS: _records,
    JsonShape.OBJECT_WITH_ARRAY_FIELD: _records,
    JsonShape.OBJECT_OF_OBJECTS: _records,
    JsonShape.SINGLE_RECORD: _single_record,
    JsonShape.PRIMITIVE: _primitive,
}


def parse_arbitrary_json(value: Any) -> ParseResult:
    shape, payload = classify_json(value)
    return _NORMALIZERS[shape](payload)
