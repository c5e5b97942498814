"""
Row cleaning, applied once to every parsed table.

Responsibilities, in order, all driven by the parsed column list:
- trim string cells
- coerce numeric-looking strings ("1,234.5") to numbers
- drop rows where every cell is empty
- deduplicate rows by value, first occurrence wins
- prune columns that are empty in every surviving row
"""

from __future__ import annotations

import json
import math
import re
from typing import Any, List, Tuple

from .rules import EMPTY
from .schema import Row

_NUMERIC_LIKE = re.compile(r"^[-\d.,]+$")


def to_number(value: Any) -> Any:
    """
    Parse a numeric-looking string, stripping thousands separators.

    Non-matching strings and strings that still fail to parse ("1.2.3", "-")
    come back unchanged. Integral results are returned as ``int``.
    """
    if isinstance(value, bool):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else value
    if not isinstance(value, str) or not _NUMERIC_LIKE.match(value):
        return value
    try:
        n = float(value.replace(",", ""))
    except ValueError:
        return value
    if not math.isfinite(n):
        return value
    return int(n) if n.is_integer() else n


def clean_cell(value: Any) -> Any:
    # NaN/Infinity are accepted by json.loads but cannot be sent back out as JSON.
    if value is None or (isinstance(value, float) and not math.isfinite(value)):
        return EMPTY
    if isinstance(value, str):
        value = value.strip()
    return to_number(value)


def is_empty(value: Any) -> bool:
    return value is None or value == EMPTY


def _row_key(row: Row) -> str:
    return json.dumps(row, ensure_ascii=False, separators=(",", ":"), default=str)


def clean_rows(columns: List[str], rows: List[Row]) -> Tuple[List[str], List[Row]]:
    seen = set()
    out: List[Row] = []

    for r in rows:
        cleaned = {c: clean_cell(r.get(c)) for c in columns}
        if all(is_empty(cleaned[c]) for c in columns):
            continue
        key = _row_key(cleaned)
        if key in seen:
            continue
        seen.add(key)
        out.append(cleaned)

    keep = [c for c in columns if any(not is_empty(r[c]) for r in out)]
    # With no surviving rows there is nothing to prune against; keep the header.
    if keep and len(keep) != len(columns):
        out = [{c: r[c] for c in keep} for r in out]
        return keep, out
    return list(columns), out
