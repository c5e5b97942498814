"""Column discovery and row projection shared by every parser."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List

from .rules import DISCOVERY_SAMPLE, EMPTY, VALUE_COLUMN

Row = Dict[str, Any]


@dataclass
class ParseResult:
    columns: List[str]
    rows: List[Row] = field(default_factory=list)
    # True when a row/item cap dropped part of the input
    truncated: bool = False


def discover_columns(items: Iterable[Any], sample: int = DISCOVERY_SAMPLE) -> List[str]:
    """
    Union the keys of the first ``sample`` mapping items, in first-seen order.

    Keys that only appear past the sample are not discovered. Falls back to a
    single ``value`` column when no item is a mapping.
    """
    seen: Dict[str, None] = {}
    for i, item in enumerate(items):
        if i >= sample:
            break
        if isinstance(item, dict):
            for key in item:
                seen.setdefault(str(key), None)
    return list(seen) or [VALUE_COLUMN]


def pick(columns: List[str], item: Any) -> Row:
    """Project ``item`` onto ``columns``; absent fields become the empty string."""
    if not isinstance(item, dict):
        item = {VALUE_COLUMN: item}
    out: Row = {}
    for c in columns:
        v = item.get(c)
        out[c] = EMPTY if v is None else v
    return out


def project(columns: List[str], items: List[Any], limit: int) -> ParseResult:
    rows = [pick(columns, it) for it in items[:limit]]
    return ParseResult(columns=columns, rows=rows, truncated=len(items) > limit)
