"""
CSV tokenizing and export.

The reader tolerates ragged rows: short rows are padded with empty strings and
surplus fields are ignored. Header cells are trimmed; unnamed cells get a
synthetic ``col<index>`` name. Malformed input never raises: the rows read
before the problem are kept.
"""

from __future__ import annotations

import csv
import io
import json
import logging
import re
from typing import Any, Dict, List

from .encoding import normalize_newlines
from .rules import EMPTY, MAX_ROWS
from .schema import ParseResult, Row

logger = logging.getLogger(__name__)

_NEEDS_QUOTES = re.compile(r'[",\n]')


def _header_names(cells: List[str]) -> List[str]:
    names: List[str] = []
    taken: Dict[str, None] = {}
    for i, cell in enumerate(cells):
        name = cell.strip() or f"col{i}"
        if name in taken:
            base = name
            name = f"{base}_{i}"
            while name in taken:
                name = f"{name}_"
        taken[name] = None
        names.append(name)
    return names


def parse_csv(text: str, max_rows: int = MAX_ROWS) -> ParseResult:
    text = normalize_newlines(text)
    # A single cell may hold most of the payload, e.g. after an unclosed quote.
    csv.field_size_limit(max(csv.field_size_limit(), len(text) + 1))
    reader = csv.reader(io.StringIO(text, newline=""), delimiter=",")

    columns: List[str] = []
    rows: List[Row] = []
    truncated = False

    try:
        for record in reader:
            if not record:
                continue
            if not columns:
                columns = _header_names(record)
                continue
            if len(rows) >= max_rows:
                truncated = True
                break
            rows.append({c: (record[i] if i < len(record) else EMPTY) for i, c in enumerate(columns)})
    except csv.Error as exc:
        logger.warning("Malformed CSV near line %d, keeping %d rows: %s", reader.line_num, len(rows), exc)

    return ParseResult(columns=columns, rows=rows, truncated=truncated)


def csv_cell(value: Any) -> str:
    if value is None:
        return EMPTY
    if isinstance(value, str):
        s = value
    elif isinstance(value, (bool, dict, list)):
        s = json.dumps(value, ensure_ascii=False, separators=(",", ":"))
    else:
        s = str(value)
    if _NEEDS_QUOTES.search(s):
        return '"' + s.replace('"', '""') + '"'
    return s


def to_csv(columns: List[str], rows: List[Row]) -> str:
    header = ",".join(csv_cell(c) for c in columns)
    body = "\n".join(",".join(csv_cell(r.get(c)) for c in columns) for r in rows)
    return header + "\n" + body
