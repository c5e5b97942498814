"""Pick a parsing strategy for a payload and run it."""

from __future__ import annotations

import enum
import json
import logging
from typing import Any, List, Optional
from urllib.parse import urlsplit

from .encoding import normalize_newlines
from .errors import ParseError
from .json_shapes import parse_arbitrary_json
from .markup import parse_feed, parse_html
from .rules import MAX_HTML_ROWS, MAX_ROWS, VALUE_COLUMN
from .schema import ParseResult, discover_columns, project
from .tokenizers import parse_csv

logger = logging.getLogger(__name__)


class Format(enum.Enum):
    CSV = "CSV"
    NDJSON = "NDJSON"
    JSON = "JSON"
    XML = "RSS/XML"
    HTML = "HTML"
    TEXT = "plain text"


# Order matters: "application/x-ndjson" must not be taken for JSON,
# nor "application/rss+xml" for anything but XML.
_CONTENT_TYPE_RULES = [
    (("csv",), Format.CSV),
    (("ndjson", "jsonl"), Format.NDJSON),
    (("xml", "rss", "atom"), Format.XML),
    (("json",), Format.JSON),
]

_SUFFIX_RULES = [
    ((".csv",), Format.CSV),
    ((".ndjson", ".jsonl"), Format.NDJSON),
    ((".xml", ".rss", ".atom"), Format.XML),
    ((".json",), Format.JSON),
]


def detect_format(content_type: Optional[str] = None, url: Optional[str] = None) -> Format:
    """Content type first, then the URL path suffix, else HTML scraping."""
    ct = (content_type or "").lower()
    if ct:
        for needles, fmt in _CONTENT_TYPE_RULES:
            if any(n in ct for n in needles):
                return fmt

    if url:
        try:
            path = urlsplit(url).path.lower()
        except ValueError:
            path = url.lower()
        for suffixes, fmt in _SUFFIX_RULES:
            if path.endswith(suffixes):
                return fmt

    return Format.HTML


def _json_line(line: str) -> Any:
    try:
        return json.loads(line)
    except ValueError:
        return {}


def parse_ndjson(text: str) -> ParseResult:
    lines = [ln for ln in normalize_newlines(text).split("\n") if ln.strip()]
    objs = [_json_line(ln) for ln in lines[:MAX_ROWS]]
    result = project(discover_columns(objs), objs, MAX_ROWS)
    result.truncated = len(lines) > MAX_ROWS
    return result


def parse_json_text(text: str, what: str = "JSON") -> ParseResult:
    try:
        body = json.loads(text)
    except ValueError as exc:
        raise ParseError(f"Invalid {what}: {exc}") from exc
    return parse_arbitrary_json(body)


def parse_document(fmt: Format, text: str) -> ParseResult:
    """Parse a fetched body with the strategy chosen by :func:`detect_format`."""
    logger.debug("Parsing %s payload (%d chars)", fmt.value, len(text))
    if fmt is Format.CSV:
        return parse_csv(text)
    if fmt is Format.NDJSON:
        return parse_ndjson(text)
    if fmt is Format.JSON:
        return parse_json_text(text, "JSON response")
    if fmt is Format.XML:
        return parse_feed(text)

    result = parse_html(text)
    if len(result.rows) > MAX_HTML_ROWS:
        result.rows = result.rows[:MAX_HTML_ROWS]
        result.truncated = True
    return result


def plain_text(text: str) -> ParseResult:
    return ParseResult(columns=[VALUE_COLUMN], rows=[{VALUE_COLUMN: text.strip()}])


def _all_lines_json(text: str) -> bool:
    lines: List[str] = [ln for ln in normalize_newlines(text).split("\n") if ln.strip()]
    if len(lines) < 2:
        return False
    for ln in lines:
        try:
            json.loads(ln)
        except ValueError:
            return False
    return True


def sniff_pasted(text: str) -> Format:
    guess = text.strip()
    if guess.startswith(("{", "[")):
        return Format.JSON
    if "," in guess or "\n" in guess:
        return Format.CSV
    return Format.TEXT


def parse_pasted(text: str) -> tuple[Format, ParseResult]:
    """Guess the format of pasted text: JSON, then CSV, then a single value."""
    guess = text.strip()
    fmt = sniff_pasted(guess)
    if fmt is Format.JSON:
        try:
            body = json.loads(guess)
        except ValueError as exc:
            if _all_lines_json(guess):
                return Format.NDJSON, parse_ndjson(guess)
            raise ParseError("Invalid JSON in pasted text.") from exc
        return fmt, parse_arbitrary_json(body)
    if fmt is Format.CSV:
        return fmt, parse_csv(guess)
    return fmt, plain_text(guess)
