"""
Best-effort extraction from RSS/XML feeds and HTML pages.

Neither extractor builds a document tree. Both scan the text for the few tags
they care about and simply produce fewer rows when the markup is broken; they
never raise on garbage input.
"""

from __future__ import annotations

import logging
import re
from html.parser import HTMLParser
from typing import List, Optional, Tuple

from .rules import EMPTY, MAX_ANCHORS, MAX_FEED_ITEMS
from .schema import ParseResult, Row, pick

logger = logging.getLogger(__name__)

FEED_COLUMNS = ["title", "url", "time"]
PAGE_COLUMNS = ["title", "url"]

_CDATA_OPEN = "<![CDATA["
_CDATA_CLOSE = "]]>"


def extract_items(xml: str, limit: int = MAX_FEED_ITEMS) -> Tuple[List[str], bool]:
    """
    Return the bodies of ``<item>`` elements in document order.

    The tag match is case-sensitive and attribute-free, like the RSS 2.0
    element it targets. An item missing its closing tag ends the scan.
    The second value tells whether more items followed the cap.
    """
    items: List[str] = []
    pos = 0
    while True:
        start = xml.find("<item>", pos)
        if start < 0:
            return items, False
        body_start = start + len("<item>")
        end = xml.find("</item>", body_start)
        if end < 0:
            return items, False
        if len(items) >= limit:
            return items, True
        items.append(xml[body_start:end])
        pos = end + len("</item>")


def tag(xml: str, name: str) -> str:
    """First ``<name>...</name>`` content (case-insensitive), trimmed; empty if absent."""
    opening = re.search(r"<" + re.escape(name) + r">", xml, re.IGNORECASE)
    if not opening:
        return EMPTY
    closing = re.compile(r"</" + re.escape(name) + r">", re.IGNORECASE).search(xml, opening.end())
    if not closing:
        return EMPTY
    text = xml[opening.end():closing.start()].strip()
    if text.startswith(_CDATA_OPEN) and text.endswith(_CDATA_CLOSE):
        text = text[len(_CDATA_OPEN):-len(_CDATA_CLOSE)].strip()
    return text


def feed_row(block: str) -> Row:
    return {"title": tag(block, "title"), "url": tag(block, "link"), "time": tag(block, "pubDate")}


def parse_feed(xml: str, limit: int = MAX_FEED_ITEMS) -> ParseResult:
    items, truncated = extract_items(xml, limit)
    return ParseResult(columns=list(FEED_COLUMNS), rows=[feed_row(b) for b in items], truncated=truncated)


class _PageScanner(HTMLParser):
    """Collects the document title and anchors with an href."""

    def __init__(self, max_anchors: int):
        super().__init__(convert_charrefs=True)
        self.max_anchors = max_anchors
        self.title: Optional[str] = None
        self.anchors: List[Tuple[str, str]] = []
        self.truncated = False
        self._title_parts: Optional[List[str]] = None
        self._href: Optional[str] = None
        self._text: List[str] = []

    def handle_starttag(self, tag, attrs):
        if tag == "title" and self.title is None and self._title_parts is None:
            self._title_parts = []
        elif tag == "a":
            # An unclosed anchor ends where the next one begins.
            self._finish_anchor()
            href = dict(attrs).get("href")
            if href and href.strip():
                self._href = href.strip()
                self._text = []

    def handle_endtag(self, tag):
        if tag == "title" and self._title_parts is not None:
            self.title = "".join(self._title_parts).strip()
            self._title_parts = None
        elif tag == "a":
            self._finish_anchor()

    def handle_data(self, data):
        if self._title_parts is not None:
            self._title_parts.append(data)
        if self._href is not None:
            self._text.append(data)

    def _finish_anchor(self):
        if self._href is None:
            return
        if len(self.anchors) < self.max_anchors:
            self.anchors.append((self._href, "".join(self._text).strip()))
        else:
            self.truncated = True
        self._href = None
        self._text = []


def scan_page(html: str, max_anchors: int = MAX_ANCHORS) -> _PageScanner:
    scanner = _PageScanner(max_anchors)
    try:
        scanner.feed(html)
        scanner.close()
    except AssertionError as exc:
        # html.parser gives up on some broken declarations; keep what was found so far.
        logger.warning("HTML scan stopped early: %s", exc)
    return scanner


def parse_html(html: str, columns: Optional[List[str]] = None, max_anchors: int = MAX_ANCHORS) -> ParseResult:
    columns = list(columns or PAGE_COLUMNS)
    scanner = scan_page(html, max_anchors)
    rows: List[Row] = []
    if scanner.title:
        rows.append(pick(columns, {"title": scanner.title, "url": EMPTY}))
    for href, text in scanner.anchors:
        rows.append(pick(columns, {"title": text or href, "url": href}))
    return ParseResult(columns=columns, rows=rows, truncated=scanner.truncated)
