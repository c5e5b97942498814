"""
Decode fetched payloads to text.

Rules:
- An explicit charset in the content type wins.
- Otherwise detect the encoding best-effort via charset-normalizer.
- If decoding fails, fall back to UTF-8, then to UTF-8 with replacement characters.
- Newlines are normalized to LF.
"""

from __future__ import annotations

import codecs
import logging
import re
from typing import Optional

from charset_normalizer import from_bytes

logger = logging.getLogger(__name__)

_CHARSET_RE = re.compile(r"charset\s*=\s*[\"']?([\w.:-]+)", re.IGNORECASE)


def charset_from_content_type(content_type: Optional[str]) -> Optional[str]:
    if not content_type:
        return None
    m = _CHARSET_RE.search(content_type)
    if not m:
        return None
    name = m.group(1)
    try:
        return codecs.lookup(name).name
    except LookupError:
        logger.warning("Ignoring unknown charset %r in content type", name)
        return None


def normalize_newlines(text: str) -> str:
    return text.replace("\r\n", "\n").replace("\r", "\n")


def decode_payload(raw: bytes, content_type: Optional[str] = None) -> str:
    if not raw:
        return ""

    decode_used = charset_from_content_type(content_type)
    if decode_used is None:
        match = from_bytes(raw).best()
        decode_used = match.encoding if match is not None else "utf-8"

    # A UTF-8 BOM must not leak into the first header cell.
    if raw.startswith(codecs.BOM_UTF8) and decode_used.lower().replace("-", "_") in ("utf_8", "utf8"):
        decode_used = "utf-8-sig"

    try:
        text = raw.decode(decode_used)
    except (UnicodeDecodeError, LookupError):
        try:
            text = raw.decode("utf-8-sig")
        except UnicodeDecodeError:
            logger.warning("Payload is not valid %s; decoding with replacement characters", decode_used)
            text = raw.decode("utf-8", errors="replace")

    return normalize_newlines(text)
