"""
Ingestion pipeline and its event stream.

An ingestion runs as one background task that is the only producer on an
:class:`EventChannel`; the transport is the only consumer and turns each event
into a server-sent event. Stages run strictly in order:

    fetch/parse logs -> schema -> (warn | vectorized) -> insights -> table -> "Done."

A fatal error emits a single ``error`` event and nothing after it. The channel
is closed exactly once on every exit path.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Dict, List, Optional, Set
from urllib.parse import urlsplit

from .charts import extract_json, plan_charts
from .collaborators import ChatModel, Fetcher, Services
from .embedding import embed_rows, rank_rows_for_embedding
from .encoding import decode_payload
from .errors import FetchError, IngestError
from .json_shapes import JsonShape, classify_json
from .markup import extract_items, feed_row, parse_html
from .models import DatasetRequest, SchemaSnapshot, SessionState, Table, Target, TopicPlan
from .normalize import clean_rows
from .router import Format, detect_format, parse_document, parse_pasted
from .rules import (
    MAX_ROWS,
    MAX_SCRAPE_ITEMS,
    MAX_SCRAPE_RECORDS,
    MAX_TOPIC_TARGETS,
    PASTED_NAME,
    PASTED_URL,
    SNAPSHOT_SAMPLE,
    TABLE_ROWS,
)
from .schema import ParseResult, Row, pick

logger = logging.getLogger(__name__)


@dataclass
class StreamEvent:
    event: str
    data: Dict[str, Any]


_CLOSED = object()


class EventChannel:
    """Unbounded single-producer, single-consumer queue of stream events."""

    def __init__(self):
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, event: str, data: Dict[str, Any]) -> None:
        if self._closed:
            raise RuntimeError(f"send({event!r}) on a closed channel")
        await self._queue.put(StreamEvent(event, data))

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSED)

    async def __aiter__(self) -> AsyncIterator[StreamEvent]:
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                return
            yield item


def format_sse(ev: StreamEvent) -> str:
    return f"event: {ev.event}\ndata: {json.dumps(ev.data, ensure_ascii=False, default=str)}\n\n"


_background: Set[asyncio.Task] = set()


async def stream_events(channel: EventChannel, producer: Awaitable[Any]) -> AsyncIterator[str]:
    """
    Start ``producer`` as a background task and yield its events as SSE text.

    If the consumer goes away the task keeps running to completion.
    """
    task = asyncio.ensure_future(producer)
    _background.add(task)
    task.add_done_callback(_background.discard)
    async for ev in channel:
        yield format_sse(ev)


def host_name(url: str) -> str:
    try:
        host = urlsplit(url).hostname
    except ValueError:
        host = None
    if not host:
        return "source"
    return host[4:] if host.startswith("www.") else host


def parsed_message(fmt: Format, result: ParseResult, pasted: bool = False) -> str:
    n = len(result.rows)
    if fmt is Format.TEXT:
        return "Parsed plain text."
    if fmt is Format.XML:
        return f"Parsed RSS/XML: {n} items."
    if fmt is Format.CSV and pasted:
        return f"Parsed CSV-ish text: {n} rows."
    return f"Parsed {fmt.value}: {n} rows."


async def _log(channel: EventChannel, msg: str) -> None:
    await channel.send("log", {"msg": msg})


async def _load(request: DatasetRequest, fetcher: Fetcher, channel: EventChannel) -> ParseResult:
    if request.url:
        await _log(channel, f"Fetching dataset: {request.url}")
        fetched = await fetcher.fetch(request.url)
        if not fetched.ok:
            raise FetchError(f"Fetch failed: {fetched.status} {fetched.reason}".rstrip())
        fmt = detect_format(fetched.content_type, request.url)
        parsed = parse_document(fmt, decode_payload(fetched.body, fetched.content_type))
        await _log(channel, parsed_message(fmt, parsed))
    else:
        await _log(channel, "Parsing pasted data…")
        fmt, parsed = parse_pasted(request.text or "")
        await _log(channel, parsed_message(fmt, parsed, pasted=True))

    if parsed.truncated:
        await _log(channel, f"Input was truncated to the first {len(parsed.rows)} rows (limit {MAX_ROWS}).")
    return parsed


async def ingest_dataset(request: DatasetRequest, services: Services, channel: EventChannel) -> Optional[SessionState]:
    """
    Run one ingestion, reporting every stage on ``channel``.

    Returns the new session state on success; the caller owns storing it.
    Returns None when the ingestion failed (the failure was already reported).
    """
    source_url = request.url or PASTED_URL
    name = request.name or (host_name(request.url) if request.url else PASTED_NAME)

    try:
        parsed = await _load(request, services.fetcher, channel)

        before = len(parsed.rows)
        columns, rows = clean_rows(parsed.columns, parsed.rows)
        await _log(channel, f"Cleaned data: {before} → {len(rows)} rows, {len(columns)} cols.")

        snapshot = SchemaSnapshot(name=name, url=source_url, columns=columns, sample=rows[:SNAPSHOT_SAMPLE])
        await channel.send("schema", {"name": name, "url": source_url, "columns": columns, "count": len(rows)})

        if services.vector_index is None:
            await channel.send("warn", {"msg": "Vector index not configured; skipping embeddings."})
        elif request.embed:
            await _log(channel, "Ranking rows for embedding…")
            chosen, ranked_fallback = await rank_rows_for_embedding(services.chat, columns, rows)
            if ranked_fallback:
                await _log(channel, "Row ranking unavailable; using the first rows.")
            await _log(channel, f"Vectorizing {len(chosen)} rows…")
            count = await embed_rows(services.embedder, services.vector_index, name, source_url, columns, chosen)
            await channel.send("vectorized", {"count": count})

        await _log(channel, "Planning charts & insights…")
        sample = rows[:SNAPSHOT_SAMPLE]
        plan = await plan_charts(services.chat, columns, sample, request.sys)
        if plan.fallback:
            await _log(channel, "Chart planner gave no usable specs; using a default chart.")
        await channel.send("insights", {"specs": [s.model_dump(exclude_none=True) for s in plan.specs], "data": sample})

        table = Table(name=name, url=source_url, columns=columns, rows=rows[:TABLE_ROWS])
        await channel.send("table", {"table": table.model_dump()})

        await _log(channel, "Done.")
        return SessionState(snapshot=snapshot, system_instruction=request.sys)
    except IngestError as exc:
        logger.warning("Ingestion of %s failed: %s", name, exc)
        await channel.send("error", {"msg": str(exc)})
    except Exception as exc:
        logger.exception("Ingestion of %s crashed", name)
        await channel.send("error", {"msg": str(exc) or exc.__class__.__name__})
    finally:
        channel.close()
    return None


# ---------------------------------------------------------------------------
# Topic mode: ask the chat model for public sources and scrape a few of them
# ---------------------------------------------------------------------------

TOPIC_SYSTEM_PROMPT = "Return ONLY valid JSON for `columns` and `targets`. No prose."

DEFAULT_TOPIC_COLUMNS = ["title", "url", "score", "by", "time"]
DEFAULT_TOPIC_TARGET = Target(
    url="https://hacker-news.firebaseio.com/v0/topstories.json",
    format="json",
    name="hacker-news",
)


def topic_prompt(topic: str) -> str:
    return (
        f'For "{topic}", propose up to 3 public JSON or RSS endpoints (no auth).\n'
        "Respond exactly:\n"
        '{"columns":["title","url","score","by","time"],\n'
        ' "targets":[{"url":"...", "format":"json"|"rss","name":"short-source-name-optional"}]}'
    )


async def plan_topic(chat: ChatModel, topic: str) -> TopicPlan:
    plan = TopicPlan(topic=topic)
    try:
        reply = await chat.complete(TOPIC_SYSTEM_PROMPT, topic_prompt(topic), temperature=0.2)
        parsed = extract_json(reply, dict)
        columns = parsed.get("columns")
        if isinstance(columns, list) and columns and all(isinstance(c, str) for c in columns):
            plan.columns = columns
        targets: List[Target] = []
        for t in parsed.get("targets") or []:
            if isinstance(t, dict) and isinstance(t.get("url"), str):
                fmt = t.get("format")
                targets.append(Target(url=t["url"], format=fmt if fmt in ("json", "rss") else None, name=t.get("name") or None))
        plan.targets = targets
    except Exception as exc:
        logger.warning("Topic planning failed for %r: %s", topic, exc)

    if not plan.targets:
        plan.targets = [DEFAULT_TOPIC_TARGET.model_copy()]
        plan.columns = list(DEFAULT_TOPIC_COLUMNS)
    for t in plan.targets:
        if not t.name:
            t.name = host_name(t.url)
    return plan


async def scrape_target(fetcher: Fetcher, target: Target, columns: List[str]) -> Table:
    """Best-effort scrape of one target; a failure becomes a single error row."""
    rows: List[Row]
    try:
        fetched = await fetcher.fetch(target.url)
        fmt = detect_format(fetched.content_type)
        text = decode_payload(fetched.body, fetched.content_type)
        if target.format == "rss" or fmt is Format.XML:
            items, _ = extract_items(text, MAX_SCRAPE_ITEMS)
            rows = [pick(columns, feed_row(b)) for b in items]
        elif fmt is Format.JSON:
            shape, records = classify_json(json.loads(text))
            if shape in (JsonShape.SINGLE_RECORD, JsonShape.PRIMITIVE):
                records = []
            rows = [pick(columns, it) for it in records[:MAX_SCRAPE_RECORDS]]
        else:
            rows = parse_html(text, columns).rows
    except (IngestError, ValueError) as exc:
        logger.warning("Scraping %s failed: %s", target.url, exc)
        rows = [{"error": str(exc)}]
    return Table(name=target.name or host_name(target.url), url=target.url, columns=columns, rows=rows)


async def run_topic(topic: str, services: Services, channel: EventChannel) -> None:
    try:
        await _log(channel, f'Planning for "{topic}"…')
        plan = await plan_topic(services.chat, topic)
        await channel.send("plan", {"plan": plan.model_dump(exclude_none=True)})
        for target in plan.targets[:MAX_TOPIC_TARGETS]:
            await _log(channel, f"Scraping {target.name or host_name(target.url)}…")
            table = await scrape_target(services.fetcher, target, plan.columns)
            await channel.send("table", {"table": table.model_dump()})
        await _log(channel, "Done.")
    except Exception as exc:
        logger.exception("Topic run for %r crashed", topic)
        await channel.send("error", {"msg": str(exc) or exc.__class__.__name__})
    finally:
        channel.close()
