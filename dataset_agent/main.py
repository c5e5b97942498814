import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Dict, Optional

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.responses import PlainTextResponse, Response, StreamingResponse

from . import config
from .charts import plan_charts
from .collaborators import Services, build_services
from .embedding import clamp_top_k, vector_search
from .models import (
    DatasetRequest,
    ExportRequest,
    HealthResponse,
    ReplanRequest,
    ReplanResponse,
    TopicRequest,
    VectorSearchItem,
    VectorSearchMultiRequest,
    VectorSearchMultiResponse,
    VectorSearchRequest,
    VectorSearchResult,
)
from .pipeline import EventChannel, ingest_dataset, run_topic, stream_events
from .rules import DEFAULT_SESSION
from .tokenizers import to_csv

logging.basicConfig(level=config.LOG_LEVEL)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="dataset-agent",
    description="Normalize arbitrary data sources into tables, with charts and vector search",
    version="0.1.0",
)

SSE_HEADERS = {
    "cache-control": "no-cache",
    "x-accel-buffering": "no",
    "connection": "keep-alive",
}

USAGE = (
    'POST /dataset_stream {"url":"..."} or {"text":"<json|csv>","name":"..","sys":"..","embed":true}\n'
    'POST /vector_search {"q":"...","k":5}\n'
    'POST /vector_search_multi {"queries":["...","..."],"k":5}\n'
    'POST /replan_charts {"sys":"Focus on X vs Y"}\n'
    'POST /export_csv {"columns":[...],"rows":[...]}\n'
    'POST /run_stream {"topic":"..."}\n'
)


@dataclass
class _SessionLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


_services: Optional[Services] = None
# Ingestions against one session run one at a time so snapshots are never lost.
# An entry lives only while some request holds or awaits it.
_session_locks: Dict[str, _SessionLock] = {}


def get_services() -> Services:
    global _services
    if _services is None:
        _services = build_services()
    return _services


@asynccontextmanager
async def session_lock(session: str):
    entry = _session_locks.get(session)
    if entry is None:
        entry = _session_locks[session] = _SessionLock()
    entry.users += 1
    try:
        async with entry.lock:
            yield
    finally:
        entry.users -= 1
        if not entry.users:
            del _session_locks[session]


async def _ingest_for_session(session: str, payload: DatasetRequest, services: Services, channel: EventChannel):
    async with session_lock(session):
        state = await ingest_dataset(payload, services, channel)
        if state is not None:
            services.store.put(session, state)
            logger.info("DATASET: session=%s name=%s rows=%s", session, state.snapshot.name, len(state.snapshot.sample))


@app.get("/health", response_model=HealthResponse)
def health():
    return {"ok": True}


@app.get("/", response_class=PlainTextResponse)
def usage():
    return USAGE


@app.post("/dataset_stream")
async def dataset_stream(
    payload: DatasetRequest,
    name: str = Query(DEFAULT_SESSION),
    services: Services = Depends(get_services),
):
    if not payload.url and not payload.text:
        raise HTTPException(status_code=400, detail="Provide { url } or { text }")

    channel = EventChannel()
    events = stream_events(channel, _ingest_for_session(name, payload, services, channel))
    return StreamingResponse(events, media_type="text/event-stream; charset=utf-8", headers=SSE_HEADERS)


@app.post("/run_stream")
async def topic_stream(payload: TopicRequest, services: Services = Depends(get_services)):
    channel = EventChannel()
    events = stream_events(channel, run_topic(payload.topic, services, channel))
    return StreamingResponse(events, media_type="text/event-stream; charset=utf-8", headers=SSE_HEADERS)


@app.post("/vector_search", response_model=VectorSearchResult, response_model_exclude_none=True)
async def search(payload: VectorSearchRequest, services: Services = Depends(get_services)):
    if not payload.q.strip():
        raise HTTPException(status_code=400, detail="Missing { q }")
    return await vector_search(services.embedder, services.vector_index, payload.q, payload.k)


@app.post("/vector_search_multi", response_model=VectorSearchMultiResponse, response_model_exclude_none=True)
async def search_multi(payload: VectorSearchMultiRequest, services: Services = Depends(get_services)):
    if not payload.queries:
        raise HTTPException(status_code=400, detail="Missing { queries[] }")
    k = clamp_top_k(payload.k)
    results = []
    for q in payload.queries:
        result = await vector_search(services.embedder, services.vector_index, q, k)
        results.append(VectorSearchItem(q=q, result=result))
    return VectorSearchMultiResponse(results=results)


@app.post("/replan_charts", response_model=ReplanResponse, response_model_exclude_none=True)
async def replan_charts(
    payload: ReplanRequest,
    name: str = Query(DEFAULT_SESSION),
    services: Services = Depends(get_services),
):
    state = services.store.get(name)
    if state is None or state.snapshot is None:
        raise HTTPException(status_code=400, detail="No dataset in memory yet.")

    plan = await plan_charts(services.chat, state.snapshot.columns, state.snapshot.sample, payload.sys)
    # An ingestion may have stored a newer snapshot while the model was answering.
    current = services.store.get(name) or state
    services.store.put(name, current.model_copy(update={"system_instruction": payload.sys}))
    return ReplanResponse(specs=plan.specs)


@app.post("/export_csv")
def export_csv(payload: ExportRequest):
    csv_text = to_csv(payload.columns, payload.rows)
    filename = f"data-{int(time.time() * 1000)}.csv"
    return Response(
        content=csv_text,
        media_type="text/csv",
        headers={"content-disposition": f'attachment; filename="{filename}"'},
    )
