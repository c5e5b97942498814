"""
External collaborators consumed by the pipeline.

Each one is a narrow protocol with a default implementation:
remote fetch over httpx, chat completion and embeddings against an
Ollama-compatible API, an in-process vector index and an in-process
session store. Tests swap any of them for fakes.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

import httpx

from . import config
from .errors import FetchError
from .models import SessionState

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Remote fetch
# ---------------------------------------------------------------------------

@dataclass
class FetchResult:
    status: int
    reason: str = ""
    content_type: str = ""
    body: bytes = b""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


class Fetcher(Protocol):
    async def fetch(self, url: str) -> FetchResult: ...


class HttpFetcher:
    def __init__(self, timeout: float = config.FETCH_TIMEOUT_SECONDS, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.timeout = timeout
        self.transport = transport

    async def fetch(self, url: str) -> FetchResult:
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                follow_redirects=True,
                headers={"User-Agent": config.FETCH_USER_AGENT},
                transport=self.transport,
            ) as client:
                resp = await client.get(url)
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            raise FetchError(f"Fetch failed: {exc}") from exc

        return FetchResult(
            status=resp.status_code,
            reason=resp.reason_phrase,
            content_type=resp.headers.get("content-type", ""),
            body=resp.content,
        )


# ---------------------------------------------------------------------------
# LLM: chat completion + embeddings
# ---------------------------------------------------------------------------


class ChatModel(Protocol):
    async def complete(self, system: str, prompt: str, temperature: float = 0.2) -> str: ...


class Embedder(Protocol):
    async def embed(self, text: str) -> Any: ...


class OllamaClient:
    """Chat and embedding calls against an Ollama-compatible HTTP API."""

    def __init__(
        self,
        base_url: str = config.LLM_API_URL,
        chat_model: str = config.CHAT_MODEL,
        embed_model: str = config.EMBED_MODEL,
        timeout: float = config.LLM_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.chat_model = chat_model
        self.embed_model = embed_model
        self.timeout = timeout
        self.transport = transport

    async def _post(self, path: str, body: Dict[str, Any]) -> Any:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            resp = await client.post(f"{self.base_url}{path}", json=body)
            resp.raise_for_status()
            return resp.json()

    async def complete(self, system: str, prompt: str, temperature: float = 0.2) -> str:
        payload = await self._post(
            "/api/generate",
            {
                "model": self.chat_model,
                "system": system,
                "prompt": prompt,
                "stream": False,
                "options": {"temperature": temperature},
            },
        )
        response_text = str((payload or {}).get("response") or "").strip()
        if not response_text:
            raise ValueError("Empty LLM response.")
        return response_text

    async def embed(self, text: str) -> Any:
        return await self._post("/api/embeddings", {"model": self.embed_model, "prompt": text})


# ---------------------------------------------------------------------------
# Vector index
# ---------------------------------------------------------------------------

@dataclass
class VectorPoint:
    id: str
    values: List[float]
    metadata: Dict[str, Any] = field(default_factory=dict)


class VectorIndex(Protocol):
    async def upsert(self, points: List[VectorPoint]) -> None: ...

    async def query(self, vector: List[float], top_k: int) -> List[Dict[str, Any]]: ...


def cosine(a: List[float], b: List[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b))
    na = math.sqrt(sum(x * x for x in a))
    nb = math.sqrt(sum(y * y for y in b))
    if not na or not nb:
        return 0.0
    return dot / (na * nb)


class InMemoryVectorIndex:
    def __init__(self):
        self.points: Dict[str, VectorPoint] = {}

    async def upsert(self, points: List[VectorPoint]) -> None:
        for p in points:
            self.points[p.id] = p

    async def query(self, vector: List[float], top_k: int) -> List[Dict[str, Any]]:
        scored = [(cosine(vector, p.values), p) for p in self.points.values()]
        scored.sort(key=lambda sp: sp[0], reverse=True)
        return [{"id": p.id, "score": score, "metadata": p.metadata} for score, p in scored[:top_k]]


# ---------------------------------------------------------------------------
# Session store
# ---------------------------------------------------------------------------

class SessionStore(Protocol):
    def get(self, session: str) -> Optional[SessionState]: ...

    def put(self, session: str, state: SessionState) -> None: ...


class InMemorySessionStore:
    """One state slot per session; a put replaces the slot wholesale."""

    def __init__(self):
        self._slots: Dict[str, SessionState] = {}

    def get(self, session: str) -> Optional[SessionState]:
        return self._slots.get(session)

    def put(self, session: str, state: SessionState) -> None:
        self._slots[session] = state


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------

@dataclass
class Services:
    fetcher: Fetcher
    chat: ChatModel
    embedder: Embedder
    store: SessionStore
    vector_index: Optional[VectorIndex] = None


def build_services() -> Services:
    llm = OllamaClient()
    vector_index: Optional[VectorIndex] = None
    if config.VECTOR_INDEX_BACKEND == "memory":
        vector_index = InMemoryVectorIndex()
    elif config.VECTOR_INDEX_BACKEND not in ("", "none"):
        logger.warning("Unknown VECTOR_INDEX_BACKEND %r; embeddings disabled", config.VECTOR_INDEX_BACKEND)
    return Services(
        fetcher=HttpFetcher(),
        chat=llm,
        embedder=llm,
        store=InMemorySessionStore(),
        vector_index=vector_index,
    )
