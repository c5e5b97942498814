import asyncio
from typing import Any, Callable, Dict, List, Optional, Union

import httpx
import pytest

from dataset_agent.collaborators import (
    FetchResult,
    InMemorySessionStore,
    InMemoryVectorIndex,
    Services,
)
from dataset_agent.errors import FetchError
from dataset_agent.pipeline import EventChannel


class FakeFetcher:
    def __init__(self, pages: Optional[Dict[str, FetchResult]] = None):
        self.pages = pages or {}
        self.calls: List[str] = []

    async def fetch(self, url: str) -> FetchResult:
        self.calls.append(url)
        if url not in self.pages:
            raise FetchError(f"Fetch failed: no route to {url}")
        return self.pages[url]


class FakeChat:
    """Returns canned replies in order; an Exception instance is raised instead."""

    def __init__(self, *replies: Union[str, Exception]):
        self.replies = list(replies)
        self.prompts: List[Dict[str, Any]] = []

    async def complete(self, system: str, prompt: str, temperature: float = 0.2) -> str:
        self.prompts.append({"system": system, "prompt": prompt, "temperature": temperature})
        if not self.replies:
            raise ValueError("Empty LLM response.")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


class FakeEmbedder:
    def __init__(self, dims: int = 768, fail: Optional[Callable[[str], bool]] = None):
        self.dims = dims
        self.fail = fail
        self.texts: List[str] = []

    async def embed(self, text: str) -> Any:
        self.texts.append(text)
        if self.fail and self.fail(text):
            raise httpx.ConnectError("embedding backend down")
        seed = (sum(map(ord, text)) % 97) + 1
        return {"embedding": [float(seed + i % 7) for i in range(self.dims)]}


def make_services(
    pages: Optional[Dict[str, FetchResult]] = None,
    chat: Optional[FakeChat] = None,
    embedder: Optional[FakeEmbedder] = None,
    with_index: bool = True,
) -> Services:
    return Services(
        fetcher=FakeFetcher(pages),
        chat=chat or FakeChat(),
        embedder=embedder or FakeEmbedder(),
        store=InMemorySessionStore(),
        vector_index=InMemoryVectorIndex() if with_index else None,
    )


def collect(producer: Callable[[EventChannel], Any]):
    """Run a producer against a fresh channel; return (result, [(event, data), ...])."""

    async def run():
        channel = EventChannel()
        result = await producer(channel)
        assert channel.closed
        events = [(ev.event, ev.data) async for ev in channel]
        return result, events

    return asyncio.run(run())


@pytest.fixture
def services():
    return make_services()
