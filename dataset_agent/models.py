from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional, Union
from pydantic import BaseModel, Field


class Table(BaseModel):
    name: str
    url: str
    columns: List[str] = Field(default_factory=list)
    rows: List[Dict[str, Any]] = Field(default_factory=list)


class SchemaSnapshot(BaseModel):
    """Summary of the last successful ingestion, kept for chart replanning."""

    name: str
    url: str
    columns: List[str] = Field(default_factory=list)
    sample: List[Dict[str, Any]] = Field(default_factory=list)


class SessionState(BaseModel):
    snapshot: Optional[SchemaSnapshot] = None
    system_instruction: Optional[str] = None


class ChartFilter(BaseModel):
    field: str
    op: Literal["==", "!="]
    value: Union[str, float, int]


class ChartSpec(BaseModel):
    title: str = ""
    type: Literal["bar", "line", "pie"]
    x: str
    y: Optional[str] = None
    agg: Optional[Literal["count", "sum", "mean"]] = None
    groupBy: Optional[str] = None
    filter: Optional[ChartFilter] = None
    note: Optional[str] = None


class Target(BaseModel):
    url: str
    format: Optional[Literal["json", "rss"]] = None
    name: Optional[str] = None


class TopicPlan(BaseModel):
    topic: str
    columns: List[str] = Field(default_factory=lambda: ["title", "url"])
    targets: List[Target] = Field(default_factory=list)


class DatasetRequest(BaseModel):
    url: Optional[str] = None
    text: Optional[str] = None
    name: Optional[str] = None
    sys: Optional[str] = None
    embed: bool = False


class TopicRequest(BaseModel):
    topic: str = Field(..., min_length=1)


class VectorSearchRequest(BaseModel):
    q: str = ""
    k: int = 5


class VectorSearchMultiRequest(BaseModel):
    queries: List[str] = Field(default_factory=list)
    k: int = 5


class VectorMatch(BaseModel):
    id: str
    score: float
    metadata: Dict[str, Any] = Field(default_factory=dict)


class VectorSearchResult(BaseModel):
    matches: Optional[List[VectorMatch]] = None
    warn: Optional[str] = None
    debug: Optional[str] = None


class VectorSearchItem(BaseModel):
    q: str
    result: VectorSearchResult


class VectorSearchMultiResponse(BaseModel):
    results: List[VectorSearchItem] = Field(default_factory=list)


class ReplanRequest(BaseModel):
    sys: Optional[str] = None


class ReplanResponse(BaseModel):
    specs: List[ChartSpec] = Field(default_factory=list)


class ExportRequest(BaseModel):
    columns: List[str]
    rows: List[Dict[str, Any]]


class HealthResponse(BaseModel):
    ok: bool = True
