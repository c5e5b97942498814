"""
Chart planning.

The chat model proposes up to three chart specs for a table. Its reply is
untrusted: anything that does not parse into valid specs falls back to a
deterministic default chart derived from the data itself.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, List, Optional

from pydantic import ValidationError

from .collaborators import ChatModel
from .models import ChartSpec
from .normalize import is_empty
from .rules import MAX_CHART_SPECS, NUMERIC_MIN_ROWS, NUMERIC_RATIO, NUMERIC_SCAN_ROWS, PLANNER_PREVIEW
from .schema import Row

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = (
    "You're a data viz assistant. Propose 1-3 concise chart specs (JSON only) to summarize the data.\n"
    'Allowed types: "bar","line","pie". Use fields from \'columns\'. If numeric aggregation is useful, '
    'set "agg" to "count","sum", or "mean".\n'
    'Optionally provide "groupBy" and a short "note" insight. Return ONLY a JSON array.'
)

_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)
_DECIMAL_RE = re.compile(r"^-?\d+(\.\d+)?$")


@dataclass
class ChartPlan:
    specs: List[ChartSpec] = field(default_factory=list)
    fallback: bool = False


def system_prompt(instruction: Optional[str]) -> str:
    if instruction and instruction.strip():
        return f"{instruction}\n\nYou must output ONLY a JSON array of chart specs."
    return DEFAULT_SYSTEM_PROMPT


def extract_json(text: str, expected: type = list) -> Any:
    """
    Pull a JSON value of type ``expected`` out of a model reply.

    Accepts the bare value, the value inside a markdown code fence, or the
    value surrounded by prose. Raises ValueError when none can be found.
    """
    opener, closer = ("[", "]") if expected is list else ("{", "}")
    candidates = [text.strip()]
    candidates += [m.strip() for m in _FENCE_RE.findall(text)]
    start, end = text.find(opener), text.rfind(closer)
    if 0 <= start < end:
        candidates.append(text[start:end + 1])

    for candidate in candidates:
        try:
            value = json.loads(candidate)
        except ValueError:
            continue
        if isinstance(value, expected):
            return value
    raise ValueError(f"No JSON {expected.__name__} in model reply")


def parse_chart_specs(text: str) -> List[ChartSpec]:
    specs: List[ChartSpec] = []
    for item in extract_json(text, list):
        if not isinstance(item, dict):
            continue
        try:
            specs.append(ChartSpec.model_validate(item))
        except ValidationError as exc:
            logger.debug("Dropping invalid chart spec %r: %s", item, exc)
            continue
        if len(specs) >= MAX_CHART_SPECS:
            break
    return specs


def is_numeric_value(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float)):
        return True
    return bool(_DECIMAL_RE.match(str(value)))


def numeric_columns(columns: List[str], rows: List[Row]) -> List[str]:
    """Columns whose non-empty values are mostly numbers, over a bounded scan."""
    nums: List[str] = []
    scan = rows[:NUMERIC_SCAN_ROWS]
    for c in columns:
        ok = total = 0
        for r in scan:
            v = r.get(c)
            if is_empty(v):
                continue
            total += 1
            if is_numeric_value(v):
                ok += 1
        if total >= NUMERIC_MIN_ROWS and ok / total >= NUMERIC_RATIO:
            nums.append(c)
    return nums


def fallback_specs(columns: List[str], rows: List[Row]) -> List[ChartSpec]:
    if not columns:
        return []
    x = columns[0]
    measures = [c for c in numeric_columns(columns, rows) if c != x]
    if measures:
        y = measures[0]
        return [ChartSpec(title=f"Mean {y} by {x}", type="bar", x=x, y=y, agg="mean")]
    return [ChartSpec(title=f"Count by {x}", type="bar", x=x, agg="count")]


async def plan_charts(
    chat: ChatModel,
    columns: List[str],
    sample: List[Row],
    instruction: Optional[str] = None,
) -> ChartPlan:
    prompt = json.dumps({"columns": columns, "sample": sample[:PLANNER_PREVIEW]}, indent=2, default=str)
    try:
        reply = await chat.complete(system_prompt(instruction), prompt, temperature=0.2)
        specs = parse_chart_specs(reply)
    except Exception as exc:
        logger.warning("Chart planning failed, using default chart: %s", exc)
        specs = []

    if specs:
        return ChartPlan(specs=specs)
    return ChartPlan(specs=fallback_specs(columns, sample), fallback=True)
