"""
Response Block Parser

Extracts structured blocks the analyst model embeds in its text as fenced
code blocks:

    ```sql                 -> the SQL being discussed
    ```insights            -> {"keyAnswer": ..., "metrics": [...]}
    ```permission_denied   -> {"tables": [...], "message": ..., "suggestion": ...}
    ```json                -> chart suggestion {"chartType": ..., "xAxis": ...}

The convention is only enforced by the model's instructions, so parsing is
lenient: malformed JSON or missing required fields yields no block.
"""
from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any

from src.core.logging import get_logger

logger = get_logger(__name__)

EMPHASIS_VALUES = ("primary", "positive", "negative", "secondary")
CHART_TYPES = ("line", "bar", "pie", "scatter", "table")
DEFAULT_PERMISSION_SUGGESTION = "Please update your permissions in Security Settings."


@dataclass(frozen=True)
class InsightsMetric:
    label: str
    value: str
    emphasis: str = "secondary"

    def to_dict(self) -> dict[str, str]:
        return {"label": self.label, "value": self.value, "emphasis": self.emphasis}


@dataclass(frozen=True)
class InsightsBlock:
    key_answer: str
    metrics: list[InsightsMetric] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"keyAnswer": self.key_answer, "metrics": [m.to_dict() for m in self.metrics]}


@dataclass(frozen=True)
class PermissionDeniedBlock:
    tables: list[str]
    message: str
    suggestion: str = DEFAULT_PERMISSION_SUGGESTION

    def to_dict(self) -> dict[str, Any]:
        return {"tables": list(self.tables), "message": self.message, "suggestion": self.suggestion}


@dataclass(frozen=True)
class ChartSuggestion:
    type: str
    x_axis: str | None = None
    y_axis: str | None = None
    title: str | None = None
    description: str | None = None
    reasoning: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "xAxis": self.x_axis,
            "yAxis": self.y_axis,
            "title": self.title,
            "description": self.description,
            "reasoning": self.reasoning,
        }


@dataclass
class ParsedResponse:
    reasoning: str | None = None
    sql: str | None = None
    insights: InsightsBlock | None = None
    permission_denied: PermissionDeniedBlock | None = None
    chart: ChartSuggestion | None = None


def _fenced(tag: str) -> re.Pattern:
    return re.compile(r"```" + tag + r"[ \t]*\r?\n(.*?)```", re.DOTALL)


SQL_BLOCK = _fenced("sql")
INSIGHTS_BLOCK = _fenced("insights")
PERMISSION_DENIED_BLOCK = _fenced("permission_denied")
CHART_BLOCK = _fenced("json")
REASONING_PREFIX = re.compile(r"^(.*?)(?:```|$)", re.DOTALL)


def _load_json_block(pattern: re.Pattern, text: str) -> dict | None:
    match = pattern.search(text)
    if not match:
        return None
    try:
        parsed = json.loads(match.group(1))
    except json.JSONDecodeError:
        logger.debug("Ignoring malformed fenced JSON block")
        return None
    return parsed if isinstance(parsed, dict) else None


def parse_insights(text: str) -> InsightsBlock | None:
    parsed = _load_json_block(INSIGHTS_BLOCK, text)
    if not parsed:
        return None

    key_answer = parsed.get("keyAnswer")
    metrics = parsed.get("metrics")
    if not key_answer or not isinstance(metrics, list):
        return None

    result = []
    for metric in metrics:
        if not isinstance(metric, dict) or "label" not in metric or "value" not in metric:
            continue
        emphasis = metric.get("emphasis") or "secondary"
        if emphasis not in EMPHASIS_VALUES:
            emphasis = "secondary"
        result.append(InsightsMetric(label=str(metric["label"]), value=str(metric["value"]), emphasis=emphasis))

    return InsightsBlock(key_answer=str(key_answer), metrics=result)


def parse_permission_denied(text: str) -> PermissionDeniedBlock | None:
    parsed = _load_json_block(PERMISSION_DENIED_BLOCK, text)
    if not parsed:
        return None

    tables = parsed.get("tables")
    message = parsed.get("message")
    if not tables or not message or not isinstance(tables, list):
        return None

    return PermissionDeniedBlock(
        tables=[str(t) for t in tables],
        message=str(message),
        suggestion=str(parsed.get("suggestion") or DEFAULT_PERMISSION_SUGGESTION),
    )


def parse_chart(text: str) -> ChartSuggestion | None:
    parsed = _load_json_block(CHART_BLOCK, text)
    if not parsed:
        return None

    chart_type = parsed.get("chartType") or parsed.get("type")
    if chart_type not in CHART_TYPES:
        return None

    return ChartSuggestion(
        type=chart_type,
        x_axis=parsed.get("xAxis"),
        y_axis=parsed.get("yAxis"),
        title=parsed.get("title"),
        description=parsed.get("description"),
        reasoning=parsed.get("reasoning"),
    )


def parse_response(text: str) -> ParsedResponse:
    """
    Parse every known block out of one model turn's text.

    Args:
        text: Accumulated text of a single model response

    Returns:
        ParsedResponse with a field set for each block found
    """
    result = ParsedResponse()

    sql_match = SQL_BLOCK.search(text)
    if sql_match and sql_match.group(1).strip():
        result.sql = sql_match.group(1).strip()

    result.insights = parse_insights(text)
    result.permission_denied = parse_permission_denied(text)
    result.chart = parse_chart(text)

    reasoning_match = REASONING_PREFIX.match(text)
    if reasoning_match and reasoning_match.group(1).strip():
        result.reasoning = reasoning_match.group(1).strip()

    return result
