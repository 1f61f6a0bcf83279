"""
Data Analyst Agent

Drives one conversation: sends history to the language model, streams its
text, runs the tools it asks for, feeds the results back, and repeats until
the model finishes or the iteration cap is hit.

EVENT ORDER (per model round):
1. text               - one event per streamed fragment, unbuffered
2. sql / insights / chart / permission_denied - blocks parsed from the round's text
3. per tool call: tool_call, sql (execute_sql only), tool_result, then
   data (successful query) or permission_denied (access denied)
A turn ends with exactly one done event, preceded by one error event when the
model call fails.

HISTORY:
A turn is all-or-nothing. If the model fails or the consumer cancels
mid-turn, history is rolled back to what it was before the user message.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import Any

from src.core.config import settings
from src.core.exceptions import LLMError
from src.core.logging import get_llm_logger, get_logger
from src.core.prompts import MSG_ANALYSIS_COMPLETE, MSG_QUERY_EXECUTED, build_system_prompt
from src.services.llm_providers import ChatMessage, LanguageModel, ModelTurn, TextDelta
from src.services.tools import TOOL_DEFINITIONS, QueryResultPayload, ToolDispatcher
from src.utils.response_blocks import PermissionDeniedBlock, parse_response

logger = get_logger(__name__)
llm_logger = get_llm_logger()

EVENT_TYPES = (
    "reasoning",
    "text",
    "sql",
    "tool_call",
    "tool_result",
    "data",
    "chart",
    "insights",
    "permission_denied",
    "error",
    "done",
)


@dataclass(frozen=True)
class StreamEvent:
    type: str
    content: str = ""
    data: Any = None

    def to_dict(self) -> dict[str, Any]:
        event = {"type": self.type, "content": self.content}
        if self.data is not None:
            event["data"] = self.data
        return event


@dataclass
class AnalystMessage:
    """Aggregate of one non-streamed turn. Block fields hold their wire dicts."""

    role: str = "assistant"
    content: str = ""
    reasoning: str | None = None
    sql: str | None = None
    data: list[dict[str, Any]] | None = None
    chart_suggestion: dict[str, Any] | None = None
    insights: dict[str, Any] | None = None
    permission_denied: dict[str, Any] | None = None
    error: str | None = None
    events: list[StreamEvent] = field(default_factory=list)


class DataAnalyst:
    """
    Tool-using analyst over one conversation history.

    Args:
        model: Language model to stream from
        dispatcher: Tool dispatcher bound to the conversation's permissions
        max_iterations: Cap on model rounds per turn (defaults to settings.agent_max_iterations)
        system_prompt: Override for the analyst system prompt
    """

    def __init__(
        self,
        model: LanguageModel,
        dispatcher: ToolDispatcher,
        max_iterations: int | None = None,
        system_prompt: str | None = None,
    ):
        self.model = model
        self.dispatcher = dispatcher
        self.max_iterations = max_iterations or settings.agent_max_iterations
        self.system_prompt = system_prompt or build_system_prompt(settings.query_max_rows)
        self.tools = TOOL_DEFINITIONS
        self._history: list[ChatMessage] = []

    @property
    def history(self) -> list[ChatMessage]:
        return list(self._history)

    def clear_history(self) -> None:
        self._history = []

    async def chat_stream(self, message: str) -> AsyncIterator[StreamEvent]:
        """
        Run one user turn, yielding StreamEvents as they happen.

        Closing the generator early cancels the turn: the model stream is
        closed, pending tool work is abandoned, history is rolled back and no
        done event is sent.
        """
        checkpoint = len(self._history)
        self._history.append(ChatMessage.user(message))

        completed = False
        failure: Exception | None = None
        try:
            async with aclosing(self._run_turn()) as events:
                async for event in events:
                    yield event
            completed = True
        except Exception as e:
            failure = e
        finally:
            if not completed:
                del self._history[checkpoint:]

        if failure is not None:
            llm_logger.error(f"Turn failed: {type(failure).__name__}: {failure}")
            yield StreamEvent(type="error", content=str(failure) or type(failure).__name__)

        yield StreamEvent(type="done", content=MSG_ANALYSIS_COMPLETE)

    async def _stream_model(self) -> AsyncIterator[StreamEvent | ModelTurn]:
        turn = None
        stream = self.model.stream(self.system_prompt, self.tools, self.history)
        async with aclosing(stream) as items:
            async for item in items:
                if isinstance(item, TextDelta):
                    if item.text:
                        yield StreamEvent(type="text", content=item.text)
                elif isinstance(item, ModelTurn):
                    turn = item

        if turn is None:
            raise LLMError("Model stream ended without a final response")
        yield turn

    async def _run_turn(self) -> AsyncIterator[StreamEvent]:
        iterations = 0
        while iterations < self.max_iterations:
            iterations += 1
            llm_logger.info(
                f"Iteration {iterations}/{self.max_iterations}: model={self.model.model}, "
                f"messages={len(self._history)}"
            )

            turn: ModelTurn | None = None
            async with aclosing(self._stream_model()) as items:
                async for item in items:
                    if isinstance(item, ModelTurn):
                        turn = item
                    else:
                        yield item

            llm_logger.info(
                f"Iteration {iterations}: stop_reason={turn.stop_reason}, "
                f"tools={[call.name for call in turn.tool_calls]}"
            )

            for event in self._block_events(turn):
                yield event

            self._history.append(ChatMessage.assistant(turn.text, turn.tool_calls))

            for call in turn.tool_calls:
                yield StreamEvent(type="tool_call", content=call.name, data=call.input)

                if call.name == "execute_sql" and isinstance(call.input.get("sql"), str):
                    yield StreamEvent(type="sql", content=call.input["sql"])

                outcome = await self.dispatcher.handle_tool_call(call.name, call.input)
                result_json = outcome.to_json()

                yield StreamEvent(type="tool_result", content=result_json)

                if outcome.success and isinstance(outcome.payload, QueryResultPayload):
                    result = outcome.payload.result
                    yield StreamEvent(
                        type="data",
                        content=MSG_QUERY_EXECUTED,
                        data={
                            "rows": result.rows,
                            "rowCount": result.row_count,
                            "columns": result.columns,
                            "executionTimeMs": result.execution_time_ms,
                        },
                    )
                elif outcome.is_access_denied:
                    block = PermissionDeniedBlock(
                        tables=outcome.blocked_tables,
                        message=(
                            "You don't have permission to access the following table(s): "
                            f"{', '.join(outcome.blocked_tables)}"
                        ),
                    )
                    yield StreamEvent(type="permission_denied", content=block.message, data=block.to_dict())

                self._history.append(ChatMessage.tool_result(call.id, result_json))

            if not turn.tool_calls or turn.stop_reason == "end_turn":
                return

        llm_logger.warning(f"Iteration cap reached ({self.max_iterations}); ending turn")

    @staticmethod
    def _block_events(turn: ModelTurn) -> list[StreamEvent]:
        parsed = parse_response(turn.text)
        events = []

        # execute_sql calls report their own SQL
        if parsed.sql and not any(call.name == "execute_sql" for call in turn.tool_calls):
            events.append(StreamEvent(type="sql", content=parsed.sql))
        if parsed.insights:
            events.append(
                StreamEvent(type="insights", content=parsed.insights.key_answer, data=parsed.insights.to_dict())
            )
        if parsed.chart:
            events.append(StreamEvent(type="chart", content=parsed.chart.type, data=parsed.chart.to_dict()))
        if parsed.permission_denied:
            events.append(
                StreamEvent(
                    type="permission_denied",
                    content=parsed.permission_denied.message,
                    data=parsed.permission_denied.to_dict(),
                )
            )
        return events

    async def chat(self, message: str) -> AnalystMessage:
        """Run one turn without streaming and return the aggregated result."""
        result = AnalystMessage()
        text_parts = []

        async for event in self.chat_stream(message):
            result.events.append(event)
            if event.type == "text":
                text_parts.append(event.content)
            elif event.type == "sql":
                result.sql = event.content
            elif event.type == "data":
                result.data = event.data.get("rows")
            elif event.type == "chart":
                result.chart_suggestion = event.data
            elif event.type == "insights":
                result.insights = event.data
            elif event.type == "permission_denied":
                result.permission_denied = event.data
            elif event.type == "error":
                result.error = event.content

        result.content = "".join(text_parts)
        result.reasoning = parse_response(result.content).reasoning
        return result
