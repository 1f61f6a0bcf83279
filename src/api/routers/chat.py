"""
QueryLens Chat API Router

Conversational analyst endpoints. Each conversation keeps its own history
and is bound to the permissions config it was started with.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncGenerator
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Path, status
from pydantic import BaseModel, ConfigDict, Field, StringConstraints
from sse_starlette.sse import EventSourceResponse

from src.api.dependencies import get_language_model, get_permission_store, get_query_runner, get_session_store
from src.core.logging import get_logger
from src.core.permissions import PermissionsConfig, PermissionStore, narrow
from src.database.runner import QueryRunner
from src.services.analyst import DataAnalyst, StreamEvent
from src.services.llm_providers import LanguageModel
from src.services.sessions import Session, SessionStore
from src.services.tools import ToolDispatcher

logger = get_logger(__name__)


router = APIRouter()

CONVERSATION_ID_PATTERN = r"^[A-Za-z0-9_-]+$"
DEFAULT_CONVERSATION_ID = "default"


# ============================================================================
# Request/Response Models
# ============================================================================


class ChatRequest(BaseModel):
    """Request model for one analyst turn"""

    model_config = ConfigDict(populate_by_name=True)

    message: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=10000)] = Field(
        ..., description="Question or instruction for the analyst"
    )
    conversation_id: str = Field(
        default=DEFAULT_CONVERSATION_ID,
        alias="conversationId",
        min_length=1,
        max_length=100,
        pattern=CONVERSATION_ID_PATTERN,
        description="Conversation identifier (letters, digits, dashes, underscores)",
    )
    permissions: PermissionsConfig | None = Field(
        default=None,
        description="Extra restrictions for this conversation; can only narrow the server config",
    )


class ChatResponse(BaseModel):
    """Aggregated result of a non-streamed turn"""

    content: str
    reasoning: str | None = None
    sql: str | None = None
    data: list[dict[str, Any]] | None = None
    chart_suggestion: dict[str, Any] | None = None
    insights: dict[str, Any] | None = None
    permission_denied: dict[str, Any] | None = None
    error: str | None = None


def format_sse_event(event: StreamEvent) -> dict[str, str]:
    """Render a StreamEvent as an sse-starlette event dict."""
    return {"event": event.type, "data": json.dumps(event.to_dict(), default=str)}


def _open_session(
    request: ChatRequest,
    store: PermissionStore,
    sessions: SessionStore,
    runner: QueryRunner,
    model: LanguageModel,
) -> Session:
    permissions = store.get()
    if request.permissions is not None:
        permissions = narrow(permissions, request.permissions)

    def build_analyst(config: PermissionsConfig) -> DataAnalyst:
        return DataAnalyst(model=model, dispatcher=ToolDispatcher.for_config(runner, config))

    return sessions.get_or_create(request.conversation_id, permissions, build_analyst)


# ============================================================================
# Endpoints
# ============================================================================


@router.post(
    "/stream",
    status_code=status.HTTP_200_OK,
    summary="Stream an analyst turn",
    description="Run one analyst turn and stream its events via Server-Sent Events",
)
async def chat_stream(
    request: ChatRequest,
    store: PermissionStore = Depends(get_permission_store),
    sessions: SessionStore = Depends(get_session_store),
    runner: QueryRunner = Depends(get_query_runner),
    model: LanguageModel = Depends(get_language_model),
):
    """
    Stream one analyst turn via SSE.

    Events (event name = StreamEvent type, data = JSON {type, content, data?}):
    - text: Model output fragment
    - sql: Query being run or discussed
    - tool_call / tool_result: Tool invocation and its JSON envelope
    - data: Query result rows
    - chart / insights / permission_denied: Structured blocks
    - error: Turn failed
    - done: Turn complete
    """
    session = _open_session(request, store, sessions, runner, model)
    logger.info(f"Chat turn: conversation={request.conversation_id}, message_length={len(request.message)}")

    async def event_generator() -> AsyncGenerator[dict, None]:
        async with session.turn_lock:
            try:
                async for event in session.analyst.chat_stream(request.message):
                    yield format_sse_event(event)
            except asyncio.CancelledError:
                logger.info(f"Client disconnected; turn cancelled for conversation {request.conversation_id}")
                raise

    return EventSourceResponse(event_generator())


@router.post(
    "/",
    response_model=ChatResponse,
    summary="Run an analyst turn",
    description="Run one analyst turn and return the aggregated result",
)
async def chat(
    request: ChatRequest,
    store: PermissionStore = Depends(get_permission_store),
    sessions: SessionStore = Depends(get_session_store),
    runner: QueryRunner = Depends(get_query_runner),
    model: LanguageModel = Depends(get_language_model),
) -> ChatResponse:
    session = _open_session(request, store, sessions, runner, model)

    async with session.turn_lock:
        result = await session.analyst.chat(request.message)

    return ChatResponse(
        content=result.content,
        reasoning=result.reasoning,
        sql=result.sql,
        data=result.data,
        chart_suggestion=result.chart_suggestion,
        insights=result.insights,
        permission_denied=result.permission_denied,
        error=result.error,
    )


@router.delete(
    "/{conversation_id}",
    summary="Clear a conversation",
)
async def clear_conversation(
    conversation_id: str = Path(..., min_length=1, max_length=100, pattern=CONVERSATION_ID_PATTERN),
    sessions: SessionStore = Depends(get_session_store),
) -> dict[str, Any]:
    """Forget a conversation's history. Clearing an unknown conversation is not an error."""
    session = sessions.get(conversation_id)
    if session is not None:
        session.analyst.clear_history()
    cleared = sessions.invalidate(conversation_id)
    logger.info(f"Conversation {conversation_id} cleared (existed={cleared})")
    return {"success": True, "cleared": cleared}
