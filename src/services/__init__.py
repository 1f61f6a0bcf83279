"""
Services Package

The analyst agent and the guarded data access it runs through.
"""

from .analyst import AnalystMessage, DataAnalyst, StreamEvent
from .catalog import CatalogReader, ColumnInfo, TableInfo
from .llm_providers import ChatMessage, LanguageModel, ModelTurn, TextDelta, ToolCall, create_language_model
from .query_executor import GuardedQueryExecutor, QueryResult
from .sessions import Session, SessionStore
from .tools import TOOL_DEFINITIONS, ToolDispatcher, ToolOutcome

__all__ = [
    "AnalystMessage",
    "DataAnalyst",
    "StreamEvent",
    "CatalogReader",
    "ColumnInfo",
    "TableInfo",
    "ChatMessage",
    "LanguageModel",
    "ModelTurn",
    "TextDelta",
    "ToolCall",
    "create_language_model",
    "GuardedQueryExecutor",
    "QueryResult",
    "Session",
    "SessionStore",
    "TOOL_DEFINITIONS",
    "ToolDispatcher",
    "ToolOutcome",
]
