"""
LLM Provider Configuration

Provider-neutral streaming interface for the analyst loop, with adapters for
the Anthropic Messages API and OpenAI-compatible chat completions (OpenAI and
Azure OpenAI through its OpenAI-compatible endpoint).

ARCHITECTURE:
- Conversation history is kept as ChatMessage values, never as SDK objects
- Each adapter converts history and tool definitions to its wire format
- stream() yields TextDelta fragments as they arrive, then exactly one ModelTurn

STOP REASONS (normalized):
- end_turn:   model finished on its own
- tool_use:   model is waiting for tool results
- max_tokens: output budget exhausted
- other:      anything else the provider reports
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

from src.core.config import Settings, settings
from src.core.exceptions import ConfigurationError, LLMError
from src.core.logging import get_logger

if TYPE_CHECKING:
    from anthropic import AsyncAnthropic
    from openai import AsyncOpenAI

logger = get_logger(__name__)


# =============================================================================
# History types
# =============================================================================


@dataclass(frozen=True)
class ToolCall:
    id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ChatMessage:
    """
    One entry of conversation history.

    role is "user", "assistant" or "tool". Assistant messages may carry
    tool_calls; tool messages carry the tool_call_id they answer.
    """

    role: str
    content: str = ""
    tool_calls: tuple[ToolCall, ...] = ()
    tool_call_id: str | None = None

    @classmethod
    def user(cls, content: str) -> ChatMessage:
        return cls(role="user", content=content)

    @classmethod
    def assistant(cls, content: str, tool_calls: Sequence[ToolCall] = ()) -> ChatMessage:
        return cls(role="assistant", content=content, tool_calls=tuple(tool_calls))

    @classmethod
    def tool_result(cls, tool_call_id: str, content: str) -> ChatMessage:
        return cls(role="tool", content=content, tool_call_id=tool_call_id)


@dataclass(frozen=True)
class TextDelta:
    text: str


@dataclass(frozen=True)
class ModelTurn:
    text: str
    tool_calls: tuple[ToolCall, ...] = ()
    stop_reason: str = "end_turn"


STOP_REASONS = ("end_turn", "tool_use", "max_tokens", "other")

_ANTHROPIC_STOP_REASONS = {
    "end_turn": "end_turn",
    "stop_sequence": "end_turn",
    "tool_use": "tool_use",
    "max_tokens": "max_tokens",
}

_OPENAI_FINISH_REASONS = {
    "stop": "end_turn",
    "tool_calls": "tool_use",
    "function_call": "tool_use",
    "length": "max_tokens",
}


class LanguageModel(Protocol):
    model: str

    def stream(
        self, system: str, tools: list[dict[str, Any]], messages: Sequence[ChatMessage]
    ) -> AsyncIterator[TextDelta | ModelTurn]:
        """Stream one model response: TextDelta fragments, then a final ModelTurn."""
        ...


# =============================================================================
# Error Classification
# =============================================================================

_API_KEY_VARS = {
    "anthropic": "ANTHROPIC_API_KEY",
    "openai": "OPENAI_API_KEY",
    "azure_openai": "AZURE_OPENAI_API_KEY",
}


def classify_llm_error(exc: Exception, provider: str, model: str) -> str:
    """Turn raw provider exceptions into user-friendly error messages."""
    err = str(exc).lower()
    exc_type = type(exc).__name__
    label = provider.upper()

    # Authentication / API key errors
    if exc_type in ("AuthenticationError", "PermissionDeniedError") or "invalid api key" in err or "401" in err:
        key_var = _API_KEY_VARS.get(provider, f"{label}_API_KEY")
        return f"LLM authentication failed ({label}). Check that {key_var} is valid."

    # Connection / network errors
    if exc_type in ("APIConnectionError", "ConnectError", "ConnectionError") or "connection error" in err:
        return f"Cannot connect to {label} API. Check your network connection. (Model: {model})"

    # Rate limiting
    if exc_type == "RateLimitError" or "rate limit" in err or "429" in err or "quota" in err:
        return f"LLM rate limit exceeded ({label}). Wait a moment and try again."

    # Model not found
    if exc_type == "NotFoundError" or ("model" in err and ("not found" in err or "does not exist" in err)):
        return f"Model '{model}' not found on {label}. Check LLM_MODEL."

    if exc_type == "APITimeoutError" or "timeout" in err or "timed out" in err:
        return f"LLM request timed out ({label}). The model may be overloaded, try again in a moment."

    return f"LLM error ({label}, {model}): {exc}"


# =============================================================================
# Anthropic
# =============================================================================


class AnthropicLanguageModel:
    """Claude via the async Messages streaming API."""

    def __init__(
        self,
        api_key: str,
        model: str,
        max_tokens: int = 4096,
        temperature: float | None = None,
        timeout: float = 120.0,
    ):
        self.api_key = api_key
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.timeout = timeout
        self._client: AsyncAnthropic | None = None

    @property
    def client(self) -> AsyncAnthropic:
        if self._client is None:
            from anthropic import AsyncAnthropic

            self._client = AsyncAnthropic(api_key=self.api_key, timeout=self.timeout)
        return self._client

    @staticmethod
    def to_wire_messages(messages: Sequence[ChatMessage]) -> list[dict[str, Any]]:
        """
        Convert history to Anthropic message dicts.

        Consecutive tool results are merged into a single user message, as
        the API requires all results for one assistant turn together.
        """
        wire: list[dict[str, Any]] = []
        for message in messages:
            if message.role == "tool":
                block = {
                    "type": "tool_result",
                    "tool_use_id": message.tool_call_id,
                    "content": message.content,
                }
                previous = wire[-1] if wire else None
                if (
                    previous
                    and previous["role"] == "user"
                    and isinstance(previous["content"], list)
                    and all(b.get("type") == "tool_result" for b in previous["content"])
                ):
                    previous["content"].append(block)
                else:
                    wire.append({"role": "user", "content": [block]})
            elif message.role == "assistant":
                content: list[dict[str, Any]] = []
                if message.content:
                    content.append({"type": "text", "text": message.content})
                for call in message.tool_calls:
                    content.append({"type": "tool_use", "id": call.id, "name": call.name, "input": call.input})
                wire.append({"role": "assistant", "content": content or [{"type": "text", "text": ""}]})
            else:
                wire.append({"role": "user", "content": message.content})
        return wire

    async def stream(
        self, system: str, tools: list[dict[str, Any]], messages: Sequence[ChatMessage]
    ) -> AsyncIterator[TextDelta | ModelTurn]:
        from anthropic import APIError

        kwargs: dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "system": system,
            "tools": tools,
            "messages": self.to_wire_messages(messages),
        }
        if self.temperature is not None:
            kwargs["temperature"] = self.temperature

        try:
            async with self.client.messages.stream(**kwargs) as stream:
                async for text in stream.text_stream:
                    yield TextDelta(text)
                final = await stream.get_final_message()
        except APIError as e:
            raise LLMError(classify_llm_error(e, "anthropic", self.model)) from e

        text_parts = []
        tool_calls = []
        for block in final.content:
            if block.type == "text":
                text_parts.append(block.text)
            elif block.type == "tool_use":
                tool_calls.append(ToolCall(id=block.id, name=block.name, input=dict(block.input or {})))

        yield ModelTurn(
            text="".join(text_parts),
            tool_calls=tuple(tool_calls),
            stop_reason=_ANTHROPIC_STOP_REASONS.get(final.stop_reason or "", "other"),
        )


# =============================================================================
# OpenAI / Azure OpenAI
# =============================================================================


class OpenAILanguageModel:
    """
    OpenAI chat completions with function tools.

    Pass base_url for Azure OpenAI (OpenAI-compatible endpoint) or any other
    compatible server.
    """

    def __init__(
        self,
        api_key: str,
        model: str,
        max_tokens: int = 4096,
        temperature: float | None = None,
        timeout: float = 120.0,
        base_url: str | None = None,
        provider: str = "openai",
    ):
        self.api_key = api_key
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.timeout = timeout
        self.base_url = base_url
        self.provider = provider
        self._client: AsyncOpenAI | None = None

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            from openai import AsyncOpenAI

            self._client = AsyncOpenAI(api_key=self.api_key, base_url=self.base_url, timeout=self.timeout)
        return self._client

    @staticmethod
    def to_wire_tools(tools: list[dict[str, Any]]) -> list[dict[str, Any]]:
        return [
            {
                "type": "function",
                "function": {
                    "name": tool["name"],
                    "description": tool.get("description", ""),
                    "parameters": tool.get("input_schema", {"type": "object", "properties": {}}),
                },
            }
            for tool in tools
        ]

    @staticmethod
    def to_wire_messages(system: str, messages: Sequence[ChatMessage]) -> list[dict[str, Any]]:
        wire: list[dict[str, Any]] = [{"role": "system", "content": system}]
        for message in messages:
            if message.role == "tool":
                wire.append({"role": "tool", "tool_call_id": message.tool_call_id, "content": message.content})
            elif message.role == "assistant":
                entry: dict[str, Any] = {"role": "assistant", "content": message.content or None}
                if message.tool_calls:
                    entry["tool_calls"] = [
                        {
                            "id": call.id,
                            "type": "function",
                            "function": {"name": call.name, "arguments": json.dumps(call.input)},
                        }
                        for call in message.tool_calls
                    ]
                wire.append(entry)
            else:
                wire.append({"role": "user", "content": message.content})
        return wire

    async def stream(
        self, system: str, tools: list[dict[str, Any]], messages: Sequence[ChatMessage]
    ) -> AsyncIterator[TextDelta | ModelTurn]:
        from openai import APIError

        kwargs: dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "messages": self.to_wire_messages(system, messages),
            "tools": self.to_wire_tools(tools),
            "stream": True,
        }
        if self.temperature is not None:
            kwargs["temperature"] = self.temperature

        text_parts: list[str] = []
        pending: dict[int, dict[str, str]] = {}
        finish_reason = None

        try:
            stream = await self.client.chat.completions.create(**kwargs)
            async for chunk in stream:
                if not chunk.choices:
                    continue
                choice = chunk.choices[0]
                delta = choice.delta

                if delta and delta.content:
                    text_parts.append(delta.content)
                    yield TextDelta(delta.content)

                for tool_delta in (delta.tool_calls if delta else None) or []:
                    entry = pending.setdefault(tool_delta.index, {"id": "", "name": "", "arguments": ""})
                    if tool_delta.id:
                        entry["id"] = tool_delta.id
                    if tool_delta.function:
                        if tool_delta.function.name:
                            entry["name"] += tool_delta.function.name
                        if tool_delta.function.arguments:
                            entry["arguments"] += tool_delta.function.arguments

                if choice.finish_reason:
                    finish_reason = choice.finish_reason
        except APIError as e:
            raise LLMError(classify_llm_error(e, self.provider, self.model)) from e

        tool_calls = []
        for index in sorted(pending):
            entry = pending[index]
            try:
                arguments = json.loads(entry["arguments"]) if entry["arguments"] else {}
            except json.JSONDecodeError:
                logger.warning(f"Tool call {entry['name']} has malformed arguments; passing none")
                arguments = {}
            if not isinstance(arguments, dict):
                arguments = {}
            tool_calls.append(ToolCall(id=entry["id"] or f"call_{index}", name=entry["name"], input=arguments))

        yield ModelTurn(
            text="".join(text_parts),
            tool_calls=tuple(tool_calls),
            stop_reason=_OPENAI_FINISH_REASONS.get(finish_reason or "", "other"),
        )


# =============================================================================
# Factory
# =============================================================================


def create_language_model(config: Settings | None = None) -> LanguageModel:
    """
    Create the language model for the configured provider.

    Args:
        config: Settings to read (defaults to the global settings)

    Returns:
        A LanguageModel for settings.llm_provider

    Raises:
        ConfigurationError: If the provider's credentials are missing or the provider is unknown
    """
    config = config or settings
    provider = config.llm_provider
    model = config.model_name
    common = {
        "model": model,
        "max_tokens": config.llm_max_tokens,
        "temperature": config.llm_temperature,
        "timeout": config.llm_timeout_seconds,
    }

    if provider == "anthropic":
        if not config.anthropic_api_key:
            raise ConfigurationError("Anthropic API key not configured")
        llm = AnthropicLanguageModel(api_key=config.anthropic_api_key, **common)

    elif provider == "openai":
        if not config.openai_api_key:
            raise ConfigurationError("OpenAI API key not configured")
        llm = OpenAILanguageModel(api_key=config.openai_api_key, **common)

    elif provider == "azure_openai":
        if not config.azure_openai_api_key or not config.azure_openai_endpoint:
            raise ConfigurationError("Azure OpenAI endpoint and API key not configured")
        llm = OpenAILanguageModel(
            api_key=config.azure_openai_api_key,
            base_url=config.azure_openai_endpoint,
            provider="azure_openai",
            **common,
        )

    else:
        raise ConfigurationError(f"Unsupported LLM provider: {provider}")

    logger.debug(f"Created {provider} language model: {model}")
    return llm
