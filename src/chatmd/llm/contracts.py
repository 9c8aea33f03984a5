"""
LLM Contracts — fixed structures shared by every layer of the streaming core.

- ProviderFormat: which wire format a provider speaks
- Delta: one normalized increment of model output (decoder output)
- ToolCall / ToolResult: the tool-calling contract
- ModelTurn: everything one stream (or one non-streaming call) produced
- OrchestrationRound: one "execute tools → regenerate" iteration
- ChatRequest / ChatResult: the request/response pair of the aggregator
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ProviderFormat(str, Enum):
    """Wire formats understood by the decoders."""

    OPENAI = "openai"  # OpenAI, OpenRouter, LM Studio (SSE)
    ANTHROPIC = "anthropic"  # SSE with event: lines
    GEMINI = "gemini"  # SSE
    OLLAMA = "ollama"  # NDJSON


@dataclass(frozen=True)
class Delta:
    """One normalized increment of model output.

    citations are provider-supplied source URLs; they are collected by the
    session and rendered once at the end, never inline.
    """

    text: str
    citations: tuple[str, ...] = ()


@dataclass(frozen=True)
class ToolCall:
    """A tool call requested by the model. Immutable once received."""

    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass
class ToolResult:
    """Result of executing one ToolCall.

    When error is True, result is a human-readable error string.
    """

    tool_call_id: str
    tool_name: str
    result: Any
    error: bool = False

    @classmethod
    def success(cls, call: ToolCall, result: Any) -> ToolResult:
        return cls(tool_call_id=call.id, tool_name=call.name, result=result)

    @classmethod
    def failed(cls, call: ToolCall, error_msg: str) -> ToolResult:
        return cls(
            tool_call_id=call.id, tool_name=call.name, result=error_msg, error=True
        )


@dataclass
class ModelTurn:
    """Terminal output of one model invocation."""

    text: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    citations: list[str] = field(default_factory=list)
    finish_reason: str | None = None
    aborted: bool = False
    error: str | None = None  # ErrorType value when the transport failed

    @property
    def wants_tools(self) -> bool:
        return bool(self.tool_calls) and not self.aborted and self.error is None


@dataclass
class OrchestrationRound:
    """One tool round. index < max_rounds always holds for executed rounds."""

    index: int
    tool_calls: list[ToolCall] = field(default_factory=list)
    tool_results: list[ToolResult] = field(default_factory=list)
    # Gated results offered for approval, by tool_call_id
    offered: dict[str, int] = field(default_factory=dict)


@dataclass
class ChatRequest:
    """
    Input to the ResponseAggregator.

    payload is the provider-specific request body (built outside this
    package); messages mirrors payload["messages"] so tool results can be
    appended for continuation calls.

    Usage:
        request = ChatRequest(
            provider="openrouter",
            model="openrouter@anthropic/claude-sonnet-4",
            url="https://openrouter.ai/api/v1/chat/completions",
            messages=[{"role": "user", "content": "Hello"}],
            headers={"Authorization": "Bearer ..."},
        )
    """

    provider: str
    model: str
    url: str
    messages: list[dict[str, Any]] = field(default_factory=list)
    headers: dict[str, str] = field(default_factory=dict)
    payload: dict[str, Any] = field(default_factory=dict)
    stream: bool = True
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def body(self) -> dict[str, Any]:
        """The JSON body sent to the provider."""
        body = dict(self.payload)
        body["messages"] = self.messages
        body.setdefault("stream", self.stream)
        return body

    def with_messages(self, messages: list[dict[str, Any]]) -> ChatRequest:
        """Return a copy carrying a new conversation (used for continuations)."""
        return ChatRequest(
            provider=self.provider,
            model=self.model,
            url=self.url,
            messages=messages,
            headers=self.headers,
            payload=self.payload,
            stream=self.stream,
            request_id=self.request_id,
        )


@dataclass
class ChatResult:
    """What the caller gets back. Transport errors are values, not exceptions."""

    text: str
    aborted: bool = False
    citations: list[str] = field(default_factory=list)
    rounds: list[OrchestrationRound] = field(default_factory=list)
    error: str | None = None

    @classmethod
    def cancelled(cls) -> ChatResult:
        return cls(text="", aborted=True)
