"""
LLM Package — single entry point for chat requests.

This package provides:
- Contracts: ChatRequest / ChatResult, ModelTurn, ToolCall / ToolResult, Delta
- ResponseAggregator: streams a request into a sink and runs the tool loop
- ContextBuilder (chatmd.llm.context_builder): "provider@model" + messages → ChatRequest
- Error classification for transport failures
"""

from chatmd.llm.contracts import (
    ChatRequest,
    ChatResult,
    Delta,
    ModelTurn,
    OrchestrationRound,
    ProviderFormat,
    ToolCall,
    ToolResult,
)
from chatmd.llm.errors import ErrorType, TransportFailure, classify_transport_error

__all__ = [
    # Contracts
    "ChatRequest",
    "ChatResult",
    "Delta",
    "ModelTurn",
    "OrchestrationRound",
    "ProviderFormat",
    "ToolCall",
    "ToolResult",
    # Errors
    "ErrorType",
    "TransportFailure",
    "classify_transport_error",
]
