"""
Context Builder — builds a ChatRequest from "provider@model" and messages.

1. Resolve the provider and bare model name from the model id
2. Move system messages to the payload for providers with a system field
3. Attach tool schemas, only when the tool whitelist says the model supports them

Converting messages to provider-specific content shapes (Gemini "contents",
images) is the caller's job; this builder only shapes the common fields.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from chatmd.llm.contracts import ChatRequest, ProviderFormat
from chatmd.providers.registry import (
    ProviderCapabilityCache,
    get_provider_format,
    parse_model_id,
)

if TYPE_CHECKING:
    from chatmd.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)


class ContextBuilder:
    def __init__(
        self,
        tool_registry: "ToolRegistry | None" = None,
        capabilities: ProviderCapabilityCache | None = None,
    ):
        self.tool_registry = tool_registry
        self.capabilities = capabilities or ProviderCapabilityCache()

    def build(
        self,
        model_id: str,
        messages: list[dict[str, Any]],
        url: str,
        headers: dict[str, str] | None = None,
        stream: bool = True,
        **params: Any,
    ) -> ChatRequest:
        """
        Build a request for one chat turn.

        Args:
            model_id: "provider@model" (no prefix means OpenAI)
            messages: Conversation so far, OpenAI role/content dicts
            url: Full endpoint URL
            headers: Auth and other request headers
            stream: Stream the response
            **params: Extra payload fields (max_tokens, temperature, ...)
        """
        parsed = parse_model_id(model_id)
        fmt = get_provider_format(parsed.provider)

        payload: dict[str, Any] = {"model": parsed.model, **params}
        if fmt is ProviderFormat.ANTHROPIC:
            system = [m["content"] for m in messages if m.get("role") == "system"]
            messages = [m for m in messages if m.get("role") != "system"]
            if system:
                payload["system"] = "\n\n".join(str(s) for s in system)
            payload.setdefault("max_tokens", 4096)

        tools = self._build_tool_schemas(model_id, fmt)
        if tools:
            payload["tools"] = tools

        return ChatRequest(
            provider=parsed.provider,
            model=model_id,
            url=url,
            messages=list(messages),
            headers=dict(headers or {}),
            payload=payload,
            stream=stream,
        )

    def _build_tool_schemas(self, model_id: str, fmt: ProviderFormat) -> list[dict]:
        if self.tool_registry is None or not self.tool_registry.tool_names():
            return []
        if not self.capabilities.supports_tools(model_id):
            logger.debug(f"Tools disabled for {model_id}: not on the tool whitelist")
            return []
        return self.tool_registry.schemas_for(fmt)
