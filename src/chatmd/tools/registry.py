"""
Tool Registry — register tools, get schemas, execute calls by name.

Dead simple. Register tools, ask for their schemas in any provider format,
execute ToolCalls by tool name. The registry is the default ToolExecutor.
"""

from __future__ import annotations

import logging

from chatmd.core.metrics import metrics
from chatmd.llm.contracts import ProviderFormat, ToolCall, ToolResult
from chatmd.tools.base import ChatTool

logger = logging.getLogger(__name__)


class ToolRegistry:
    """Central registry for all available tools."""

    def __init__(self):
        self._tools: dict[str, ChatTool] = {}

    def register(self, tool: ChatTool) -> None:
        """Register a tool. Overwrites if name already exists."""
        if not tool.name:
            raise ValueError(f"Tool must have a name: {tool}")
        self._tools[tool.name] = tool
        logger.info(f"Registered tool: {tool.name}")

    def get(self, name: str) -> ChatTool | None:
        """Get a tool by name."""
        return self._tools.get(name)

    def list_tools(self) -> list[ChatTool]:
        """All registered tools."""
        return list(self._tools.values())

    def tool_names(self) -> list[str]:
        """Names of all registered tools."""
        return list(self._tools.keys())

    async def execute(self, call: ToolCall) -> ToolResult:
        """Execute a tool call. Unknown tools and failures become error results."""
        tool = self._tools.get(call.name)
        if not tool:
            metrics.inc("tools.executed", labels={"tool": call.name, "status": "unknown"})
            return ToolResult.failed(call, f"Unknown tool: {call.name}")

        logger.info(f"Executing tool: {call.name} with args: {list(call.arguments.keys())}")
        result = await tool.run(call)
        status = "error" if result.error else "ok"
        metrics.inc("tools.executed", labels={"tool": call.name, "status": status})
        return result

    def without(self, *names: str) -> ToolRegistry:
        """Return a new registry excluding the named tools."""
        filtered = ToolRegistry()
        for name, tool in self._tools.items():
            if name not in names:
                filtered._tools[name] = tool
        return filtered

    # --- Schema export for different providers ---

    def to_openai_tools(self) -> list[dict]:
        """Get all tool schemas in OpenAI function calling format."""
        return [tool.to_openai_schema() for tool in self._tools.values()]

    def to_anthropic_tools(self) -> list[dict]:
        """Get all tool schemas in Anthropic tool use format."""
        return [tool.to_anthropic_schema() for tool in self._tools.values()]

    def to_gemini_tools(self) -> list[dict]:
        """Gemini wraps all declarations in a single tools entry."""
        if not self._tools:
            return []
        return [
            {
                "functionDeclarations": [
                    tool.to_gemini_schema() for tool in self._tools.values()
                ]
            }
        ]

    def schemas_for(self, fmt: ProviderFormat) -> list[dict]:
        if fmt is ProviderFormat.ANTHROPIC:
            return self.to_anthropic_tools()
        if fmt is ProviderFormat.GEMINI:
            return self.to_gemini_tools()
        # Ollama accepts the OpenAI format
        return self.to_openai_tools()


# Global default registry
_default_registry: ToolRegistry | None = None


def get_default_registry() -> ToolRegistry:
    """Get or create the default global tool registry."""
    global _default_registry
    if _default_registry is None:
        _default_registry = ToolRegistry()
    return _default_registry
