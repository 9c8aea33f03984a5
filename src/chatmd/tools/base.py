"""
ChatTool — the base class for all tools the model can call.

A tool is name + description + parameters + execute. Tools are
provider-agnostic; the registry converts them to whatever schema format the
provider needs (OpenAI function calling, Anthropic tools, Gemini function
declarations).

execute() returns a JSON value. Search-like tools return a list of dicts so
that approval-gated results can be filtered item by item before the model
sees them.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Protocol

from chatmd.llm.contracts import ToolCall, ToolResult

logger = logging.getLogger(__name__)


class ToolError(Exception):
    """Expected tool failure. The message is shown to the model as-is."""


class ToolExecutor(Protocol):
    """Runs one tool call. Implementations never raise."""

    async def execute(self, call: ToolCall) -> ToolResult: ...


@dataclass
class ToolParam:
    """A single parameter for a tool."""
    name: str
    type: str  # "string", "integer", "boolean", "array", "object"
    description: str
    required: bool = True
    default: Any = None
    enum: list[str] | None = None
    items: dict | None = None  # For array types


class ChatTool(ABC):
    """
    Base class for all chatmd tools.

    Subclass this, set the class attributes, implement execute().
    """

    # --- Override these in subclasses ---
    name: str = ""
    description: str = ""
    parameters: list[ToolParam] = []

    @abstractmethod
    async def execute(self, **kwargs) -> Any:
        """Run the tool with validated arguments. Return a JSON value."""
        ...

    def json_schema(self) -> dict:
        """JSON Schema of the arguments object."""
        properties = {}
        required = []

        for param in self.parameters:
            prop: dict[str, Any] = {
                "type": param.type,
                "description": param.description,
            }
            if param.enum:
                prop["enum"] = param.enum
            if param.items:
                prop["items"] = param.items
            properties[param.name] = prop

            if param.required:
                required.append(param.name)

        return {"type": "object", "properties": properties, "required": required}

    def to_openai_schema(self) -> dict:
        """OpenAI / OpenRouter / LM Studio / Ollama function calling format."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.json_schema(),
            },
        }

    def to_anthropic_schema(self) -> dict:
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.json_schema(),
        }

    def to_gemini_schema(self) -> dict:
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.json_schema(),
        }

    def validate_args(self, args: dict) -> dict:
        """Validate and fill defaults. Returns cleaned args."""
        cleaned = {}
        for param in self.parameters:
            if param.name in args:
                cleaned[param.name] = args[param.name]
            elif param.required:
                raise ValueError(f"Missing required parameter: {param.name}")
            elif param.default is not None:
                cleaned[param.name] = param.default
        return cleaned

    async def run(self, call: ToolCall) -> ToolResult:
        """Execute with validation and error handling. Never raises."""
        try:
            cleaned = self.validate_args(call.arguments)
            return ToolResult.success(call, await self.execute(**cleaned))
        except ValueError as e:
            return ToolResult.failed(call, f"Invalid arguments: {e}")
        except ToolError as e:
            logger.warning(f"Tool '{self.name}' failed: {e}")
            return ToolResult.failed(call, str(e))
        except Exception as e:
            logger.error(f"Tool '{self.name}' failed: {e}", exc_info=True)
            return ToolResult.failed(call, f"Tool error: {e}")

    def __repr__(self) -> str:
        return f"<Tool:{self.name}>"
