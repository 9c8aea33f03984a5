"""chatmd Tools — what the model can call, and who approves the results."""

from chatmd.tools.approval import (
    ApprovalGate,
    AutoApprovalGate,
    CallbackApprovalGate,
    CallbackToolCallGate,
    ToolCallGate,
)
from chatmd.tools.base import ChatTool, ToolError, ToolExecutor, ToolParam
from chatmd.tools.orchestrator import OrchestrationOutcome, ToolCallOrchestrator
from chatmd.tools.registry import ToolRegistry

__all__ = [
    "ApprovalGate",
    "AutoApprovalGate",
    "CallbackApprovalGate",
    "CallbackToolCallGate",
    "ChatTool",
    "OrchestrationOutcome",
    "ToolCallGate",
    "ToolCallOrchestrator",
    "ToolError",
    "ToolExecutor",
    "ToolParam",
    "ToolRegistry",
]
