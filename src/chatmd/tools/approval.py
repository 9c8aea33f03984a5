"""
Approval gates — the human in the loop for tool calls and their results.

Two checkpoints, both optional:

    ToolCallGate.review_call(call)      before a tool runs: approve, decline,
                                        or approve with edited arguments
    ApprovalGate.review(query, results) after a gated tool ran: the subset of
                                        results the user is willing to share

Tools such as vault_search and web_search can put private notes or
third-party content in front of the model, so their list results go through
an ApprovalGate. An empty subset is a valid answer, not an error.
"""

from __future__ import annotations

import dataclasses
import inspect
import logging
from typing import Any, Awaitable, Callable, Protocol, Union

from chatmd.llm.contracts import ToolCall

logger = logging.getLogger(__name__)

ReviewCallback = Callable[[str, list], Union[list, Awaitable[list]]]
# True approves, False/None declines, a dict approves with those arguments
CallDecision = Union[bool, dict, None]
CallReviewCallback = Callable[[ToolCall], Union[CallDecision, Awaitable[CallDecision]]]


class ApprovalGate(Protocol):
    async def review(self, query: str, candidates: list[Any]) -> list[Any]: ...


class ToolCallGate(Protocol):
    async def review_call(self, call: ToolCall) -> ToolCall | None:
        """The call to run (possibly with new arguments), or None to decline."""
        ...


class AutoApprovalGate:
    """Approves everything (or nothing). For headless runs and tests."""

    def __init__(self, approve: bool = True):
        self.approve = approve

    async def review(self, query: str, candidates: list[Any]) -> list[Any]:
        return list(candidates) if self.approve else []

    async def review_call(self, call: ToolCall) -> ToolCall | None:
        return call if self.approve else None


class CallbackApprovalGate:
    """
    Delegates result review to a UI callback, sync or async.

    Usage:
        async def ask_user(query, results):
            return await modal.pick(query, results)

        gate = CallbackApprovalGate(ask_user)
    """

    def __init__(self, callback: ReviewCallback):
        self.callback = callback

    async def review(self, query: str, candidates: list[Any]) -> list[Any]:
        approved = self.callback(query, list(candidates))
        if inspect.isawaitable(approved):
            approved = await approved
        if approved is None:
            return []
        # Only items that were offered can be approved
        approved = [item for item in approved if item in candidates]
        logger.info(f"Approved {len(approved)}/{len(candidates)} results for '{query}'")
        return approved


class CallbackToolCallGate:
    """
    Delegates tool call approval to a UI callback, sync or async.

    Usage:
        async def confirm(call):
            choice = await modal.confirm(call.name, call.arguments)
            return choice.arguments if choice.approved else False

        gate = CallbackToolCallGate(confirm)
    """

    def __init__(self, callback: CallReviewCallback):
        self.callback = callback

    async def review_call(self, call: ToolCall) -> ToolCall | None:
        decision = self.callback(call)
        if inspect.isawaitable(decision):
            decision = await decision
        if isinstance(decision, dict):
            logger.info(f"Tool call {call.name} approved with edited arguments")
            return dataclasses.replace(call, arguments=dict(decision))
        if decision:
            return call
        logger.info(f"Tool call {call.name} declined")
        return None
