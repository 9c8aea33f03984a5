"""
Tool Call Orchestrator — bounded "generate → tools → approve → regenerate" loop.

    turn has no tool calls          → final
    round index >= max_rounds       → final, no more tool calls
    otherwise                       → confirm each call (optional call gate)
                                      execute the approved calls
                                      review gated list results
                                      append assistant text + one results message
                                      regenerate, index + 1

The loop is iterative and max_rounds is mandatory, so a model that keeps
asking for tools cannot run forever. A failing tool becomes an error string
in its ToolResult; it never aborts the round. Cancellation is checked at
every round boundary.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

import chatmd.core.config as config_module
from chatmd.core.constants import NEWLINE, TOOL_DECLINED_MESSAGE, TOOL_RESULTS_HEADER
from chatmd.core.metrics import metrics
from chatmd.llm.contracts import ModelTurn, OrchestrationRound, ToolCall, ToolResult
from chatmd.stream.cancellation import CancellationToken
from chatmd.tools.approval import ApprovalGate, ToolCallGate
from chatmd.tools.base import ToolExecutor

logger = logging.getLogger(__name__)

Regenerate = Callable[[list[dict[str, Any]]], Awaitable[ModelTurn]]
RoundHook = Callable[[OrchestrationRound], Any]


@dataclass
class OrchestrationOutcome:
    """Where the loop ended.

    text is the text of every turn in order; turn is the last one.
    """

    turn: ModelTurn
    text: str = ""
    rounds: list[OrchestrationRound] = field(default_factory=list)
    messages: list[dict[str, Any]] = field(default_factory=list)
    aborted: bool = False


def _format_result(
    result: ToolResult, call: ToolCall | None, gated: bool, offered: int = 0
) -> str:
    name = result.tool_name
    if result.error:
        return f"[{name} error]{NEWLINE}{result.result}"

    query = (call.arguments.get("query") if call else None) or "unknown"
    payload = result.result
    if gated and isinstance(payload, list) and not payload:
        if offered:
            return (
                f"[{name} result - no results selected]{NEWLINE}"
                f'The search for "{query}" returned results, '
                "but none were approved for sharing."
            )
        return (
            f"[{name} result - no results found]{NEWLINE}"
            f'The search for "{query}" returned no results. '
            "Try different search terms."
        )
    if isinstance(payload, list) and all(isinstance(item, dict) for item in payload):
        sections = [_format_item(name, item) for item in payload]
        return NEWLINE.join(sections) if sections else f"[{name} result]{NEWLINE}[]"
    if isinstance(payload, str):
        return f"[{name} result]{NEWLINE}{payload}"
    return f"[{name} result]{NEWLINE}{json.dumps(payload, indent=2, default=str)}"


def _format_item(name: str, item: dict[str, Any]) -> str:
    if "url" in item and ("title" in item or "snippet" in item):
        body = item.get("content") or item.get("snippet") or ""
        return (
            f"[{name} result]{NEWLINE}"
            f"Title: {item.get('title', '')}\nURL: {item['url']}{NEWLINE}{body}"
        )
    if "path" in item and "content" in item:
        return f"[{name} result]{NEWLINE}File: {item['path']}{NEWLINE}{item['content']}"
    return f"[{name} result]{NEWLINE}{json.dumps(item, indent=2, default=str)}"


def format_tool_results(
    results: list[ToolResult],
    calls: list[ToolCall],
    gated_tools: frozenset[str] = frozenset(),
    offered: dict[str, int] | None = None,
) -> str:
    """Render every result of a round into one synthetic user message."""
    by_id = {call.id: call for call in calls}
    offered = offered or {}
    sections = [
        _format_result(
            r,
            by_id.get(r.tool_call_id),
            r.tool_name in gated_tools,
            offered.get(r.tool_call_id, 0),
        )
        for r in results
    ]
    return TOOL_RESULTS_HEADER + NEWLINE + NEWLINE.join(sections)


class ToolCallOrchestrator:
    """
    Runs tool rounds until the model stops asking or max_rounds is hit.

    Usage:
        orchestrator = ToolCallOrchestrator(registry, gate, max_rounds=2)
        outcome = await orchestrator.run(turn, messages, regenerate, token)
    """

    def __init__(
        self,
        executor: ToolExecutor,
        approval_gate: ApprovalGate,
        max_rounds: int,
        gated_tools: frozenset[str] | set[str] | tuple[str, ...] | None = None,
        call_gate: ToolCallGate | None = None,
    ):
        """
        Args:
            call_gate: Asked before each tool runs. None runs every call.
        """
        if max_rounds < 0:
            raise ValueError(f"max_rounds must be >= 0, got {max_rounds}")
        self.executor = executor
        self.approval_gate = approval_gate
        self.max_rounds = max_rounds
        if gated_tools is None:
            gated_tools = config_module.config.tools.gated_tools
        self.gated_tools = frozenset(gated_tools)
        self.call_gate = call_gate

    async def run(
        self,
        turn: ModelTurn,
        messages: list[dict[str, Any]],
        regenerate: Regenerate,
        token: CancellationToken | None = None,
        on_round: RoundHook | None = None,
    ) -> OrchestrationOutcome:
        messages = list(messages)
        rounds: list[OrchestrationRound] = []
        texts = [turn.text]
        index = 0

        while True:
            if token is not None and token.aborted:
                return self._aborted(turn, texts, rounds, messages)

            if not turn.wants_tools:
                break

            if index >= self.max_rounds:
                logger.warning(
                    f"Tool round limit reached ({self.max_rounds}), "
                    f"ignoring {len(turn.tool_calls)} tool call(s)"
                )
                metrics.inc("tools.round_limit")
                break

            current = OrchestrationRound(index=index, tool_calls=list(turn.tool_calls))
            rounds.append(current)
            metrics.inc("tools.rounds")
            if on_round is not None:
                on_round(current)

            await self.execute_round(current)
            await self.review_round(current)

            if token is not None and token.aborted:
                return self._aborted(turn, texts, rounds, messages)

            if turn.text:
                messages.append({"role": "assistant", "content": turn.text})
            messages.append(
                {
                    "role": "user",
                    "content": format_tool_results(
                        current.tool_results,
                        current.tool_calls,
                        self.gated_tools,
                        current.offered,
                    ),
                }
            )

            turn = await regenerate(messages)
            if turn.aborted:
                return self._aborted(turn, texts, rounds, messages)
            texts.append(turn.text)
            index += 1

        return OrchestrationOutcome(
            turn=turn, text="".join(texts), rounds=rounds, messages=messages
        )

    async def execute_round(self, current: OrchestrationRound) -> None:
        """Review and execute the round's calls in order.

        A declined call gets an error result and never runs. An approved call
        with edited arguments replaces the original in current.tool_calls.
        One failure never affects the others.
        """
        calls = []
        results = []
        for call in current.tool_calls:
            if self.call_gate is not None:
                approved = await self.call_gate.review_call(call)
                if approved is None:
                    metrics.inc("tools.declined", labels={"tool": call.name})
                    calls.append(call)
                    results.append(ToolResult.failed(call, TOOL_DECLINED_MESSAGE))
                    continue
                call = approved
            try:
                result = await self.executor.execute(call)
            except Exception as e:
                logger.error(f"Tool executor raised for {call.name}: {e}", exc_info=True)
                result = ToolResult.failed(call, f"Tool execution failed: {e}")
            calls.append(call)
            results.append(result)
        current.tool_calls = calls
        current.tool_results = results

    async def review_round(self, current: OrchestrationRound) -> None:
        """Replace gated list payloads with the approved subset."""
        by_id = {call.id: call for call in current.tool_calls}
        for result in current.tool_results:
            if result.error or result.tool_name not in self.gated_tools:
                continue
            if not isinstance(result.result, list) or not result.result:
                continue
            call = by_id.get(result.tool_call_id)
            query = str((call.arguments.get("query") if call else None) or "unknown")
            current.offered[result.tool_call_id] = len(result.result)
            approved = await self.approval_gate.review(query, result.result)
            logger.info(
                f"{result.tool_name}: {len(approved)}/{len(result.result)} results approved"
            )
            result.result = list(approved)

    def _aborted(self, turn, texts, rounds, messages) -> OrchestrationOutcome:
        logger.info(f"Tool orchestration aborted after {len(rounds)} round(s)")
        return OrchestrationOutcome(
            turn=turn,
            text="".join(texts),
            rounds=rounds,
            messages=messages,
            aborted=True,
        )
