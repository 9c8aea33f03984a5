"""
LLM Core — single entry point for a chat request.

ResponseAggregator composes a StreamSession (or one non-streaming call) with
the ToolCallOrchestrator into one request/response cycle:

    stream turn 0 into the sink
    └─ tool calls? → notice → execute / approve → erase notice
                     → continuation stream at the current cursor → ...
    └─ citation block for every turn, written once after the last one
    └─ ChatResult(text, citations, rounds, aborted, error)

Collaborators (transport, sink, executor, approval gate) are passed in; there
is no ambient global state besides config defaults. Transport errors come
back as ChatResult.error and the rendered message in the sink. An abort at
any point rolls the sink back to where this request started.

Usage:
    aggregator = ResponseAggregator(HTTPXTransport(), sink, registry, gate)
    result = await aggregator.chat(request, token)
"""

from __future__ import annotations

import logging
from typing import Any

import chatmd.core.config as config_module
from chatmd.core.config import ChatmdConfig
from chatmd.core.constants import TOOL_APPROVAL_NOTICE
from chatmd.core.logging import RequestLogger, RequestTimer
from chatmd.llm.contracts import (
    ChatRequest,
    ChatResult,
    ModelTurn,
    OrchestrationRound,
    ProviderFormat,
)
from chatmd.llm.errors import classify_transport_error
from chatmd.providers.base import ProviderTransport
from chatmd.providers.decoders import extract_citations, extract_tool_calls, parse_non_streaming
from chatmd.providers.registry import get_provider_format
from chatmd.stream.cancellation import CancellationToken
from chatmd.stream.session import StreamSession, render_citations
from chatmd.stream.sink import Sink
from chatmd.tools.approval import ApprovalGate, AutoApprovalGate, ToolCallGate
from chatmd.tools.base import ToolExecutor
from chatmd.tools.orchestrator import ToolCallOrchestrator

logger = logging.getLogger(__name__)


class ResponseAggregator:
    def __init__(
        self,
        transport: ProviderTransport,
        sink: Sink,
        tool_executor: ToolExecutor | None = None,
        approval_gate: ApprovalGate | None = None,
        config: ChatmdConfig | None = None,
        call_gate: ToolCallGate | None = None,
    ):
        """
        Args:
            transport: Moves requests to the provider.
            sink: Where output is rendered.
            tool_executor: Runs tool calls. Without one, tool calls in a
                turn are ignored and the turn is final.
            approval_gate: Reviews gated tool results. Defaults to
                approving everything.
            config: Defaults to the module-level config.
            call_gate: Confirms each tool call before it runs. None runs
                every call the model asks for.
        """
        self.transport = transport
        self.sink = sink
        self.tool_executor = tool_executor
        self.approval_gate = approval_gate or AutoApprovalGate()
        self.config = config or config_module.config
        self.call_gate = call_gate

    def _orchestrator(self) -> ToolCallOrchestrator | None:
        if self.tool_executor is None:
            return None
        return ToolCallOrchestrator(
            self.tool_executor,
            self.approval_gate,
            max_rounds=self.config.tools.max_rounds,
            gated_tools=self.config.tools.gated_tools,
            call_gate=self.call_gate,
        )

    async def chat(
        self, request: ChatRequest, token: CancellationToken | None = None
    ) -> ChatResult:
        token = token or CancellationToken()
        fmt = get_provider_format(request.provider)
        start = self.sink.current_offset()
        timer = RequestTimer()
        log = RequestLogger(logger, request.request_id, request.provider, request.model)
        log.info(f"chat started (stream={request.stream})")

        citations: list[str] = []

        async def generate(req: ChatRequest) -> ModelTurn:
            if req.stream:
                session = StreamSession(
                    self.transport,
                    self.sink,
                    fmt,
                    token=token,
                    flush_interval=self.config.stream.flush_interval,
                    max_buffer_size=self.config.stream.max_buffer_size,
                    append_citations=False,
                )
                turn = await session.run(req)
            else:
                turn = await self._generate_once(req, fmt, token)
            for url in turn.citations:
                if url not in citations:
                    citations.append(url)
            return turn

        turn = await generate(request)
        timer.mark("first_turn")
        if turn.aborted:
            return self._rollback(start, token, log)

        orchestrator = self._orchestrator()
        if orchestrator is None or not turn.wants_tools:
            return self._result(turn, turn.text, citations, [], log, timer)

        notice: dict[str, int] = {}

        def show_notice(_round: OrchestrationRound) -> None:
            offset = self.sink.current_offset()
            self.sink.write(TOOL_APPROVAL_NOTICE, offset)
            notice["start"] = offset
            notice["end"] = self.sink.advance(offset, len(TOOL_APPROVAL_NOTICE))

        def clear_notice() -> None:
            if notice:
                self.sink.erase_range(notice.pop("start"), notice.pop("end"))

        async def regenerate(messages: list[dict[str, Any]]) -> ModelTurn:
            clear_notice()
            return await generate(request.with_messages(messages))

        try:
            outcome = await orchestrator.run(
                turn, request.messages, regenerate, token, on_round=show_notice
            )
        finally:
            clear_notice()
        timer.mark("tools")

        if outcome.aborted:
            return self._rollback(start, token, log)
        return self._result(
            outcome.turn, outcome.text, citations, outcome.rounds, log, timer
        )

    async def _generate_once(
        self, request: ChatRequest, fmt: ProviderFormat, token: CancellationToken
    ) -> ModelTurn:
        """Non-streaming call: one JSON body, rendered in one write."""
        if token.aborted:
            token.reset()
            return ModelTurn(aborted=True)
        response = await self.transport.open_non_streaming(request)
        if token.aborted:
            token.reset()
            return ModelTurn(aborted=True)

        offset = self.sink.current_offset()
        if not response.ok:
            failure = classify_transport_error(
                response.status,
                response.body,
                provider=request.provider,
                exc=response.error,
                model=request.model,
                url=request.url,
            )
            logger.error(failure.log_message)
            self.sink.write(failure.chat_message, offset)
            return ModelTurn(text=failure.chat_message, error=failure.error_type.value)

        text = parse_non_streaming(response.data, fmt)
        citations = list(dict.fromkeys(extract_citations(response.data)))
        if text:
            self.sink.write(text, offset)
        return ModelTurn(
            text=text,
            tool_calls=extract_tool_calls(response.data, fmt),
            citations=citations,
        )

    def _rollback(
        self, start: int, token: CancellationToken, log: RequestLogger
    ) -> ChatResult:
        token.reset()
        end = self.sink.current_offset()
        if end > start:
            self.sink.erase_range(start, end)
        log.info("aborted, output rolled back")
        return ChatResult.cancelled()

    def _result(
        self,
        turn: ModelTurn,
        text: str,
        citations: list[str],
        rounds: list[OrchestrationRound],
        log: RequestLogger,
        timer: RequestTimer,
    ) -> ChatResult:
        if citations and turn.error is None:
            # One block for the whole request, after the last turn
            self.sink.write(render_citations(citations), self.sink.current_offset())
        log.info(
            f"done in {len(rounds)} tool round(s), "
            f"{len(text)} chars | {timer.summary()}"
        )
        return ChatResult(
            text=text,
            citations=list(citations),
            rounds=rounds,
            error=turn.error,
        )
