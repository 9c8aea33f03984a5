"""
Stream Session — one provider stream, from request to terminal ModelTurn.

    IDLE → STREAMING → COMPLETED | ABORTED | FAILED

The session owns the decoder scratch and the output buffer for exactly one
stream. Bytes are framed into lines, decoded into Deltas, appended to the
buffer and flushed after every network read (the timer covers slow
streams). The cancellation token is checked before each chunk.

On abort everything this session wrote is erased from the sink. On
completion the remaining text is flushed and the citation block, if any,
is appended once. A transport failure erases what the session wrote and
renders one user-visible message in its place; it comes back as
ModelTurn.error and never raises.
"""

from __future__ import annotations

import logging
import time
from enum import Enum

from chatmd.core.constants import CITATIONS_HEADER, NEWLINE
from chatmd.core.metrics import metrics
from chatmd.llm.contracts import ChatRequest, ModelTurn, ProviderFormat
from chatmd.llm.errors import TransportFailure, classify_transport_error
from chatmd.providers.base import ProviderTransport, StreamResponse, TransportError
from chatmd.providers.decoders import DecodeState, decode
from chatmd.stream.buffer import OutputBuffer
from chatmd.stream.cancellation import CancellationToken
from chatmd.stream.framing import LineSplitter
from chatmd.stream.sink import Sink

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    COMPLETED = "completed"
    ABORTED = "aborted"
    FAILED = "failed"


def render_citations(citations: list[str]) -> str:
    """Markdown block listing each source URL once."""
    lines = [f"{i}. {url}" for i, url in enumerate(citations, start=1)]
    return NEWLINE + CITATIONS_HEADER + "\n" + "\n".join(lines) + "\n"


class StreamSession:
    def __init__(
        self,
        transport: ProviderTransport,
        sink: Sink,
        fmt: ProviderFormat,
        token: CancellationToken | None = None,
        flush_interval: float | None = None,
        max_buffer_size: int | None = None,
        append_citations: bool = True,
    ):
        """
        Args:
            append_citations: Render the citation block at completion. Off
                when the caller collects citations over several turns and
                renders them itself.
        """
        self.transport = transport
        self.sink = sink
        self.fmt = fmt
        self.token = token or CancellationToken()
        self.state = SessionState.IDLE
        self.append_citations = append_citations

        self._flush_interval = flush_interval
        self._max_buffer_size = max_buffer_size
        self._start_offset = 0
        self._buffer: OutputBuffer | None = None
        self._decode_state = DecodeState()
        self._text = ""
        self._citations: list[str] = []
        self._seen_citations: set[str] = set()
        self._citations_rendered = False
        self._first_delta_at: float | None = None

    @property
    def text(self) -> str:
        return self._text

    @property
    def citations(self) -> list[str]:
        return list(self._citations)

    @property
    def start_offset(self) -> int:
        return self._start_offset

    @property
    def end_offset(self) -> int:
        """Sink offset after everything this session has written."""
        return self._buffer.cursor if self._buffer else self._start_offset

    async def run(self, request: ChatRequest) -> ModelTurn:
        if self.state is not SessionState.IDLE:
            raise RuntimeError(f"StreamSession already used (state={self.state.value})")

        self.state = SessionState.STREAMING
        self._start_offset = self.sink.current_offset()
        self._buffer = OutputBuffer(
            self.sink,
            self._start_offset,
            flush_interval=self._flush_interval,
            max_buffer_size=self._max_buffer_size,
        )
        labels = {"format": self.fmt.value}
        started = time.monotonic()
        metrics.inc("stream.started", labels=labels)
        metrics.gauge_inc("stream.active")

        try:
            if self.token.aborted:
                return self._abort()

            response = await self.transport.open_stream(request)
            try:
                if not response.ok:
                    return self._fail(
                        classify_transport_error(
                            response.status,
                            response.body,
                            provider=request.provider,
                            exc=response.error,
                            model=request.model,
                            url=request.url,
                        )
                    )
                return await self._consume(request, response, started)
            finally:
                await response.aclose()
        finally:
            if self._buffer.buffering:
                # cancelled from outside (task.cancel)
                self._buffer.discard()
            metrics.gauge_dec("stream.active")
            duration_ms = (time.monotonic() - started) * 1000
            metrics.observe("stream.duration_ms", duration_ms, labels=labels)
            metrics.inc(f"stream.{self.state.value}", labels=labels)
            logger.debug(
                f"Stream {request.request_id[:8]} {self.state.value} "
                f"in {duration_ms:.0f}ms ({len(self._text)} chars)"
            )

    async def _consume(
        self, request: ChatRequest, response: StreamResponse, started: float
    ) -> ModelTurn:
        splitter = LineSplitter()
        self._buffer.start_buffering()

        try:
            async for chunk in response.chunks:
                if self.token.aborted:
                    return self._abort()
                for line in splitter.feed(chunk):
                    self._handle_line(line, started)
                self._buffer.flush()
        except TransportError as e:
            return self._fail(
                classify_transport_error(
                    None, provider=request.provider, exc=e, model=request.model, url=request.url
                )
            )

        if self.token.aborted:
            return self._abort()

        for line in splitter.close():
            self._handle_line(line, started)
        return self._complete()

    def _handle_line(self, line: str, started: float) -> None:
        delta = decode(line, self.fmt, self._decode_state)
        if delta is None:
            return
        if self._first_delta_at is None:
            self._first_delta_at = time.monotonic()
            metrics.observe(
                "stream.ttft_ms",
                (self._first_delta_at - started) * 1000,
                labels={"format": self.fmt.value},
            )
        for url in delta.citations:
            if url not in self._seen_citations:
                self._seen_citations.add(url)
                self._citations.append(url)
        if delta.text:
            self._text += delta.text
            self._buffer.append_text(delta.text)

    def _drain(self) -> None:
        """Stop the timer and write the tail. A tail the sink refuses is dropped."""
        if self._buffer.stop_buffering():
            return
        dropped = len(self._buffer.pending)
        self._buffer.discard()
        metrics.inc("buffer.dropped_tails", labels={"format": self.fmt.value})
        logger.error(
            f"Sink refused the final write at offset {self._buffer.cursor}, "
            f"{dropped} chars not rendered"
        )

    def _complete(self) -> ModelTurn:
        if self.append_citations and self._citations and not self._citations_rendered:
            self._citations_rendered = True
            self._buffer.append_text(render_citations(self._citations))
        self._drain()
        self.state = SessionState.COMPLETED
        return ModelTurn(
            text=self._text,
            tool_calls=self._decode_state.tool_calls(),
            citations=list(self._citations),
            finish_reason=self._decode_state.finish_reason,
        )

    def _abort(self) -> ModelTurn:
        self.token.reset()
        erased = self._buffer.rollback()
        self.state = SessionState.ABORTED
        logger.info(f"Stream aborted, erased {erased} chars")
        return ModelTurn(aborted=True)

    def _fail(self, failure: TransportFailure) -> ModelTurn:
        """Replace whatever this session rendered with the error message."""
        logger.error(failure.log_message)
        self._buffer.rollback()
        self._buffer.append_text(failure.chat_message)
        self._drain()
        self.state = SessionState.FAILED
        return ModelTurn(
            text=failure.chat_message,
            citations=list(self._citations),
            error=failure.error_type.value,
        )
