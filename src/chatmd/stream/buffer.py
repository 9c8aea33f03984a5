"""
Output Buffer — batches deltas before they reach the sink.

Writing every one-character delta is jittery and expensive, and writing a
half-received line breaks tables and fenced code blocks while they render.
So text is held until a newline arrives and flushed on a timer, up to the
last complete line. A buffer that grows past max_buffer_size is flushed in
full regardless of line boundaries.

Usage:
    buffer = OutputBuffer(sink, sink.current_offset())
    buffer.start_buffering()
    buffer.append_text(delta.text)
    buffer.flush()            # after each network read
    buffer.stop_buffering()   # end of stream: flush everything
"""

from __future__ import annotations

import asyncio
import logging

import chatmd.core.config as config_module
from chatmd.core.metrics import metrics
from chatmd.stream.sink import Sink

logger = logging.getLogger(__name__)


class OutputBuffer:
    def __init__(
        self,
        sink: Sink,
        offset: int,
        flush_interval: float | None = None,
        max_buffer_size: int | None = None,
    ):
        stream_config = config_module.config.stream
        self.sink = sink
        self.flush_interval = (
            stream_config.flush_interval if flush_interval is None else flush_interval
        )
        self.max_buffer_size = (
            stream_config.max_buffer_size if max_buffer_size is None else max_buffer_size
        )
        self._start = offset
        self._cursor = offset
        self._buffer = ""
        self._flushing = False
        self._timer: asyncio.Task | None = None

    @property
    def cursor(self) -> int:
        """Sink offset right after the last successfully written text."""
        return self._cursor

    @property
    def pending(self) -> str:
        return self._buffer

    @property
    def buffering(self) -> bool:
        return self._timer is not None

    def append_text(self, text: str) -> None:
        self._buffer += text

    def flush(self) -> None:
        """Write up to the last newline (or everything, on overflow)."""
        if not self._buffer or self._flushing:
            return

        if len(self._buffer) > self.max_buffer_size:
            metrics.inc("buffer.forced_flushes")
            self._flush_all()
            return

        last_newline = self._buffer.rfind("\n")
        if last_newline == -1:
            return
        self._write(last_newline + 1)

    def _flush_all(self) -> None:
        if not self._buffer or self._flushing:
            return
        self._write(len(self._buffer))

    def _write(self, length: int) -> bool:
        self._flushing = True
        try:
            chunk = self._buffer[:length]
            try:
                self.sink.write(chunk, self._cursor)
            except Exception as e:
                # Keep the text, the next flush retries it
                metrics.inc("buffer.write_failures")
                logger.warning(f"Sink write failed at offset {self._cursor}: {e}")
                return False
            self._cursor = self.sink.advance(self._cursor, len(chunk))
            self._buffer = self._buffer[length:]
            metrics.inc("buffer.flushes")
            return True
        finally:
            self._flushing = False

    def start_buffering(self) -> None:
        """Start the periodic flush timer. Must be called inside a running loop."""
        if self._timer is None:
            self._timer = asyncio.get_running_loop().create_task(self._tick())

    async def _tick(self) -> None:
        while True:
            await asyncio.sleep(self.flush_interval)
            self.flush()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def stop_buffering(self) -> bool:
        """Stop the timer and write everything left, partial line included.

        Returns False when the sink refused the write and text is still pending.
        """
        self._cancel_timer()
        self._flush_all()
        return not self._buffer

    def discard(self) -> None:
        """Stop the timer and drop unwritten text. Used on abort."""
        self._cancel_timer()
        self._buffer = ""

    def rollback(self) -> int:
        """Discard, erase everything written since the start offset and rewind.

        Returns the number of characters erased.
        """
        self.discard()
        erased = self._cursor - self._start
        if erased > 0:
            self.sink.erase_range(self._start, self._cursor)
        self._cursor = self._start
        return erased
