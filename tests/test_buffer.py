"""Tests for the output buffer, the text sink and line framing."""

import asyncio

import pytest

from chatmd.core.metrics import metrics
from chatmd.stream.buffer import OutputBuffer
from chatmd.stream.framing import LineSplitter
from chatmd.stream.sink import Sink, TextSink


class FlakySink(TextSink):
    """Fails the first `failures` writes."""

    def __init__(self, failures: int = 1):
        super().__init__()
        self.failures = failures
        self.attempts = 0

    def write(self, text, at_offset):
        self.attempts += 1
        if self.failures > 0:
            self.failures -= 1
            raise RuntimeError("cursor invalidated")
        super().write(text, at_offset)


# --- TextSink ---


class TestTextSink:
    def test_is_a_sink(self):
        assert isinstance(TextSink(), Sink)

    def test_write_inserts_at_offset(self):
        sink = TextSink("ac")
        sink.write("b", 1)
        assert sink.text == "abc"
        assert sink.current_offset() == 2

    def test_erase_range(self):
        sink = TextSink("hello world")
        sink.erase_range(5, 11)
        assert sink.text == "hello"
        assert sink.current_offset() == 5

    def test_write_outside_document(self):
        with pytest.raises(ValueError):
            TextSink("abc").write("x", 10)


# --- LineSplitter ---


class TestLineSplitter:
    def test_partial_lines_are_held(self):
        splitter = LineSplitter()
        assert splitter.feed(b"data: one\nda") == ["data: one"]
        assert splitter.feed(b"ta: two\n") == ["data: two"]
        assert splitter.close() == []

    def test_crlf(self):
        assert LineSplitter().feed(b"a\r\nb\r\n") == ["a", "b"]

    def test_multibyte_split_across_chunks(self):
        encoded = "héllo\n".encode()
        splitter = LineSplitter()
        assert splitter.feed(encoded[:2]) == []
        assert splitter.feed(encoded[2:]) == ["héllo"]

    def test_close_returns_tail(self):
        splitter = LineSplitter()
        splitter.feed(b'{"done": true}')
        assert splitter.close() == ['{"done": true}']


# --- OutputBuffer ---


class TestFlush:
    def test_flushes_up_to_last_newline(self):
        sink = TextSink()
        buffer = OutputBuffer(sink, 0, flush_interval=10, max_buffer_size=1000)
        buffer.append_text("| a | b |\n| 1 | ")
        buffer.flush()
        assert sink.text == "| a | b |\n"
        assert buffer.pending == "| 1 | "
        assert buffer.cursor == len("| a | b |\n")

    def test_no_newline_waits(self):
        sink = TextSink()
        buffer = OutputBuffer(sink, 0, max_buffer_size=1000)
        buffer.append_text("partial")
        buffer.flush()
        assert sink.text == ""
        assert buffer.pending == "partial"

    def test_overflow_forces_full_flush(self):
        sink = TextSink()
        buffer = OutputBuffer(sink, 0, max_buffer_size=10)
        buffer.append_text("x" * 11)
        buffer.flush()
        assert sink.text == "x" * 11
        assert buffer.pending == ""
        assert metrics.counter("buffer.forced_flushes") == 1

    def test_writes_at_tracked_cursor(self):
        sink = TextSink("before|after")
        buffer = OutputBuffer(sink, 7, max_buffer_size=1000)
        buffer.append_text("one\n")
        buffer.flush()
        buffer.append_text("two\n")
        buffer.flush()
        assert sink.text == "before|one\ntwo\nafter"
        assert buffer.cursor == 15

    def test_failed_write_keeps_buffer(self):
        sink = FlakySink(failures=1)
        buffer = OutputBuffer(sink, 0, max_buffer_size=1000)
        buffer.append_text("line\n")
        buffer.flush()
        assert sink.text == ""
        assert buffer.pending == "line\n"
        assert metrics.counter("buffer.write_failures") == 1

        buffer.flush()
        assert sink.text == "line\n"
        assert buffer.pending == ""

    def test_reentrant_flush_is_noop(self):
        class ReentrantSink(TextSink):
            def write(self, text, at_offset):
                # A timer tick landing mid-write
                buffer.flush()
                super().write(text, at_offset)

        sink = ReentrantSink()
        buffer = OutputBuffer(sink, 0, max_buffer_size=1000)
        buffer.append_text("a\nb\n")
        buffer.flush()
        assert sink.text == "a\nb\n"
        assert buffer.pending == ""


class TestLifecycle:
    def test_stop_flushes_partial_line(self):
        sink = TextSink()
        buffer = OutputBuffer(sink, 0, max_buffer_size=1000)
        buffer.append_text("no newline")
        buffer.stop_buffering()
        assert sink.text == "no newline"

    def test_stop_is_idempotent(self):
        sink = TextSink()
        buffer = OutputBuffer(sink, 0, max_buffer_size=1000)
        buffer.append_text("x")
        buffer.stop_buffering()
        buffer.stop_buffering()
        assert sink.text == "x"

    def test_stop_reports_refused_tail(self):
        sink = FlakySink(failures=1)
        buffer = OutputBuffer(sink, 0, max_buffer_size=1000)
        buffer.append_text("tail")
        assert buffer.stop_buffering() is False
        assert buffer.pending == "tail"
        assert buffer.stop_buffering() is True
        assert sink.text == "tail"

    def test_rollback_erases_written_text(self):
        sink = TextSink("head\n")
        buffer = OutputBuffer(sink, 5, max_buffer_size=1000)
        buffer.append_text("one\ntwo")
        buffer.flush()

        assert buffer.rollback() == 4
        assert sink.text == "head\n"
        assert buffer.cursor == 5
        assert buffer.pending == ""

    def test_discard_drops_content(self):
        sink = TextSink()
        buffer = OutputBuffer(sink, 0, max_buffer_size=1000)
        buffer.append_text("never written\n")
        buffer.discard()
        buffer.stop_buffering()
        assert sink.text == ""

    @pytest.mark.asyncio
    async def test_timer_flushes(self):
        sink = TextSink()
        buffer = OutputBuffer(sink, 0, flush_interval=0.01, max_buffer_size=1000)
        buffer.start_buffering()
        assert buffer.buffering
        buffer.append_text("tick\n")
        await asyncio.sleep(0.05)
        assert sink.text == "tick\n"
        buffer.stop_buffering()
        assert not buffer.buffering

    @pytest.mark.asyncio
    async def test_start_twice_keeps_one_timer(self):
        buffer = OutputBuffer(TextSink(), 0, flush_interval=0.01)
        buffer.start_buffering()
        timer = buffer._timer
        buffer.start_buffering()
        assert buffer._timer is timer
        buffer.discard()
