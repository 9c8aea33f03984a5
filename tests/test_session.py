"""Tests for StreamSession — streaming, abort rollback, citations, failures."""

import json

import pytest

from chatmd.core.constants import CHAT_ERROR_MESSAGE_401, CHAT_ERROR_MESSAGE_NO_CONNECTION, CITATIONS_HEADER
from chatmd.core.metrics import metrics
from chatmd.llm.contracts import ChatRequest, ProviderFormat
from chatmd.llm.errors import ErrorType
from chatmd.providers.base import StreamResponse, TransportError
from chatmd.stream.cancellation import CancellationToken
from chatmd.stream.session import SessionState, StreamSession, render_citations
from chatmd.stream.sink import TextSink

from fakes import ScriptedTransport, openai_chunk, openai_tool_call, sse


@pytest.fixture
def request_():
    return ChatRequest(
        provider="openai",
        model="openai@gpt-4o",
        url="https://api.openai.com/v1/chat/completions",
        messages=[{"role": "user", "content": "hi"}],
    )


def make_session(transport, sink, token=None, fmt=ProviderFormat.OPENAI):
    return StreamSession(
        transport, sink, fmt, token=token, flush_interval=10, max_buffer_size=10_000
    )


class TestCompletion:
    @pytest.mark.asyncio
    async def test_streams_text_into_sink(self, request_):
        sink = TextSink("Q: hi\n")
        transport = ScriptedTransport(
            [openai_chunk("Hello"), openai_chunk(" world\n"), openai_chunk("bye"), b"data: [DONE]\n\n"]
        )
        session = make_session(transport, sink)

        turn = await session.run(request_)

        assert turn.text == "Hello world\nbye"
        assert turn.aborted is False
        assert turn.error is None
        assert sink.text == "Q: hi\nHello world\nbye"
        assert session.state is SessionState.COMPLETED
        assert transport.closed == 1
        assert metrics.counter("stream.completed", labels={"format": "openai"}) == 1

    @pytest.mark.asyncio
    async def test_lines_split_across_chunks(self, request_):
        raw = openai_chunk("abc")
        transport = ScriptedTransport([raw[:7], raw[7:20], raw[20:]])
        sink = TextSink()

        turn = await make_session(transport, sink).run(request_)

        assert turn.text == "abc"
        assert sink.text == "abc"

    @pytest.mark.asyncio
    async def test_tool_calls_returned_on_turn(self, request_):
        transport = ScriptedTransport(
            [openai_chunk("Let me look."), openai_tool_call("c1", "web_search", {"query": "x"})]
        )
        turn = await make_session(transport, TextSink()).run(request_)

        assert turn.wants_tools
        assert turn.tool_calls[0].name == "web_search"
        assert turn.finish_reason == "tool_calls"

    @pytest.mark.asyncio
    async def test_ollama_ndjson(self, request_):
        lines = [
            json.dumps({"message": {"content": "Hi"}, "done": False}).encode() + b"\n",
            json.dumps({"message": {"content": "!"}, "done": True}).encode(),
        ]
        sink = TextSink()
        turn = await make_session(ScriptedTransport(lines), sink, fmt=ProviderFormat.OLLAMA).run(request_)
        assert turn.text == "Hi!"
        assert sink.text == "Hi!"

    @pytest.mark.asyncio
    async def test_anthropic_sse(self, request_):
        def event(name, payload):
            return f"event: {name}\n".encode() + sse({"type": name, **payload})

        transport = ScriptedTransport(
            [
                event("message_start", {"message": {"id": "msg_1"}}),
                event("content_block_start", {"index": 0, "content_block": {"type": "text", "text": "Hel"}}),
                event("content_block_delta", {"index": 0, "delta": {"type": "text_delta", "text": "lo\nwor"}}),
                event("content_block_delta", {"index": 0, "delta": {"type": "text_delta", "text": "ld"}}),
                event("content_block_stop", {"index": 0}),
                event("message_delta", {"delta": {"stop_reason": "end_turn"}}),
                event("message_stop", {}),
            ]
        )
        sink = TextSink("> ask\n")
        turn = await make_session(transport, sink, fmt=ProviderFormat.ANTHROPIC).run(request_)

        assert turn.text == "Hello\nworld"
        assert turn.finish_reason == "end_turn"
        assert sink.text == "> ask\nHello\nworld"

    @pytest.mark.asyncio
    async def test_gemini_sse(self, request_):
        def chunk(*parts, **candidate):
            return sse({"candidates": [{"content": {"parts": [{"text": p} for p in parts]}, **candidate}]})

        transport = ScriptedTransport(
            [chunk("Para", "graph one.\n"), chunk("Second ", "line"), chunk("", finishReason="STOP")]
        )
        sink = TextSink()
        turn = await make_session(transport, sink, fmt=ProviderFormat.GEMINI).run(request_)

        assert turn.text == "Paragraph one.\nSecond line"
        assert turn.finish_reason == "STOP"
        assert sink.text == "Paragraph one.\nSecond line"

    @pytest.mark.asyncio
    async def test_session_runs_once(self, request_):
        session = make_session(ScriptedTransport([openai_chunk("a")]), TextSink())
        await session.run(request_)
        with pytest.raises(RuntimeError):
            await session.run(request_)


class TestCitations:
    @pytest.mark.asyncio
    async def test_citation_block_deduplicated_in_first_seen_order(self, request_):
        transport = ScriptedTransport(
            [
                openai_chunk("Answer", citations=["https://b.example", "https://a.example"]),
                openai_chunk(".", citations=["https://a.example", "https://c.example"]),
                openai_chunk("", citations=["https://b.example"]),
            ]
        )
        sink = TextSink()
        turn = await make_session(transport, sink).run(request_)

        expected = ["https://b.example", "https://a.example", "https://c.example"]
        assert turn.citations == expected
        assert sink.text == "Answer." + render_citations(expected)
        assert sink.text.count(CITATIONS_HEADER) == 1
        assert sink.text.count("https://a.example") == 1

    @pytest.mark.asyncio
    async def test_no_citations_no_block(self, request_):
        sink = TextSink()
        await make_session(ScriptedTransport([openai_chunk("x")]), sink).run(request_)
        assert CITATIONS_HEADER not in sink.text

    @pytest.mark.asyncio
    async def test_citations_left_to_caller(self, request_):
        transport = ScriptedTransport([openai_chunk("x", citations=["https://a.example"])])
        sink = TextSink()
        session = StreamSession(transport, sink, ProviderFormat.OPENAI, append_citations=False)

        turn = await session.run(request_)

        assert turn.citations == ["https://a.example"]
        assert sink.text == "x"


class TestAbort:
    @pytest.mark.asyncio
    async def test_abort_mid_stream_rolls_back(self, request_):
        token = CancellationToken()
        sink = TextSink("# Chat\n")
        transport = ScriptedTransport(
            [openai_chunk("first line\n"), openai_chunk("second"), token.abort, openai_chunk("never")]
        )
        session = make_session(transport, sink, token=token)

        turn = await session.run(request_)

        assert turn.aborted is True
        assert turn.text == ""
        assert sink.text == "# Chat\n"
        assert token.aborted is False  # reset for the next request
        assert session.state is SessionState.ABORTED
        assert transport.closed == 1

    @pytest.mark.asyncio
    async def test_abort_before_open(self, request_):
        token = CancellationToken()
        token.abort()
        transport = ScriptedTransport([openai_chunk("x")])
        turn = await make_session(transport, TextSink(), token=token).run(request_)
        assert turn.aborted is True
        assert transport.requests == []

    @pytest.mark.asyncio
    async def test_abort_after_last_chunk(self, request_):
        token = CancellationToken()
        sink = TextSink()
        transport = ScriptedTransport([openai_chunk("all\n"), token.abort])
        turn = await make_session(transport, sink, token=token).run(request_)
        assert turn.aborted is True
        assert sink.text == ""


class TestFailures:
    @pytest.mark.asyncio
    async def test_http_401(self, request_):
        sink = TextSink("prompt\n")
        transport = ScriptedTransport(StreamResponse(status=401, body=b'{"error": {"message": "bad key"}}'))
        session = make_session(transport, sink)

        turn = await session.run(request_)

        assert turn.error == ErrorType.AUTHENTICATION_ERROR.value
        assert sink.text == "prompt\n" + CHAT_ERROR_MESSAGE_401
        assert session.state is SessionState.FAILED

    @pytest.mark.asyncio
    async def test_network_error_before_response(self, request_):
        sink = TextSink()
        transport = ScriptedTransport(StreamResponse(status=None, error=ConnectionError("refused")))
        turn = await make_session(transport, sink).run(request_)
        assert turn.error == ErrorType.NETWORK_ERROR.value
        assert sink.text == CHAT_ERROR_MESSAGE_NO_CONNECTION

    @pytest.mark.asyncio
    async def test_connection_drop_replaces_partial_output(self, request_):
        sink = TextSink("prompt\n")
        transport = ScriptedTransport(
            [openai_chunk("partial line\n"), openai_chunk("half"), TransportError("reset by peer")]
        )
        turn = await make_session(transport, sink).run(request_)

        assert turn.error == ErrorType.NETWORK_ERROR.value
        assert turn.text == CHAT_ERROR_MESSAGE_NO_CONNECTION
        assert "partial line" not in sink.text
        assert sink.text == "prompt\n" + CHAT_ERROR_MESSAGE_NO_CONNECTION
        assert transport.closed == 1

    @pytest.mark.asyncio
    async def test_malformed_lines_are_skipped(self, request_):
        transport = ScriptedTransport(
            [b"data: {broken\n\n", b": ping\n\n", sse({"choices": [{"delta": {"content": "ok"}}]})]
        )
        sink = TextSink()
        turn = await make_session(transport, sink).run(request_)
        assert turn.error is None
        assert sink.text == "ok"

    @pytest.mark.asyncio
    async def test_refused_final_write_is_reported(self, request_, caplog):
        class ClosedDocumentSink(TextSink):
            closed = False

            def write(self, text, at_offset):
                if self.closed:
                    raise RuntimeError("document closed")
                super().write(text, at_offset)

        sink = ClosedDocumentSink()

        def close_document():
            sink.closed = True

        transport = ScriptedTransport([openai_chunk("line\n"), openai_chunk("tail"), close_document])
        session = make_session(transport, sink)

        turn = await session.run(request_)

        assert session.state is SessionState.COMPLETED
        assert turn.text == "line\ntail"
        assert sink.text == "line\n"
        assert metrics.counter("buffer.dropped_tails", labels={"format": "openai"}) == 1
        assert "4 chars not rendered" in caplog.text
