"""
Wire-format decoders — raw provider lines in, canonical Deltas out.

One pure function per provider family, selected through a dispatch table:

    OpenAI-compatible (OpenAI, OpenRouter, LM Studio)  SSE    data: {...choices...}
    Anthropic                                          SSE    event: / data: {...type...}
    Gemini                                             SSE    data: {...candidates...}
    Ollama                                             NDJSON {...message | response...}

Decoding never raises. Empty lines, SSE comments and event-type lines, the
[DONE] sentinel and anything that is not a JSON object are dropped
(skip-and-continue). Each decoder may record tool-call fragments, the
finish reason and end-of-stream in the session-scoped DecodeState.

The non-streaming parsers at the bottom reproduce the same rules for a
complete response body.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Callable

from chatmd.core.constants import (
    NEWLINE,
    TRUNCATION_ERROR_FULL,
    TRUNCATION_ERROR_PARTIAL,
)
from chatmd.llm.contracts import Delta, ProviderFormat, ToolCall

logger = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"


@dataclass
class _PendingToolCall:
    id: str
    name: str
    arguments: str = ""
    parsed: dict[str, Any] | None = None


class DecodeState:
    """Session-scoped scratch shared by successive decode() calls of one stream.

    Tool calls arrive in fragments (OpenAI and Anthropic stream the JSON
    arguments in pieces) or whole (Gemini, Ollama). Both are collected here
    and assembled by tool_calls() once the stream has ended.
    """

    def __init__(self) -> None:
        self.finish_reason: str | None = None
        self.done = False
        self._pending: dict[Any, _PendingToolCall] = {}

    def start_tool_call(self, key: Any, call_id: str = "", name: str = "") -> None:
        pending = self._pending.get(key)
        if pending is None:
            self._pending[key] = _PendingToolCall(id=call_id, name=name)
            return
        if call_id:
            pending.id = call_id
        if name:
            pending.name = name

    def append_arguments(self, key: Any, fragment: str) -> None:
        if key not in self._pending:
            self.start_tool_call(key)
        self._pending[key].arguments += fragment

    def add_tool_call(self, name: str, arguments: Any, call_id: str = "") -> None:
        """Record a tool call that arrived in one piece."""
        key = len(self._pending)
        while key in self._pending:
            key += 1
        self._pending[key] = _PendingToolCall(
            id=call_id,
            name=name,
            parsed=arguments if isinstance(arguments, dict) else None,
            arguments="" if isinstance(arguments, dict) else str(arguments or ""),
        )

    def tool_calls(self) -> list[ToolCall]:
        """Assemble every recorded call, in arrival order."""
        calls = []
        for position, pending in enumerate(self._pending.values()):
            if not pending.name:
                continue
            arguments = pending.parsed
            if arguments is None:
                arguments = _parse_arguments(pending.arguments)
            calls.append(
                ToolCall(
                    id=pending.id or f"call_{position}",
                    name=pending.name,
                    arguments=arguments,
                )
            )
        return calls


def _parse_arguments(raw: str) -> dict[str, Any]:
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning(f"Failed to parse tool args: {raw[:100]}")
        return {}
    return parsed if isinstance(parsed, dict) else {"value": parsed}


def _load_object(payload: str) -> dict[str, Any] | None:
    try:
        data = json.loads(payload)
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


def _sse_data(line: str, state: DecodeState) -> dict[str, Any] | None:
    """The JSON object of an SSE data: line, or None for anything else."""
    line = line.strip()
    if not line.startswith("data:"):
        # blank, ": comment", "event: ...", "id: ..." lines
        return None
    payload = line[len("data:"):].strip()
    if payload == DONE_SENTINEL:
        state.done = True
        return None
    return _load_object(payload)


def _dicts(value: Any) -> list[dict[str, Any]]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]


def _text(value: Any) -> str:
    return value if isinstance(value, str) else ""


# ─── OpenAI-compatible ────────────────────────────────────────


def _openai_choice_content(choice: dict[str, Any]) -> str:
    delta = choice.get("delta")
    if isinstance(delta, dict):
        return _text(delta.get("content"))
    # Some compatible servers send a full message on the final chunk
    message = choice.get("message")
    if isinstance(message, dict):
        return _text(message.get("content"))
    return ""


def _collect_openai_tool_calls(choice: dict[str, Any], state: DecodeState) -> None:
    delta = choice.get("delta")
    if not isinstance(delta, dict):
        return
    for position, tc in enumerate(_dicts(delta.get("tool_calls"))):
        key = tc.get("index", position)
        function = tc.get("function") if isinstance(tc.get("function"), dict) else {}
        state.start_tool_call(key, _text(tc.get("id")), _text(function.get("name")))
        arguments = function.get("arguments")
        if isinstance(arguments, str) and arguments:
            state.append_arguments(key, arguments)


def decode_openai(line: str, state: DecodeState) -> Delta | None:
    data = _sse_data(line, state)
    if data is None:
        return None

    citations = tuple(extract_citations(data))
    choices = _dicts(data.get("choices"))

    for choice in choices:
        if choice.get("finish_reason"):
            state.finish_reason = choice["finish_reason"]

    truncated = [c for c in choices if c.get("finish_reason") == "length"]
    if truncated:
        completed = [c for c in choices if c.get("finish_reason") == "stop"]
        if completed:
            text = _openai_choice_content(completed[0]) + NEWLINE + TRUNCATION_ERROR_PARTIAL
        else:
            text = TRUNCATION_ERROR_FULL
        return Delta(text=text, citations=citations)

    text = ""
    if choices:
        _collect_openai_tool_calls(choices[0], state)
        text = _openai_choice_content(choices[0])

    if not text and not citations:
        return None
    return Delta(text=text, citations=citations)


# ─── Anthropic ────────────────────────────────────────────────


def decode_anthropic(line: str, state: DecodeState) -> Delta | None:
    data = _sse_data(line, state)
    if data is None:
        return None

    event_type = data.get("type")
    index = data.get("index", 0)

    if event_type == "content_block_delta":
        delta = data.get("delta") if isinstance(data.get("delta"), dict) else {}
        if delta.get("type") == "input_json_delta":
            state.append_arguments(index, _text(delta.get("partial_json")))
            return None
        text = _text(delta.get("text"))
        return Delta(text=text) if text else None

    if event_type == "content_block_start":
        block = data.get("content_block")
        if not isinstance(block, dict):
            return None
        if block.get("type") == "text":
            text = _text(block.get("text"))
            return Delta(text=text) if text else None
        if block.get("type") == "tool_use":
            state.start_tool_call(index, _text(block.get("id")), _text(block.get("name")))
            if isinstance(block.get("input"), dict) and block["input"]:
                state.append_arguments(index, json.dumps(block["input"]))
        return None

    if event_type == "message_delta":
        delta = data.get("delta")
        if isinstance(delta, dict) and delta.get("stop_reason"):
            state.finish_reason = delta["stop_reason"]
    elif event_type == "message_stop":
        state.done = True
    elif event_type == "error":
        logger.warning(f"Anthropic stream error event: {data.get('error')}")
    return None


# ─── Gemini ───────────────────────────────────────────────────


def _gemini_parts(data: dict[str, Any]) -> list[dict[str, Any]]:
    candidates = _dicts(data.get("candidates"))
    if not candidates:
        return []
    content = candidates[0].get("content")
    if not isinstance(content, dict):
        return []
    return _dicts(content.get("parts"))


def decode_gemini(line: str, state: DecodeState) -> Delta | None:
    data = _sse_data(line, state)
    if data is None:
        return None

    candidates = _dicts(data.get("candidates"))
    if candidates and candidates[0].get("finishReason"):
        state.finish_reason = candidates[0]["finishReason"]

    texts = []
    for part in _gemini_parts(data):
        if "text" in part:
            texts.append(_text(part["text"]))
        call = part.get("functionCall")
        if isinstance(call, dict) and call.get("name"):
            state.add_tool_call(_text(call["name"]), call.get("args") or {})

    text = "".join(texts)
    return Delta(text=text) if text else None


# ─── Ollama (NDJSON) ──────────────────────────────────────────


def decode_ollama(line: str, state: DecodeState) -> Delta | None:
    line = line.strip()
    if not line:
        return None
    data = _load_object(line)
    if data is None:
        return None

    if data.get("done") is True:
        state.done = True
        if data.get("done_reason"):
            state.finish_reason = data["done_reason"]

    text = ""
    message = data.get("message")
    if isinstance(message, dict):
        for tc in _dicts(message.get("tool_calls")):
            function = tc.get("function")
            if isinstance(function, dict) and function.get("name"):
                state.add_tool_call(
                    _text(function["name"]),
                    function.get("arguments") or {},
                    _text(tc.get("id")),
                )
        text = _text(message.get("content"))
    if not text and "response" in data:
        text = _text(data.get("response"))

    return Delta(text=text) if text else None


# ─── Dispatch ─────────────────────────────────────────────────

Decoder = Callable[[str, DecodeState], "Delta | None"]

DECODERS: dict[ProviderFormat, Decoder] = {
    ProviderFormat.OPENAI: decode_openai,
    ProviderFormat.ANTHROPIC: decode_anthropic,
    ProviderFormat.GEMINI: decode_gemini,
    ProviderFormat.OLLAMA: decode_ollama,
}


def decode(
    line: str, fmt: ProviderFormat | str, state: DecodeState | None = None
) -> Delta | None:
    """Decode one raw line into zero or one Delta. Never raises."""
    try:
        decoder = DECODERS.get(ProviderFormat(fmt))
    except ValueError:
        decoder = None
    if decoder is None:
        logger.warning(f"No decoder for provider format: {fmt!r}")
        return None

    try:
        return decoder(line, state if state is not None else DecodeState())
    except Exception:
        # Unexpected shapes are dropped like malformed JSON
        logger.debug(f"Dropped undecodable {fmt} line: {line[:100]!r}", exc_info=True)
        return None


# ─── Non-streaming responses ──────────────────────────────────


def _openai_message_content(choice: dict[str, Any]) -> str:
    message = choice.get("message")
    return _text(message.get("content")) if isinstance(message, dict) else ""


def _parse_openai_choices(choices: list[dict[str, Any]]) -> str | None:
    if not choices:
        return None
    completed = [c for c in choices if c.get("finish_reason") == "stop"]
    truncated = [c for c in choices if c.get("finish_reason") == "length"]
    if completed:
        content = _openai_message_content(completed[0])
        if truncated:
            return content + NEWLINE + TRUNCATION_ERROR_PARTIAL
        return content
    if truncated:
        return TRUNCATION_ERROR_FULL
    return _openai_message_content(choices[0])


def parse_non_streaming(data: Any, fmt: ProviderFormat | str) -> str:
    """Text of a complete (non-streaming) response body."""
    if not isinstance(data, dict):
        return "" if data is None else str(data)

    try:
        fmt = ProviderFormat(fmt)
    except ValueError:
        logger.warning(f"Unknown provider format: {fmt!r}")
        result = _parse_openai_choices(_dicts(data.get("choices")))
        if result is not None:
            return result
        return _text(data.get("response")) or json.dumps(data)

    if fmt is ProviderFormat.OPENAI:
        return _parse_openai_choices(_dicts(data.get("choices"))) or ""

    if fmt is ProviderFormat.ANTHROPIC:
        content = data.get("content")
        if isinstance(content, list):
            return "".join(
                _text(item.get("text")) for item in _dicts(content) if item.get("type") == "text"
            )
        return _text(content) or json.dumps(data)

    if fmt is ProviderFormat.GEMINI:
        parts = _gemini_parts(data)
        if parts:
            return "".join(_text(part.get("text")) for part in parts if "text" in part)
        return _text(data.get("text")) or json.dumps(data)

    message = data.get("message")
    if isinstance(message, dict) and message.get("content"):
        return _text(message["content"])
    if data.get("response"):
        return _text(data["response"])
    return json.dumps(data)


def extract_tool_calls(data: Any, fmt: ProviderFormat | str) -> list[ToolCall]:
    """Tool calls requested in a complete (non-streaming) response body."""
    if not isinstance(data, dict):
        return []
    state = DecodeState()
    try:
        fmt = ProviderFormat(fmt)
    except ValueError:
        return []

    if fmt is ProviderFormat.OPENAI:
        choices = _dicts(data.get("choices"))
        message = choices[0].get("message") if choices else None
        if isinstance(message, dict):
            for tc in _dicts(message.get("tool_calls")):
                function = tc.get("function") if isinstance(tc.get("function"), dict) else {}
                state.add_tool_call(
                    _text(function.get("name")),
                    _text(function.get("arguments")),
                    _text(tc.get("id")),
                )
    elif fmt is ProviderFormat.ANTHROPIC:
        for block in _dicts(data.get("content")):
            if block.get("type") == "tool_use":
                state.add_tool_call(
                    _text(block.get("name")), block.get("input") or {}, _text(block.get("id"))
                )
    elif fmt is ProviderFormat.GEMINI:
        for part in _gemini_parts(data):
            call = part.get("functionCall")
            if isinstance(call, dict):
                state.add_tool_call(_text(call.get("name")), call.get("args") or {})
    else:
        message = data.get("message")
        if isinstance(message, dict):
            for tc in _dicts(message.get("tool_calls")):
                function = tc.get("function") if isinstance(tc.get("function"), dict) else {}
                state.add_tool_call(
                    _text(function.get("name")),
                    function.get("arguments") or {},
                    _text(tc.get("id")),
                )
    return state.tool_calls()


def extract_citations(data: Any) -> list[str]:
    if not isinstance(data, dict):
        return []
    citations = data.get("citations")
    if not isinstance(citations, list):
        return []
    return [c for c in citations if isinstance(c, str)]
