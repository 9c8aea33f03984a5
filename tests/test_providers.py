"""Tests for provider lookup, tool capability detection and the HTTPX transport."""

import json

import httpx
import pytest

from chatmd.llm.context_builder import ContextBuilder
from chatmd.llm.contracts import ChatRequest, ProviderFormat
from chatmd.providers.base import ProviderTransport, TransportError
from chatmd.providers.http import HTTPXTransport
from chatmd.providers.registry import (
    ProviderCapabilityCache,
    get_provider_format,
    get_transport,
    matches_pattern,
    parse_model_id,
    parse_whitelist,
)
from chatmd.tools.base import ChatTool, ToolParam
from chatmd.tools.registry import ToolRegistry


def test_provider_transport_is_abstract():
    with pytest.raises(TypeError):
        ProviderTransport()  # type: ignore


def test_get_transport_returns_httpx():
    assert isinstance(get_transport(), HTTPXTransport)


# --- Provider names and model ids ---


@pytest.mark.parametrize(
    "provider, fmt",
    [
        ("openai", ProviderFormat.OPENAI),
        ("OpenRouter", ProviderFormat.OPENAI),
        ("lmstudio", ProviderFormat.OPENAI),
        ("anthropic", ProviderFormat.ANTHROPIC),
        ("gemini", ProviderFormat.GEMINI),
        ("ollama", ProviderFormat.OLLAMA),
    ],
)
def test_provider_format(provider, fmt):
    assert get_provider_format(provider) is fmt


def test_unknown_provider():
    with pytest.raises(ValueError):
        get_provider_format("carrier-pigeon")


def test_parse_model_id():
    parsed = parse_model_id("openrouter@anthropic/claude-sonnet-4")
    assert parsed.provider == "openrouter"
    assert parsed.model == "anthropic/claude-sonnet-4"
    assert parsed.name == "claude-sonnet-4"
    assert parsed.full_id == "openrouter@anthropic/claude-sonnet-4"


def test_parse_model_id_defaults_to_openai():
    parsed = parse_model_id("gpt-4o")
    assert parsed.provider == "openai"
    assert parsed.model == "gpt-4o"


# --- Tool whitelist ---


WHITELIST = """# OpenAI
o3, gpt-4o
claude-sonnet-4*

# Gemini
gemini-2.5-flash
"""


def test_parse_whitelist_skips_comments():
    assert parse_whitelist(WHITELIST) == ["o3", "gpt-4o", "claude-sonnet-4*", "gemini-2.5-flash"]


@pytest.mark.parametrize(
    "name, pattern, expected",
    [
        ("o3", "o3", True),
        ("o3-20251101", "o3", True),
        ("o3-2025-04-16", "o3", True),
        ("o3-mini", "o3", False),
        ("o3-2025-04", "o3", False),
        ("claude-sonnet-4-5", "claude-sonnet-4*", True),
        ("claude-opus-4", "claude-sonnet-4*", False),
    ],
)
def test_matches_pattern(name, pattern, expected):
    assert matches_pattern(name, pattern) is expected


class TestCapabilityCache:
    def test_supports_tools(self):
        cache = ProviderCapabilityCache(WHITELIST)
        assert cache.supports_tools("openai@o3-20251101")
        assert cache.supports_tools("openrouter@openai/gpt-4o")
        assert cache.supports_tools("anthropic@claude-sonnet-4-5")
        assert not cache.supports_tools("ollama@llama3.2")

    def test_empty_whitelist_allows_nothing(self):
        assert not ProviderCapabilityCache("").supports_tools("o3")

    def test_refresh_drops_memo(self):
        cache = ProviderCapabilityCache("o3")
        assert not cache.supports_tools("ollama@llama3.2")
        cache.refresh("llama3.2\n# local")
        assert cache.supports_tools("ollama@llama3.2")
        assert cache.patterns == ["llama3.2"]


# --- ContextBuilder ---


class Echo(ChatTool):
    name = "echo"
    description = "Echo text"
    parameters = [ToolParam(name="text", type="string", description="Text")]

    async def execute(self, text: str):
        return text


@pytest.fixture
def builder():
    registry = ToolRegistry()
    registry.register(Echo())
    return ContextBuilder(registry, ProviderCapabilityCache("gpt-4o\nclaude-sonnet-4*"))


def test_builder_attaches_tools_for_whitelisted_model(builder):
    request = builder.build(
        "openai@gpt-4o", [{"role": "user", "content": "hi"}], "https://api.openai.com/v1/chat/completions"
    )
    assert request.provider == "openai"
    assert request.payload["model"] == "gpt-4o"
    assert request.payload["tools"][0]["function"]["name"] == "echo"


def test_builder_skips_tools_for_unlisted_model(builder):
    request = builder.build("ollama@llama3.2", [], "http://localhost:11434/api/chat")
    assert "tools" not in request.payload


def test_builder_anthropic_system_field(builder):
    messages = [{"role": "system", "content": "Be brief."}, {"role": "user", "content": "hi"}]
    request = builder.build(
        "anthropic@claude-sonnet-4-5", messages, "https://api.anthropic.com/v1/messages", max_tokens=100
    )
    assert request.payload["system"] == "Be brief."
    assert request.payload["max_tokens"] == 100
    assert request.messages == [{"role": "user", "content": "hi"}]
    assert request.payload["tools"][0]["input_schema"]["required"] == ["text"]


# --- HTTPX transport ---


def make_request():
    return ChatRequest(
        provider="openai",
        model="gpt-4o",
        url="https://api.example.com/v1/chat/completions",
        messages=[{"role": "user", "content": "hi"}],
        headers={"Authorization": "Bearer sk-test"},
        payload={"model": "gpt-4o"},
    )


def transport_for(handler) -> HTTPXTransport:
    return HTTPXTransport(client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))


class TestHTTPXTransport:
    @pytest.mark.asyncio
    async def test_streams_bytes(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["body"] = json.loads(request.content)
            seen["auth"] = request.headers["Authorization"]
            return httpx.Response(200, content=b"data: one\n\ndata: two\n\n")

        transport = transport_for(handler)
        response = await transport.open_stream(make_request())
        assert response.ok

        data = b"".join([chunk async for chunk in response.chunks])
        await response.aclose()

        assert data == b"data: one\n\ndata: two\n\n"
        assert seen["body"]["stream"] is True
        assert seen["body"]["messages"] == [{"role": "user", "content": "hi"}]
        assert seen["auth"] == "Bearer sk-test"

    @pytest.mark.asyncio
    async def test_non_2xx_is_returned_not_raised(self):
        transport = transport_for(lambda request: httpx.Response(429, json={"error": {"message": "slow down"}}))
        response = await transport.open_stream(make_request())
        assert not response.ok
        assert response.status == 429
        assert b"slow down" in response.body
        assert response.chunks is None

    @pytest.mark.asyncio
    async def test_connect_error_is_returned(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        response = await transport_for(handler).open_stream(make_request())
        assert response.status is None
        assert isinstance(response.error, httpx.ConnectError)

    @pytest.mark.asyncio
    async def test_mid_stream_failure_becomes_transport_error(self):
        class Broken(httpx.AsyncByteStream):
            async def __aiter__(self):
                yield b"data: one\n\n"
                raise httpx.ReadError("connection reset")

        transport = transport_for(lambda request: httpx.Response(200, stream=Broken()))
        response = await transport.open_stream(make_request())

        chunks = []
        with pytest.raises(TransportError):
            async for chunk in response.chunks:
                chunks.append(chunk)
        await response.aclose()
        assert chunks == [b"data: one\n\n"]

    @pytest.mark.asyncio
    async def test_non_streaming_json(self):
        transport = transport_for(lambda request: httpx.Response(200, json={"choices": []}))
        response = await transport.open_non_streaming(make_request())
        assert response.ok
        assert response.data == {"choices": []}

    @pytest.mark.asyncio
    async def test_non_streaming_error(self):
        transport = transport_for(lambda request: httpx.Response(401, text="nope"))
        response = await transport.open_non_streaming(make_request())
        assert response.status == 401
        assert response.body == b"nope"

    @pytest.mark.asyncio
    async def test_borrowed_client_is_not_closed(self):
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200)))
        await HTTPXTransport(client=client).aclose()
        assert not client.is_closed
        await client.aclose()
