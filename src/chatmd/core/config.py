"""
chatmd Configuration — single source of truth for all settings.

Reads from environment variables with sensible defaults.
No config files, no YAML, no complexity. Just env vars (and an optional .env).
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

load_dotenv()


def _csv(value: str) -> tuple[str, ...]:
    return tuple(part.strip() for part in value.split(",") if part.strip())


@dataclass(frozen=True)
class StreamConfig:
    """Output buffering settings."""

    flush_interval_ms: int = 200
    max_buffer_size: int = 10_000

    @property
    def flush_interval(self) -> float:
        """Flush interval in seconds (what asyncio.sleep wants)."""
        return self.flush_interval_ms / 1000

    @classmethod
    def from_env(cls) -> StreamConfig:
        return cls(
            flush_interval_ms=int(os.getenv("CHATMD_FLUSH_INTERVAL_MS", "200")),
            max_buffer_size=int(os.getenv("CHATMD_MAX_BUFFER_SIZE", "10000")),
        )


@dataclass(frozen=True)
class ToolConfig:
    """Tool calling and approval settings."""

    # Hard cap on tool rounds per request
    max_rounds: int = 2
    gated_tools: tuple[str, ...] = ("vault_search", "web_search")
    # Comma/newline separated model patterns, see ProviderCapabilityCache
    tool_whitelist: str = ""
    web_search_provider: str = "brave"  # brave | custom
    web_search_api_key: str = ""
    web_search_api_url: str = ""

    @classmethod
    def from_env(cls) -> ToolConfig:
        return cls(
            max_rounds=int(os.getenv("CHATMD_MAX_TOOL_ROUNDS", "2")),
            gated_tools=_csv(
                os.getenv("CHATMD_GATED_TOOLS", "vault_search,web_search")
            ),
            tool_whitelist=os.getenv("CHATMD_TOOL_WHITELIST", ""),
            web_search_provider=os.getenv("CHATMD_WEB_SEARCH_PROVIDER", "brave"),
            web_search_api_key=os.getenv("CHATMD_WEB_SEARCH_API_KEY", ""),
            web_search_api_url=os.getenv("CHATMD_WEB_SEARCH_API_URL", ""),
        )


@dataclass(frozen=True)
class TransportConfig:
    """HTTP transport settings."""

    timeout: float = 120.0
    connect_timeout: float = 10.0

    @classmethod
    def from_env(cls) -> TransportConfig:
        return cls(
            timeout=float(os.getenv("CHATMD_HTTP_TIMEOUT", "120.0")),
            connect_timeout=float(os.getenv("CHATMD_HTTP_CONNECT_TIMEOUT", "10.0")),
        )


@dataclass(frozen=True)
class ChatmdConfig:
    """Root configuration: stream, tools and transport settings."""

    stream: StreamConfig = field(default_factory=StreamConfig)
    tools: ToolConfig = field(default_factory=ToolConfig)
    transport: TransportConfig = field(default_factory=TransportConfig)

    @classmethod
    def from_env(cls) -> ChatmdConfig:
        return cls(
            stream=StreamConfig.from_env(),
            tools=ToolConfig.from_env(),
            transport=TransportConfig.from_env(),
        )


# Module-level singleton, replaced by reload_config()
config = ChatmdConfig.from_env()


def reload_config() -> ChatmdConfig:
    """Re-read the environment and replace the module-level singleton."""
    global config
    config = ChatmdConfig.from_env()
    return config
