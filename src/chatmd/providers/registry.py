"""
Provider Registry — provider names, model ids and tool capability lookups.

Add a new OpenAI-compatible provider? Just add it to PROVIDER_FORMATS.
No plugin systems, no metaclasses.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

import chatmd.core.config as config_module
from chatmd.llm.contracts import ProviderFormat
from chatmd.providers.base import ProviderTransport

logger = logging.getLogger(__name__)

DEFAULT_PROVIDER = "openai"

PROVIDER_FORMATS: dict[str, ProviderFormat] = {
    "openai": ProviderFormat.OPENAI,
    "openrouter": ProviderFormat.OPENAI,
    "lmstudio": ProviderFormat.OPENAI,
    "groq": ProviderFormat.OPENAI,
    "anthropic": ProviderFormat.ANTHROPIC,
    "gemini": ProviderFormat.GEMINI,
    "ollama": ProviderFormat.OLLAMA,
}

# "o3" also matches "o3-20251101" and "o3-2025-04-16"
_DATE_SUFFIX = re.compile(r"^-(\d{8}|\d{4}-\d{2}-\d{2})$")


@dataclass(frozen=True)
class ModelId:
    """A parsed "provider@model" identifier."""

    provider: str
    model: str

    @property
    def full_id(self) -> str:
        return f"{self.provider}@{self.model}"

    @property
    def name(self) -> str:
        """Bare model name: "openrouter@openai/gpt-4o" -> "gpt-4o"."""
        if "/" in self.model:
            return self.model.split("/", 1)[1]
        return self.model


def parse_model_id(full_id: str) -> ModelId:
    """Split "provider@model"; ids without a known prefix default to OpenAI."""
    provider, sep, model = full_id.partition("@")
    if sep and provider:
        return ModelId(provider=provider.lower(), model=model)
    return ModelId(provider=DEFAULT_PROVIDER, model=full_id)


def get_provider_format(provider: str) -> ProviderFormat:
    fmt = PROVIDER_FORMATS.get(provider.lower())
    if fmt is None:
        raise ValueError(f"Unknown provider: {provider}")
    return fmt


def get_transport() -> ProviderTransport:
    from chatmd.providers.http import HTTPXTransport

    return HTTPXTransport()


def parse_whitelist(whitelist: str) -> list[str]:
    """Patterns separated by commas or newlines; "#" lines are comments."""
    patterns = []
    for line in re.split(r"[,\n]", whitelist or ""):
        line = line.strip()
        if line and not line.startswith("#"):
            patterns.append(line)
    return patterns


def matches_pattern(model_name: str, pattern: str) -> bool:
    if pattern.endswith("*"):
        return model_name.startswith(pattern[:-1])
    if model_name == pattern:
        return True
    if model_name.startswith(pattern):
        return bool(_DATE_SUFFIX.match(model_name[len(pattern):]))
    return False


class ProviderCapabilityCache:
    """
    Which models may be offered tools.

    Shared across requests and read-mostly: lookups are memoized per model id
    and the memo is dropped whenever the whitelist changes.
    """

    def __init__(self, whitelist: str | None = None):
        if whitelist is None:
            whitelist = config_module.config.tools.tool_whitelist
        self._patterns = parse_whitelist(whitelist)
        self._cache: dict[str, bool] = {}

    @property
    def patterns(self) -> list[str]:
        return list(self._patterns)

    def supports_tools(self, model_id: str) -> bool:
        cached = self._cache.get(model_id)
        if cached is not None:
            return cached

        name = parse_model_id(model_id).name
        supported = any(matches_pattern(name, p) for p in self._patterns)
        self._cache[model_id] = supported
        return supported

    def refresh(self, whitelist: str) -> None:
        self._patterns = parse_whitelist(whitelist)
        self._cache.clear()
        logger.info(f"Tool whitelist updated: {len(self._patterns)} patterns")
