"""
Provider transport boundary.

A ProviderTransport moves a ChatRequest to a provider and hands back either
an async byte stream or a decoded JSON body. It never raises on a non-2xx
status and never raises on connection failure: both are reported through
the response object so the session can classify them. Only a failure in the
middle of an already-open stream surfaces as TransportError.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable

from chatmd.llm.contracts import ChatRequest


class TransportError(Exception):
    """The connection broke while a stream was being read."""


@dataclass
class StreamResponse:
    """
    An opened provider stream.

    status is None when no HTTP response was received at all (network
    failure); error then carries the exception. body holds the error body
    for non-2xx responses. chunks is only set for 2xx responses.
    """

    status: int | None
    chunks: AsyncIterator[bytes] | None = None
    body: bytes = b""
    error: BaseException | None = None
    on_close: Callable[[], Awaitable[None]] | None = field(default=None, repr=False)

    @property
    def ok(self) -> bool:
        return self.status is not None and 200 <= self.status < 300

    async def aclose(self) -> None:
        if self.on_close is not None:
            close, self.on_close = self.on_close, None
            await close()


@dataclass
class JSONResponse:
    """A complete (non-streaming) provider response."""

    status: int | None
    data: Any = None
    body: bytes = b""
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.status is not None and 200 <= self.status < 300


class ProviderTransport(ABC):
    """Moves requests to a provider endpoint."""

    @abstractmethod
    async def open_stream(self, request: ChatRequest) -> StreamResponse:
        ...

    @abstractmethod
    async def open_non_streaming(self, request: ChatRequest) -> JSONResponse:
        ...

    async def aclose(self) -> None:
        """Release pooled connections. Default: nothing to release."""
