"""
HTTPX transport — the production ProviderTransport.

Streams the provider response body as raw bytes; framing into lines and
decoding are the session's job. Non-2xx responses are read in full and
returned with their status so the caller can classify them.
"""

from __future__ import annotations

import json
import logging
from typing import AsyncIterator

import httpx

import chatmd.core.config as config_module
from chatmd.llm.contracts import ChatRequest
from chatmd.providers.base import (
    JSONResponse,
    ProviderTransport,
    StreamResponse,
    TransportError,
)

logger = logging.getLogger(__name__)


class HTTPXTransport(ProviderTransport):
    def __init__(self, client: httpx.AsyncClient | None = None):
        """
        Args:
            client: Optional pre-built client (tests pass one with a
                MockTransport). Otherwise one is created from config.
        """
        self._owns_client = client is None
        transport_config = config_module.config.transport
        self.client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(
                transport_config.timeout, connect=transport_config.connect_timeout
            )
        )

    async def open_stream(self, request: ChatRequest) -> StreamResponse:
        http_request = self.client.build_request(
            "POST", request.url, json=request.body(), headers=request.headers
        )
        try:
            response = await self.client.send(http_request, stream=True)
        except httpx.HTTPError as e:
            logger.warning(f"Stream request to {request.url} failed: {e}")
            return StreamResponse(status=None, error=e)

        if not response.is_success:
            try:
                body = await response.aread()
            except httpx.HTTPError as e:
                body = str(e).encode()
            finally:
                await response.aclose()
            logger.warning(
                f"Provider returned HTTP {response.status_code} for {request.url}"
            )
            return StreamResponse(status=response.status_code, body=body)

        return StreamResponse(
            status=response.status_code,
            chunks=self._iter_bytes(response),
            on_close=response.aclose,
        )

    async def _iter_bytes(self, response: httpx.Response) -> AsyncIterator[bytes]:
        try:
            async for chunk in response.aiter_bytes():
                yield chunk
        except httpx.HTTPError as e:
            raise TransportError(str(e)) from e

    async def open_non_streaming(self, request: ChatRequest) -> JSONResponse:
        try:
            response = await self.client.post(
                request.url, json=request.body(), headers=request.headers
            )
        except httpx.HTTPError as e:
            logger.warning(f"Request to {request.url} failed: {e}")
            return JSONResponse(status=None, error=e)

        if not response.is_success:
            return JSONResponse(status=response.status_code, body=response.content)

        try:
            data = response.json()
        except json.JSONDecodeError:
            data = response.text
        return JSONResponse(status=response.status_code, data=data, body=response.content)

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()
