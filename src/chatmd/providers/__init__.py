"""
chatmd Providers — transport interface, wire-format decoders, provider lookup.

The transport defines how bytes reach us; the decoders turn provider lines
into Deltas. Swap the transport in tests, add providers in the registry.
"""

from chatmd.providers.base import JSONResponse, ProviderTransport, StreamResponse, TransportError
from chatmd.providers.decoders import DecodeState, decode, parse_non_streaming
from chatmd.providers.registry import (
    ProviderCapabilityCache,
    get_provider_format,
    get_transport,
    parse_model_id,
)

__all__ = [
    "DecodeState",
    "JSONResponse",
    "ProviderCapabilityCache",
    "ProviderTransport",
    "StreamResponse",
    "TransportError",
    "decode",
    "get_provider_format",
    "get_transport",
    "parse_model_id",
    "parse_non_streaming",
]
