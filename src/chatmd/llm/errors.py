"""
Transport error classification.

Transport errors (non-2xx responses, network failures) are the only errors
that end a request. They never propagate as exceptions: they are classified
here into a TransportFailure whose chat_message is rendered inline where the
model output would have gone.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any

from chatmd.core.constants import (
    CHAT_ERROR_MESSAGE_401,
    CHAT_ERROR_MESSAGE_404,
    CHAT_ERROR_MESSAGE_NO_CONNECTION,
    CHAT_ERROR_RESPONSE,
    NEWLINE,
)


class ErrorType(str, Enum):
    API_ERROR = "api_error"
    NETWORK_ERROR = "network_error"
    AUTHENTICATION_ERROR = "authentication_error"
    NOT_FOUND_ERROR = "not_found_error"
    VALIDATION_ERROR = "validation_error"
    UNKNOWN_ERROR = "unknown_error"


@dataclass(frozen=True)
class TransportFailure:
    error_type: ErrorType
    status: int | None
    log_message: str
    chat_message: str


def _error_detail(body: Any) -> str:
    """Pull a human-readable message out of a provider error body."""
    if isinstance(body, (bytes, bytearray)):
        body = body.decode("utf-8", errors="replace")
    if isinstance(body, str):
        try:
            body = json.loads(body)
        except ValueError:
            return body.strip()
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str):
            return error
        if body.get("message"):
            return str(body["message"])
        return json.dumps(body)
    return "" if body is None else str(body)


def _context_info(model: str, url: str) -> str:
    parts = []
    if model:
        parts.append(f"Model: {model}")
    if url:
        parts.append(f"URL: {url}")
    return ", ".join(parts)


def classify_transport_error(
    status: int | None,
    body: Any = None,
    provider: str = "",
    exc: BaseException | None = None,
    model: str = "",
    url: str = "",
) -> TransportFailure:
    """Map an HTTP status / body or a network exception to a TransportFailure."""
    prefix = f"[chatmd] {provider}" if provider else "[chatmd]"
    context = _context_info(model, url)
    suffix = f" - {context}" if context else ""
    chat_suffix = f"{NEWLINE}{context}" if context else ""

    if exc is not None and status is None:
        return TransportFailure(
            error_type=ErrorType.NETWORK_ERROR,
            status=None,
            log_message=f"{prefix}: Network connection error ({exc}){suffix}",
            chat_message=CHAT_ERROR_MESSAGE_NO_CONNECTION,
        )

    detail = _error_detail(body)

    if status == 401:
        return TransportFailure(
            error_type=ErrorType.AUTHENTICATION_ERROR,
            status=status,
            log_message=f"{prefix}: Authentication failed (401)",
            chat_message=CHAT_ERROR_MESSAGE_401,
        )

    if status == 404:
        return TransportFailure(
            error_type=ErrorType.NOT_FOUND_ERROR,
            status=status,
            log_message=f"{prefix}: Resource not found (404){suffix}",
            chat_message=f"{CHAT_ERROR_MESSAGE_404}{chat_suffix}",
        )

    if status == 400 and provider == "openrouter":
        if "model" in detail:
            chat_message = (
                "I am sorry, I could not answer your request because of an "
                "error with the model."
            )
        else:
            chat_message = "I am sorry, your request contained invalid parameters (400)."
        return TransportFailure(
            error_type=ErrorType.VALIDATION_ERROR,
            status=status,
            log_message=f"{prefix}: Bad Request (400){suffix}",
            chat_message=chat_message,
        )

    error_type = ErrorType.API_ERROR if detail else ErrorType.UNKNOWN_ERROR
    detail = detail or f"HTTP {status}"
    return TransportFailure(
        error_type=error_type,
        status=status,
        log_message=f"{prefix}: {detail}{suffix}",
        chat_message=f"{CHAT_ERROR_RESPONSE}{NEWLINE}{detail}{chat_suffix}",
    )
