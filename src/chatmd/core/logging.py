"""
chatmd Logging — colorized or structured, request-aware logging.

Features:
- Color formatter for dev mode (auto-detects TTY)
- JSON structured formatter for production (CHATMD_LOG_FORMAT=json)
- RequestLogger: prefixes every line with the request and carries
  request_id / provider / model as structured fields
- RequestTimer for first-turn / tools latency tracking
- Quiets httpx and httpcore, which log every request line at INFO

Structured log extra fields (pass via logger.info(..., extra={...})):
    request_id, provider, model, round, duration_ms, status
"""

from __future__ import annotations

import json
import logging
import os
import sys
import time
from datetime import datetime, timezone
from typing import Any

LEVEL_COLORS = {
    "DEBUG": "\033[36m",  # Cyan
    "INFO": "\033[32m",  # Green
    "WARNING": "\033[33m",  # Yellow
    "ERROR": "\033[31m",  # Red
    "CRITICAL": "\033[1;31m",  # Bold red
}
RESET = "\033[0m"
DIM = "\033[2m"

STRUCTURED_FIELDS = ("request_id", "provider", "model", "round", "duration_ms", "status")

NOISY_LOGGERS = ("httpx", "httpcore", "httpcore.http11", "httpcore.connection")


class ColorFormatter(logging.Formatter):
    """Terminal formatter. Colors the level and dims the logger name."""

    def __init__(self, use_color: bool = True):
        super().__init__(
            fmt="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
            datefmt="%H:%M:%S",
        )
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        if not self.use_color:
            return super().format(record)

        levelname, name = record.levelname, record.name
        record.levelname = f"{LEVEL_COLORS.get(levelname, '')}{levelname}{RESET}"
        record.name = f"{DIM}{name}{RESET}"
        try:
            return super().format(record)
        finally:
            record.levelname, record.name = levelname, name


class StructuredFormatter(logging.Formatter):
    """One JSON object per line.

    Fields from STRUCTURED_FIELDS found on the record (via extra= or a
    RequestLogger) are lifted to the top level.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for key in STRUCTURED_FIELDS:
            if hasattr(record, key):
                entry[key] = getattr(record, key)
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class RequestLogger(logging.LoggerAdapter):
    """Logger bound to one chat request.

    Usage:
        log = RequestLogger(logger, request_id, "openai", "gpt-4o")
        log.info("chat started")  # -> "[1a2b3c4d] openai/gpt-4o: chat started"
    """

    def __init__(self, logger: logging.Logger, request_id: str, provider: str, model: str):
        super().__init__(
            logger, {"request_id": request_id, "provider": provider, "model": model}
        )
        self.prefix = f"[{request_id[:8]}] {provider}/{model}"

    def process(self, msg, kwargs):
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return f"{self.prefix}: {msg}", kwargs


class RequestTimer:
    """Stage timestamps for one chat request.

    Usage:
        timer = RequestTimer()
        timer.mark("first_turn")
        timer.mark("tools")
        timer.summary()  # -> "first_turn: 0.4s | tools: 3.1s | Total: 3.5s"
    """

    def __init__(self):
        self._start = time.monotonic()
        self._marks: list[tuple[str, float]] = []

    def mark(self, stage: str) -> None:
        self._marks.append((stage, time.monotonic()))

    def _durations(self) -> list[tuple[str, float]]:
        previous = self._start
        durations = []
        for stage, ts in self._marks:
            durations.append((stage, ts - previous))
            previous = ts
        return durations

    def elapsed(self, stage: str) -> float | None:
        """Time between the previous mark and this stage, or None if unmarked."""
        for name, duration in self._durations():
            if name == stage:
                return duration
        return None

    def total(self) -> float:
        return time.monotonic() - self._start

    def summary(self) -> str:
        parts = [f"{name}: {duration:.1f}s" for name, duration in self._durations()]
        parts.append(f"Total: {self.total():.1f}s")
        return " | ".join(parts)


def _should_use_color() -> bool:
    env_val = os.getenv("CHATMD_LOG_COLOR", "auto").lower()
    if env_val in ("true", "false"):
        return env_val == "true"
    return hasattr(sys.stdout, "isatty") and sys.stdout.isatty()


def setup_logging() -> None:
    """Configure the root logger. Call once at startup.

    Env vars:
        CHATMD_LOG_LEVEL   DEBUG / INFO / WARNING / ERROR (default: INFO)
        CHATMD_LOG_COLOR   true / false / auto (default: auto, TTY detection)
        CHATMD_LOG_FORMAT  text / json (default: text)
    """
    level_name = os.getenv("CHATMD_LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    log_format = os.getenv("CHATMD_LOG_FORMAT", "text").lower()

    if log_format == "json":
        formatter: logging.Formatter = StructuredFormatter()
    else:
        formatter = ColorFormatter(use_color=_should_use_color())

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()
    root.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger("chatmd").debug(
        "Logging configured (level=%s, format=%s)", level_name, log_format
    )
