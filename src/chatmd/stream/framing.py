"""
Byte → line framing for SSE and NDJSON streams.

Network chunks split lines (and multi-byte UTF-8 characters) at arbitrary
points. LineSplitter holds the incomplete tail until the rest arrives.
"""

from __future__ import annotations

import codecs


class LineSplitter:
    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._tail = ""

    def feed(self, chunk: bytes) -> list[str]:
        """Complete lines contained in the data seen so far."""
        text = self._tail + self._decoder.decode(chunk)
        lines = text.split("\n")
        self._tail = lines.pop()
        return [line.rstrip("\r") for line in lines]

    def close(self) -> list[str]:
        """Flush whatever is left once the stream has ended."""
        text = self._tail + self._decoder.decode(b"", final=True)
        self._tail = ""
        return [text.rstrip("\r")] if text else []
