"""
Sink — where rendered model output goes.

The core never touches a document directly. It writes through this
offset-based interface; an editor integration implements it over its own
buffer. Offsets are character positions.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class Sink(Protocol):
    def write(self, text: str, at_offset: int) -> None: ...

    def current_offset(self) -> int: ...

    def advance(self, offset: int, by: int) -> int: ...

    def erase_range(self, start: int, end: int) -> None: ...


class TextSink:
    """In-memory Sink backed by a string. Used by tests and headless callers."""

    def __init__(self, text: str = "", offset: int | None = None):
        self.text = text
        self._offset = len(text) if offset is None else offset

    def write(self, text: str, at_offset: int) -> None:
        if not 0 <= at_offset <= len(self.text):
            raise ValueError(f"Offset {at_offset} outside document (len={len(self.text)})")
        self.text = self.text[:at_offset] + text + self.text[at_offset:]
        self._offset = at_offset + len(text)

    def current_offset(self) -> int:
        return self._offset

    def advance(self, offset: int, by: int) -> int:
        return offset + by

    def erase_range(self, start: int, end: int) -> None:
        if start >= end:
            return
        self.text = self.text[:start] + self.text[end:]
        self._offset = start

    def __repr__(self) -> str:
        return f"<TextSink len={len(self.text)} offset={self._offset}>"
