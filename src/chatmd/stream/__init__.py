"""chatmd Stream — from provider bytes to text in a sink."""

from chatmd.stream.buffer import OutputBuffer
from chatmd.stream.cancellation import CancellationToken
from chatmd.stream.framing import LineSplitter
from chatmd.stream.session import SessionState, StreamSession
from chatmd.stream.sink import Sink, TextSink

__all__ = [
    "CancellationToken",
    "LineSplitter",
    "OutputBuffer",
    "SessionState",
    "Sink",
    "StreamSession",
    "TextSink",
]
