"""Cooperative cancellation for one in-flight request."""

from __future__ import annotations


class CancellationToken:
    """
    Edge-triggered abort flag.

    abort() may be called from anywhere (a stop command, a UI handler). The
    streaming loop checks the flag at chunk and round boundaries only, and
    resets it once the abort has been handled so the token can be reused for
    the next request.
    """

    def __init__(self) -> None:
        self._aborted = False

    @property
    def aborted(self) -> bool:
        return self._aborted

    def abort(self) -> None:
        self._aborted = True

    def reset(self) -> None:
        self._aborted = False

    def __repr__(self) -> str:
        return f"<CancellationToken aborted={self._aborted}>"
