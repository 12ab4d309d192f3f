"""Capability interface for a producing surface.

Everything producer-specific (locating the input, submitting, reading the busy
indicator, snapshotting output) lives behind this class; the extraction and
naming pipeline is shared by every variant.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable

from harvest.types import FailureReason, PromptRequest

MutationCallback = Callable[[], None]
Unsubscribe = Callable[[], Awaitable[None]]


class SurfaceError(Exception):
    """Environment failure reported by a surface (no retry inside the engine)."""

    def __init__(self, reason: FailureReason, message: str | None = None) -> None:
        self.reason = reason
        self.message = message or reason.value
        super().__init__(self.message)


async def _no_op() -> None:
    return None


class Surface:
    """One attached producing surface.

    Subclasses implement ``submit``, ``is_busy`` and ``snapshot``. ``is_done``
    and ``watch`` are optional capabilities: a surface without a done
    indicator or mutation notifications keeps the defaults and the detector
    relies on polling alone.
    """

    name: str = "surface"

    async def submit(self, request: PromptRequest) -> None:
        """Deliver the prompt. Raises SurfaceError when controls are missing."""
        raise NotImplementedError

    async def is_busy(self) -> bool:
        """True while the producer shows its generating indicator."""
        raise NotImplementedError

    async def is_done(self) -> bool:
        """True while a finished-response indicator is visible."""
        return False

    async def snapshot(self) -> str:
        """Current output as HTML or markdown text."""
        raise NotImplementedError

    async def watch(self, callback: MutationCallback) -> Unsubscribe:
        """Call ``callback`` on every output mutation until unsubscribed."""
        return _no_op


__all__ = ["MutationCallback", "Surface", "SurfaceError", "Unsubscribe"]
