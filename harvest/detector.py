"""Decide when a producing surface has finished generating.

Two sensors feed one queue: mutation notifications pushed by the surface and
a poller reading the busy/done indicators. The state machine below is the only
consumer, so it is the single writer of the detector state and finalization
happens exactly once.

    WAITING_TO_START -> GENERATING -> SETTLING -> COMPLETE
                            ^------------'

A hard timeout forces COMPLETE from any state.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum

from harvest.config import DetectorTimings
from harvest.surfaces.base import Surface


class DetectorState(str, Enum):
    WAITING_TO_START = "waiting_to_start"
    GENERATING = "generating"
    SETTLING = "settling"
    COMPLETE = "complete"


class CompletionReason(str, Enum):
    SETTLED = "settled"
    START_TIMEOUT = "start_timeout"
    HARD_TIMEOUT = "hard_timeout"
    CANCELLED = "cancelled"


class Signal(str, Enum):
    MUTATION = "mutation"
    BUSY = "busy"
    IDLE = "idle"
    DONE = "done"
    CANCEL = "cancel"
    ERROR = "error"


TransitionHook = Callable[[DetectorState], Awaitable[None]]


@dataclass
class DetectionOutcome:
    """How and when the detector reached COMPLETE."""

    reason: CompletionReason
    elapsed: float
    history: list[DetectorState] = field(default_factory=list)

    @property
    def timed_out(self) -> bool:
        return self.reason is CompletionReason.HARD_TIMEOUT


class CompletionDetector:
    """One-shot completion detector for a single capture session.

    Args:
        surface: Producing surface to observe.
        timings: Poll, debounce, settle and timeout durations.
        on_transition: Awaited on entry to GENERATING and SETTLING; a hook
            still running at the hard deadline completes the detector with
            HARD_TIMEOUT.
    """

    def __init__(
        self,
        surface: Surface,
        timings: DetectorTimings | None = None,
        on_transition: TransitionHook | None = None,
    ) -> None:
        self.surface = surface
        self.timings = timings or DetectorTimings()
        self.on_transition = on_transition
        self.state = DetectorState.WAITING_TO_START
        self.history: list[DetectorState] = [self.state]
        self._queue: asyncio.Queue[tuple[Signal, BaseException | None]] = asyncio.Queue()
        self._busy = False
        self._last_change = 0.0
        self._settle_deadline = 0.0
        self._started = False
        self._hard_deadline = 0.0

    # -- sensor entry points ---------------------------------------------

    def notify_mutation(self) -> None:
        self._post(Signal.MUTATION)

    def cancel(self) -> None:
        """Resolve as soon as possible; a no-op once COMPLETE."""
        self._post(Signal.CANCEL)

    def _post(self, signal: Signal, error: BaseException | None = None) -> None:
        if self.state is DetectorState.COMPLETE:
            return
        self._queue.put_nowait((signal, error))

    async def _poll(self) -> None:
        # A done indicator counts only after it was seen absent in this session
        done_cleared = False
        while True:
            try:
                busy = await self.surface.is_busy()
                done = await self.surface.is_done()
            except Exception as exc:
                # Re-raised by the state machine
                self._post(Signal.ERROR, exc)
                return
            self._post(Signal.BUSY if busy else Signal.IDLE)
            if not done:
                done_cleared = True
            elif done_cleared:
                self._post(Signal.DONE)
            await asyncio.sleep(self.timings.poll_interval)

    # -- state machine ---------------------------------------------------

    async def run(self) -> DetectionOutcome:
        """Observe the surface until COMPLETE and report why it completed."""
        if self._started:
            raise RuntimeError("CompletionDetector.run() may only be called once")
        self._started = True

        loop = asyncio.get_running_loop()
        started_at = loop.time()
        unsubscribe = await asyncio.wait_for(
            self.surface.watch(self.notify_mutation),
            timeout=self.timings.hard_timeout,
        )
        poller = asyncio.create_task(self._poll())
        try:
            reason = await self._drive(loop, started_at)
        finally:
            self._finish()
            poller.cancel()
            await asyncio.gather(poller, return_exceptions=True)
            await unsubscribe()

        return DetectionOutcome(
            reason=reason,
            elapsed=loop.time() - started_at,
            history=list(self.history),
        )

    def _finish(self) -> None:
        if self.state is not DetectorState.COMPLETE:
            self.state = DetectorState.COMPLETE
            self.history.append(self.state)

    async def _enter(self, state: DetectorState) -> None:
        self.state = state
        self.history.append(state)
        if self.on_transition is not None:
            # Bounded by the hard deadline; a hung hook surfaces as TimeoutError
            remaining = max(0.0, self._hard_deadline - asyncio.get_running_loop().time())
            await asyncio.wait_for(self.on_transition(state), timeout=remaining)

    def _next_deadline(self, hard_deadline: float, start_deadline: float) -> float:
        if self.state is DetectorState.WAITING_TO_START:
            return min(hard_deadline, start_deadline)
        if self.state is DetectorState.SETTLING:
            return min(hard_deadline, self._settle_deadline)
        if self._busy:
            return hard_deadline
        return min(hard_deadline, self._last_change + self.timings.debounce)

    async def _drive(self, loop: asyncio.AbstractEventLoop, started_at: float) -> CompletionReason:
        hard_deadline = self._hard_deadline = started_at + self.timings.hard_timeout
        start_deadline = started_at + self.timings.start_timeout

        while True:
            now = loop.time()
            if now >= hard_deadline:
                return CompletionReason.HARD_TIMEOUT
            timeout = max(0.0, self._next_deadline(hard_deadline, start_deadline) - now)
            try:
                signal, error = await asyncio.wait_for(self._queue.get(), timeout=timeout)
            except asyncio.TimeoutError:
                signal, error = None, None

            if signal is Signal.ERROR and error is not None:
                raise error
            if signal is Signal.CANCEL:
                return CompletionReason.CANCELLED

            now = loop.time()
            if now >= hard_deadline:
                return CompletionReason.HARD_TIMEOUT
            try:
                reason = await self._step(signal, now, start_deadline)
            except asyncio.TimeoutError:
                # Transition hook ran into the hard deadline
                return CompletionReason.HARD_TIMEOUT
            if reason is not None:
                return reason

    async def _step(self, signal: Signal | None, now: float, start_deadline: float) -> CompletionReason | None:
        if signal is Signal.BUSY:
            self._busy = True
        elif signal is Signal.IDLE:
            self._busy = False
        elif signal is Signal.MUTATION:
            self._last_change = now

        if self.state is DetectorState.WAITING_TO_START:
            # A done indicator here belongs to an earlier response
            if signal in (Signal.BUSY, Signal.MUTATION):
                self._last_change = now
                await self._enter(DetectorState.GENERATING)
            elif now >= start_deadline:
                return CompletionReason.START_TIMEOUT
            return None

        if self.state is DetectorState.GENERATING:
            if self._busy:
                return None
            if signal is Signal.DONE:
                self._settle_deadline = now + self.timings.done_settle
                await self._enter(DetectorState.SETTLING)
            elif now >= self._last_change + self.timings.debounce:
                self._settle_deadline = now + self.timings.settle_quiet
                await self._enter(DetectorState.SETTLING)
            return None

        # SETTLING
        if signal is Signal.MUTATION or self._busy:
            await self._enter(DetectorState.GENERATING)
            return None
        if signal is Signal.DONE:
            self._settle_deadline = min(self._settle_deadline, now + self.timings.done_settle)
        if now >= self._settle_deadline:
            return CompletionReason.SETTLED
        return None


__all__ = [
    "CompletionDetector",
    "CompletionReason",
    "DetectionOutcome",
    "DetectorState",
    "Signal",
]
