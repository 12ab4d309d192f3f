"""One prompt/response cycle against a producing surface.

    baseline snapshot -> submit -> detect completion -> extract -> dedupe
    -> filter snippets -> resolve names -> CaptureResult

The session is bound to the surface it was created with; nothing about the
"current" producer is global, so several integrations can run side by side.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Iterable, Sequence

from harvest.config import DetectorTimings, Heuristics, default_heuristics, load_timings
from harvest.detector import CompletionDetector, CompletionReason, DetectionOutcome, DetectorState
from harvest.fingerprint import Fingerprinter, fingerprint
from harvest.logging import log_failure, log_success
from harvest.metrics import log_capture
from harvest.parsers import extract_blocks
from harvest.paths import PathResolver, resolve_blocks
from harvest.snippets import SnippetFilter
from harvest.surfaces.base import Surface, SurfaceError
from harvest.types import CaptureResult, FailureReason, PromptRequest, RawBlock, ResolvedFile


class BlockCollector:
    """Accumulates blocks across repeated snapshots of one growing response.

    Holds the fingerprint set for a single session; discard it with the
    session.
    """

    def __init__(self, heuristics: Heuristics | None = None) -> None:
        self.heuristics = heuristics or default_heuristics()
        self.resolver = PathResolver(self.heuristics)
        self.snippets = SnippetFilter(self.resolver)
        self.fingerprints = Fingerprinter()
        self.blocks: list[RawBlock] = []
        self.blocks_seen = 0
        self.duplicates_dropped = 0
        self.snippets_dropped = 0

    def seed(self, snapshot: str) -> None:
        """Mark everything already on screen as seen."""
        self.fingerprints.seed(extract_blocks(snapshot, self.heuristics))

    def observe(self, snapshot: str) -> list[RawBlock]:
        """Extract a snapshot and keep blocks not seen before in this session."""
        return self.add(extract_blocks(snapshot, self.heuristics))

    def add(self, blocks: Iterable[RawBlock]) -> list[RawBlock]:
        accepted: list[RawBlock] = []
        for block in blocks:
            self.blocks_seen += 1
            if not self.fingerprints.admit(block.content):
                self.duplicates_dropped += 1
                continue
            if not self._supersede(block):
                self.blocks.append(block)
            accepted.append(block)
        return accepted

    def _supersede(self, block: RawBlock) -> bool:
        """Replace an earlier partial observation that this block extends."""
        text = block.content.strip()
        for index, existing in enumerate(self.blocks):
            previous = existing.content.strip()
            if previous and len(text) > len(previous) and text.startswith(previous):
                self.blocks[index] = block
                return True
        return False

    def resolve(self) -> list[ResolvedFile]:
        """Filter snippets and name the surviving blocks in discovery order."""
        kept = self.snippets.keep(self.blocks)
        self.snippets_dropped = len(self.blocks) - len(kept)
        return unique_files(resolve_blocks(kept, self.resolver))


def unique_files(files: Iterable[ResolvedFile]) -> list[ResolvedFile]:
    """Drop files whose trimmed content repeats an earlier one.

    Two blocks that differed only by their marker line become identical once
    the marker is stripped.
    """
    seen: set[str] = set()
    unique: list[ResolvedFile] = []
    for file in files:
        key = fingerprint(file.content)
        if key not in seen:
            seen.add(key)
            unique.append(file)
    return unique


def process_snapshots(
    snapshots: Sequence[str],
    heuristics: Heuristics | None = None,
    baseline: str | None = None,
) -> list[ResolvedFile]:
    """Run the offline half of a session over already-captured snapshots."""
    collector = BlockCollector(heuristics)
    if baseline:
        collector.seed(baseline)
    for snapshot in snapshots:
        collector.observe(snapshot)
    return collector.resolve()


class CaptureSession:
    """Single-use capture of one response from one surface.

    Args:
        surface: Producing surface this session is bound to.
        heuristics: Resolver/filter tables (bundled defaults when omitted).
        timings: Detector timings (surfaces.yaml defaults when omitted).
        record: Write session logs and metrics under HARVEST_HOME.

    Example:
        >>> session = CaptureSession(surface, timings=profile.timings)
        >>> result = await session.run("Build a landing page")
        >>> result.to_payload()
    """

    def __init__(
        self,
        surface: Surface,
        *,
        heuristics: Heuristics | None = None,
        timings: DetectorTimings | None = None,
        record: bool = True,
    ) -> None:
        self.surface = surface
        self.timings = timings or load_timings()
        self.record = record
        self.collector = BlockCollector(heuristics)
        self.detector: CompletionDetector | None = None
        self.outcome: DetectionOutcome | None = None
        self._started = False
        self._cancel_requested = False

    @property
    def generating(self) -> bool:
        return self.detector is not None and self.detector.state is DetectorState.GENERATING

    @property
    def blocks(self) -> list[RawBlock]:
        return self.collector.blocks

    def cancel(self) -> None:
        """Abort; the run resolves with whatever blocks were observed so far."""
        self._cancel_requested = True
        if self.detector is not None:
            self.detector.cancel()

    async def _snapshot(self) -> str:
        """Surface snapshot bounded by ``snapshot_timeout``."""
        timeout = self.timings.snapshot_timeout
        try:
            return await asyncio.wait_for(self.surface.snapshot(), timeout=timeout)
        except asyncio.TimeoutError:
            raise SurfaceError(
                FailureReason.PRODUCER_UNREACHABLE,
                f"{self.surface.name} snapshot did not return within {timeout:g}s",
            ) from None

    async def _observe_surface(self) -> None:
        self.collector.observe(await self._snapshot())

    async def _submit(self, request: PromptRequest) -> None:
        timeout = self.timings.hard_timeout
        try:
            await asyncio.wait_for(self.surface.submit(request), timeout=timeout)
        except asyncio.TimeoutError:
            raise SurfaceError(
                FailureReason.PRODUCER_UNREACHABLE,
                f"{self.surface.name} did not accept the prompt within {timeout:g}s",
            ) from None

    async def _final_snapshot(self, outcome: DetectionOutcome) -> None:
        try:
            await self._observe_surface()
        except SurfaceError:
            # After a hard timeout the partial blocks already observed are the result
            if not outcome.timed_out:
                raise

    async def _on_transition(self, state: DetectorState) -> None:
        if state is DetectorState.SETTLING:
            await self._observe_surface()

    async def run(self, request: PromptRequest | str) -> CaptureResult:
        """Submit the prompt and capture the response as named files.

        Environment failures and timeouts come back as failure results; only
        caller errors raise.

        Raises:
            ValueError: Prompt is empty and carries no images.
            RuntimeError: The session was already run.
        """
        if isinstance(request, str):
            request = PromptRequest(prompt=request)
        if request.is_empty:
            raise ValueError("Prompt is empty and carries no images")
        if self._started:
            raise RuntimeError("CaptureSession.run() may only be called once")
        self._started = True

        start = time.perf_counter()
        try:
            self.collector.seed(await self._snapshot())
            await self._submit(request)

            self.detector = CompletionDetector(self.surface, self.timings, on_transition=self._on_transition)
            if self._cancel_requested:
                self.detector.cancel()
            self.outcome = await self.detector.run()
            if self.outcome.reason is not CompletionReason.CANCELLED:
                await self._final_snapshot(self.outcome)
        except SurfaceError as exc:
            result = CaptureResult.failure(exc.reason, exc.message, files=self.collector.resolve())
        except Exception as exc:
            # Surfaces should raise SurfaceError; anything else still ends the
            # session as a failure, recorded below with its type and message
            result = CaptureResult.failure(
                FailureReason.PRODUCER_UNREACHABLE,
                f"{type(exc).__name__}: {exc}",
                files=self.collector.resolve(),
            )
        else:
            result = self._result(self.outcome)

        if self.record:
            self._record(request, result, start)
        return result

    def _result(self, outcome: DetectionOutcome) -> CaptureResult:
        files = self.collector.resolve()
        if outcome.reason is CompletionReason.HARD_TIMEOUT:
            return CaptureResult.failure(
                FailureReason.TIMEOUT,
                f"No completion within {self.timings.hard_timeout:g}s",
                files,
                completion=outcome.reason.value,
            )
        return CaptureResult.success(
            files,
            completion=outcome.reason.value,
            cancelled=outcome.reason is CompletionReason.CANCELLED,
        )

    def _record(self, request: PromptRequest, result: CaptureResult, start: float) -> None:
        duration_ms = int((time.perf_counter() - start) * 1000)
        files = [{"name": f.name, "length": len(f.content)} for f in result.files]
        extra = {
            "completion": result.completion,
            "cancelled": result.cancelled,
            "duration_ms": duration_ms,
            "images": len(request.images),
        }
        prompt = request.prompt[:200]

        if result.ok:
            log_success(self.surface.name, prompt=prompt, files=files, extra=extra)
        else:
            log_failure(
                self.surface.name,
                result.reason.value,
                message=result.message,
                prompt=prompt,
                files=files,
                extra=extra,
            )

        collector = self.collector
        log_capture(
            surface=self.surface.name,
            success=result.ok,
            reason=result.reason.value if result.reason else None,
            completion=result.completion,
            cancelled=result.cancelled,
            duration_ms=duration_ms,
            blocks_seen=collector.blocks_seen,
            duplicates_dropped=collector.duplicates_dropped,
            snippets_dropped=collector.snippets_dropped,
            file_count=len(result.files),
            unresolved_count=sum(1 for f in result.files if f.unresolved),
            error=None if result.ok else result.message,
        )


async def capture(
    surface: Surface,
    request: PromptRequest | str,
    **kwargs,
) -> CaptureResult:
    """Convenience wrapper: one session, one run."""
    return await CaptureSession(surface, **kwargs).run(request)


__all__ = [
    "BlockCollector",
    "CaptureSession",
    "capture",
    "process_snapshots",
    "unique_files",
]
