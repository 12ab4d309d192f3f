"""Shared fixtures: isolated state directory and a scripted producing surface."""

from __future__ import annotations

import asyncio

import pytest

from harvest.config import DetectorTimings, default_heuristics
from harvest.surfaces.base import Surface
from harvest.types import PromptRequest

_ENV_VARS = (
    "HARVEST_HEURISTICS",
    "HARVEST_SURFACES",
    "HARVEST_LOCALES",
    "HARVEST_HARD_TIMEOUT",
    "HARVEST_START_TIMEOUT",
)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def harvest_home(tmp_path, monkeypatch):
    """Keep logs and metrics out of the real home directory."""
    home = tmp_path / "harvest-home"
    monkeypatch.setenv("HARVEST_HOME", str(home))
    for var in _ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    default_heuristics.cache_clear()
    yield home
    default_heuristics.cache_clear()


class ScriptedSurface(Surface):
    """In-memory surface replaying a timeline of UI states.

    Each step is ``(seconds_after_submit, changes)`` where changes may set
    ``busy``, ``done`` and ``html``. Changing ``html`` also fires a mutation
    notification unless ``emit_mutations`` is False.
    Snapshots after the first ``hang_after`` never return (only the next one
    when ``hang_once`` is set).
    """

    name = "scripted"

    def __init__(
        self,
        steps=(),
        baseline="",
        emit_mutations=True,
        submit_error=None,
        poll_error=None,
        hang_after=None,
        hang_once=False,
    ):
        self.steps = sorted(steps, key=lambda step: step[0])
        self.baseline = baseline
        self.emit_mutations = emit_mutations
        self.submit_error = submit_error
        self.poll_error = poll_error
        self.hang_after = hang_after
        self.hang_once = hang_once
        self.submitted: list[PromptRequest] = []
        self.snapshots = 0
        self.unsubscribed = False
        self._t0 = None

    def _now(self) -> float:
        return asyncio.get_running_loop().time()

    def _state(self) -> dict:
        state = {"busy": False, "done": False, "html": self.baseline}
        if self._t0 is None:
            return state
        elapsed = self._now() - self._t0
        for at, changes in self.steps:
            if at <= elapsed:
                state.update(changes)
        return state

    async def submit(self, request):
        if self.submit_error is not None:
            raise self.submit_error
        self.submitted.append(request)
        self._t0 = self._now()

    async def is_busy(self):
        if self.poll_error is not None:
            raise self.poll_error
        return self._state()["busy"]

    async def is_done(self):
        return self._state()["done"]

    async def snapshot(self):
        self.snapshots += 1
        if self.hang_after is not None and self.snapshots > self.hang_after:
            if not self.hang_once or self.snapshots == self.hang_after + 1:
                await asyncio.sleep(3600)
        return self._state()["html"]

    async def _fire_mutations(self, callback):
        for at, changes in self.steps:
            if "html" not in changes:
                continue
            delay = self._t0 + at - self._now()
            if delay > 0:
                await asyncio.sleep(delay)
            callback()

    async def watch(self, callback):
        if self._t0 is None:
            self._t0 = self._now()
        task = asyncio.create_task(self._fire_mutations(callback)) if self.emit_mutations else None

        async def unsubscribe():
            self.unsubscribed = True
            if task is not None:
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)

        return unsubscribe


@pytest.fixture
def scripted_surface():
    """Factory for ScriptedSurface instances."""
    return ScriptedSurface


@pytest.fixture
def fast_timings():
    return DetectorTimings(
        poll_interval=0.01,
        debounce=0.03,
        settle_quiet=0.05,
        done_settle=0.01,
        start_timeout=0.2,
        hard_timeout=2.0,
    )
