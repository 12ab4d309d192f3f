"""Tests for session.py - one capture cycle end to end."""

import asyncio
import json

import pytest

from harvest.config import DetectorTimings
from harvest.metrics import get_metrics
from harvest.session import BlockCollector, CaptureSession, capture, process_snapshots
from harvest.surfaces.base import SurfaceError
from harvest.types import FailureReason, ImageAttachment, PromptRequest, ResolvedFile

APP_HTML = """<main><p>Here you go:</p><pre><code class="language-tsx">// FILE: src/App.tsx
import React from 'react';

export default function App() {
  return &lt;div className="app"&gt;Hello&lt;/div&gt;;
}
</code></pre></main>"""

DOCTYPE_HTML = """<main><pre><code>&lt;!DOCTYPE html&gt;
&lt;html&gt;&lt;head&gt;&lt;title&gt;Demo&lt;/title&gt;&lt;/head&gt;&lt;body&gt;&lt;/body&gt;&lt;/html&gt;
</code></pre></main>"""

NPM_HTML = "<main><pre><code>npm install lodash</code></pre></main>"

LONG_BLOCK = "\n".join(f"const value{i} = {i} * 2; // line {i}" for i in range(20))
OTHER_BLOCK = "\n".join(f"export const other{i} = '{i}';" for i in range(8))


def pre(*blocks: str) -> str:
    return "<main>" + "".join(f"<pre><code>{b}</code></pre>" for b in blocks) + "</main>"


def answered(html: str, busy_until: float = 0.08):
    """Timeline: busy, content appears, busy clears."""
    return [(0.01, {"busy": True}), (0.03, {"html": html}), (busy_until, {"busy": False})]


# ─────────────────────────────────────────────────────────────
# Scenarios
# ─────────────────────────────────────────────────────────────


@pytest.mark.anyio
class TestScenarios:
    """End-to-end capture scenarios."""

    async def test_marked_component(self, scripted_surface, fast_timings):
        """Scenario A: FILE marker names the block and is stripped."""
        surface = scripted_surface(answered(APP_HTML))
        result = await CaptureSession(surface, timings=fast_timings).run("Build the app")

        assert result.ok
        assert result.completion == "settled"
        assert [f.name for f in result.files] == ["src/App.tsx"]
        content = result.files[0].content
        assert content.startswith("import React from 'react';")
        assert "FILE:" not in content
        assert '<div className="app">' in content

    async def test_install_command_excluded(self, scripted_surface, fast_timings):
        """Scenario B: a lone npm install block yields no files."""
        surface = scripted_surface(answered(NPM_HTML))
        result = await CaptureSession(surface, timings=fast_timings).run("How do I add lodash?")

        assert result.ok
        assert result.files == []
        assert result.to_payload() == {"code": "", "files": []}

    async def test_repeated_block_emitted_once(self, scripted_surface, fast_timings):
        """Scenario C: the same block in several snapshots appears once."""
        assert len(LONG_BLOCK) >= 500
        steps = [
            (0.01, {"busy": True}),
            (0.03, {"html": pre(LONG_BLOCK)}),
            (0.08, {"busy": False}),
            (0.10, {"html": pre(LONG_BLOCK, OTHER_BLOCK)}),
        ]
        surface = scripted_surface(steps)
        result = await CaptureSession(surface, timings=fast_timings).run("Write two modules")

        contents = [f.content for f in result.files]
        assert contents.count(LONG_BLOCK) == 1
        assert OTHER_BLOCK in contents
        assert len(contents) == len(set(contents))
        assert surface.snapshots >= 3

    async def test_doctype_named_index(self, scripted_surface, fast_timings):
        """Scenario D: unmarked doctype content resolves to index.html."""
        surface = scripted_surface(answered(DOCTYPE_HTML))
        result = await CaptureSession(surface, timings=fast_timings).run("Landing page")

        assert [f.name for f in result.files] == ["index.html"]
        assert result.to_payload()["filename"] == "index.html"

    async def test_never_busy_resolves_at_start_timeout(self, scripted_surface, fast_timings):
        """Scenario E: no busy indicator; whatever is present is returned."""
        surface = scripted_surface([(0.0, {"html": DOCTYPE_HTML})], emit_mutations=False)
        result = await CaptureSession(surface, timings=fast_timings).run("Landing page")

        assert result.ok
        assert result.completion == "start_timeout"
        assert [f.name for f in result.files] == ["index.html"]

    async def test_never_busy_and_empty(self, scripted_surface, fast_timings):
        result = await CaptureSession(scripted_surface(), timings=fast_timings).run("Anything")
        assert result.ok
        assert result.files == []


# ─────────────────────────────────────────────────────────────
# Session behaviour
# ─────────────────────────────────────────────────────────────


@pytest.mark.anyio
class TestSessionBehaviour:
    """Baseline seeding, failures, cancellation and recording."""

    async def test_baseline_blocks_not_reemitted(self, scripted_surface, fast_timings):
        old = pre(LONG_BLOCK)
        surface = scripted_surface(answered(pre(LONG_BLOCK, OTHER_BLOCK)), baseline=old)
        result = await CaptureSession(surface, timings=fast_timings).run("Add another module")

        assert [f.content for f in result.files] == [OTHER_BLOCK]

    async def test_prompt_delivered(self, scripted_surface, fast_timings):
        surface = scripted_surface()
        request = PromptRequest(prompt="", images=[ImageAttachment(base64="aGk=")])
        await CaptureSession(surface, timings=fast_timings).run(request)
        assert surface.submitted == [request]

    async def test_submit_failure(self, scripted_surface, fast_timings, harvest_home):
        error = SurfaceError(FailureReason.INPUT_NOT_FOUND, "no textarea")
        surface = scripted_surface(submit_error=error)
        result = await CaptureSession(surface, timings=fast_timings).run("Hello")

        assert not result.ok
        assert result.reason is FailureReason.INPUT_NOT_FOUND
        assert result.to_payload() == {"error": "no textarea", "reason": "input-element-not-found"}
        log_line = (harvest_home / "failures.log").read_text()
        assert "scripted | input-element-not-found | no textarea" in log_line

    async def test_hard_timeout_keeps_partial_files(self, scripted_surface):
        timings = DetectorTimings(
            poll_interval=0.01, debounce=0.01, settle_quiet=0.01, done_settle=0.01, start_timeout=0.1, hard_timeout=0.2
        )
        surface = scripted_surface([(0.0, {"busy": True}), (0.02, {"html": DOCTYPE_HTML})])
        result = await CaptureSession(surface, timings=timings).run("Landing page")

        assert not result.ok
        assert result.reason is FailureReason.TIMEOUT
        assert [f.name for f in result.files] == ["index.html"]
        assert result.to_payload()["reason"] == "timeout"
        assert "files" in result.to_payload()

    async def test_hung_snapshot_still_resolves(self, scripted_surface):
        """Snapshots that never return cannot keep the session open past the hard timeout."""
        timings = DetectorTimings(
            poll_interval=0.01,
            debounce=0.01,
            settle_quiet=0.01,
            done_settle=0.01,
            start_timeout=0.1,
            hard_timeout=0.3,
            snapshot_timeout=0.1,
        )
        surface = scripted_surface(answered(DOCTYPE_HTML), hang_after=1)
        result = await asyncio.wait_for(CaptureSession(surface, timings=timings).run("Landing page"), 2.0)

        assert not result.ok
        assert result.reason is FailureReason.PRODUCER_UNREACHABLE
        assert "snapshot did not return" in result.message
        assert surface.unsubscribed

    async def test_hung_settling_snapshot_hits_hard_timeout(self, scripted_surface):
        timings = DetectorTimings(
            poll_interval=0.01,
            debounce=0.01,
            settle_quiet=0.01,
            done_settle=0.01,
            start_timeout=0.1,
            hard_timeout=0.3,
            snapshot_timeout=5.0,
        )
        surface = scripted_surface(answered(DOCTYPE_HTML), hang_after=1, hang_once=True)
        result = await asyncio.wait_for(CaptureSession(surface, timings=timings).run("Landing page"), 2.0)

        assert not result.ok
        assert result.reason is FailureReason.TIMEOUT
        assert [f.name for f in result.files] == ["index.html"]

    async def test_unexpected_surface_error_is_a_failure(self, scripted_surface, fast_timings):
        surface = scripted_surface(poll_error=OSError("pipe closed"))
        result = await CaptureSession(surface, timings=fast_timings).run("Hello")

        assert not result.ok
        assert result.reason is FailureReason.PRODUCER_UNREACHABLE
        assert result.message == "OSError: pipe closed"
        assert surface.unsubscribed

    async def test_cancel(self, scripted_surface, fast_timings):
        surface = scripted_surface([(0.0, {"busy": True})])
        session = CaptureSession(surface, timings=fast_timings)
        asyncio.get_running_loop().call_later(0.05, session.cancel)
        result = await session.run("Long task")

        assert result.ok
        assert result.cancelled
        assert result.completion == "cancelled"
        assert surface.unsubscribed

    async def test_cancel_before_run(self, scripted_surface, fast_timings):
        session = CaptureSession(scripted_surface([(0.0, {"busy": True})]), timings=fast_timings)
        session.cancel()
        result = await session.run("Never mind")
        assert result.cancelled

    async def test_empty_prompt_rejected(self, scripted_surface, fast_timings):
        with pytest.raises(ValueError):
            await CaptureSession(scripted_surface(), timings=fast_timings).run("   ")

    async def test_single_use(self, scripted_surface, fast_timings):
        session = CaptureSession(scripted_surface(), timings=fast_timings)
        await session.run("first")
        with pytest.raises(RuntimeError):
            await session.run("second")

    async def test_records_session_and_metric(self, scripted_surface, fast_timings, harvest_home):
        surface = scripted_surface(answered(APP_HTML))
        await CaptureSession(surface, timings=fast_timings).run("Build the app")

        sessions = list((harvest_home / "sessions").glob("*.json"))
        assert len(sessions) == 1
        data = json.loads(sessions[0].read_text())
        assert data["status"] == "success"
        assert data["files"][0]["name"] == "src/App.tsx"

        [event] = get_metrics()
        assert event["surface"] == "scripted"
        assert event["success"] is True
        assert event["file_count"] == 1
        assert event["duplicates_dropped"] >= 1

    async def test_record_disabled(self, scripted_surface, fast_timings, harvest_home):
        surface = scripted_surface(answered(APP_HTML))
        await CaptureSession(surface, timings=fast_timings, record=False).run("Build the app")
        assert not harvest_home.exists()

    async def test_capture_helper(self, scripted_surface, fast_timings):
        result = await capture(scripted_surface(answered(DOCTYPE_HTML)), "Page", timings=fast_timings, record=False)
        assert result.files[0].name == "index.html"


# ─────────────────────────────────────────────────────────────
# Offline pipeline
# ─────────────────────────────────────────────────────────────


class TestBlockCollector:
    """Test accumulation across snapshots without a surface."""

    def test_growing_block_superseded(self):
        partial = "```js\nfunction add(a, b) {\n  return a + b;\n```"
        full = "```js\nfunction add(a, b) {\n  return a + b;\n}\n\nmodule.exports = { add };\n```"
        collector = BlockCollector()
        collector.observe(partial)
        collector.observe(full)

        assert len(collector.blocks) == 1
        assert collector.blocks[0].content.endswith("module.exports = { add };")

    def test_counts(self):
        collector = BlockCollector()
        snapshot = "```\n" + LONG_BLOCK + "\n```\n\n```sh\nnpm install\n```"
        collector.observe(snapshot)
        collector.observe(snapshot)
        files = collector.resolve()

        assert collector.blocks_seen == 4
        assert collector.duplicates_dropped == 2
        assert collector.snippets_dropped == 1
        assert len(files) == 1

    def test_marker_only_difference_collapses(self):
        """Blocks equal after marker stripping are emitted once."""
        collector = BlockCollector()
        collector.observe(
            "```\n// FILE: src/a.js\n" + LONG_BLOCK + "\n```\n\n```\n// FILE: src/b.js\n" + LONG_BLOCK + "\n```"
        )
        assert [f.name for f in collector.resolve()] == ["src/a.js"]


class TestProcessSnapshots:
    """Test the offline entry point."""

    def test_baseline_and_snapshots(self):
        files = process_snapshots(
            [pre(LONG_BLOCK, OTHER_BLOCK)],
            baseline=pre(LONG_BLOCK),
        )
        assert files == [ResolvedFile(name="script.js", content=OTHER_BLOCK)]
