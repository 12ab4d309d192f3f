#!/usr/bin/env python3
"""Harvest CLI - turn generated chat output into named files.

Usage:
    harvester.py extract snapshot.html [more.html ...] [--baseline before.html]
    harvester.py normalize payload.json
    harvester.py capture "Build a todo app" --surface aistudio --cdp http://localhost:9222
    harvester.py metrics [--surface NAME] [--failures-only]
    harvester.py failures [--limit N]
"""

from __future__ import annotations

import argparse
import asyncio
import base64
import json
import mimetypes
from pathlib import Path
import sys

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from harvest.config import available_surfaces, load_heuristics, load_surface_profile
from harvest.logging import get_recent_failures
from harvest.metrics import get_metrics, get_summary
from harvest.normalize import PayloadError, normalize_payload
from harvest.render import console, render_files, render_result, render_summary
from harvest.session import CaptureSession, process_snapshots
from harvest.types import CaptureResult, ImageAttachment, PromptRequest


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Capture and name code files from generated output")
    parser.add_argument(
        "--heuristics", type=Path, default=None, help="Optional path to heuristics.yaml override"
    )
    parser.add_argument(
        "--locale",
        action="append",
        default=None,
        help="Restrict marker/lead-in locales (can be passed multiple times)",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Emit machine-readable JSON (for tooling integration)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    extract = sub.add_parser("extract", help="Extract files from saved snapshots")
    extract.add_argument("snapshots", nargs="+", type=Path, help="HTML or markdown snapshots, oldest first")
    extract.add_argument("--baseline", type=Path, default=None, help="Snapshot taken before the prompt")

    normalize = sub.add_parser("normalize", help="Normalize a result payload to a file list")
    normalize.add_argument("payload", nargs="?", type=Path, help="Payload JSON file (stdin if omitted)")

    capture = sub.add_parser("capture", help="Submit a prompt to a live browser tab and capture files")
    capture.add_argument("prompt", help="Prompt text")
    capture.add_argument(
        "--surface",
        default="aistudio",
        help=f"Surface profile ({', '.join(available_surfaces()) or 'none configured'})",
    )
    capture.add_argument(
        "--cdp", default="http://localhost:9222", help="Chrome DevTools endpoint of the running browser"
    )
    capture.add_argument("--image", action="append", default=[], type=Path, help="Attach an image")
    capture.add_argument("--no-record", action="store_true", help="Skip session logs and metrics")

    metrics = sub.add_parser("metrics", help="Show capture metrics")
    metrics.add_argument("--surface", default=None, help="Filter by surface name")
    metrics.add_argument("--since", default=None, help="Filter by date (YYYY-MM-DD)")
    metrics.add_argument("--failures-only", action="store_true", help="Only failed captures")
    metrics.add_argument("--limit", type=int, default=20, help="Events to list")

    failures = sub.add_parser("failures", help="Show recent failure log lines")
    failures.add_argument("--limit", type=int, default=10)

    return parser.parse_args(argv)


def _emit_files(files, as_json: bool) -> None:
    if as_json:
        print(json.dumps(CaptureResult.success(files).to_payload(), indent=2))
        return
    render_files(files)


def cmd_extract(args: argparse.Namespace) -> int:
    heuristics = load_heuristics(args.heuristics, args.locale)
    snapshots = [path.read_text(encoding="utf-8") for path in args.snapshots]
    baseline = args.baseline.read_text(encoding="utf-8") if args.baseline else None
    files = process_snapshots(snapshots, heuristics, baseline=baseline)
    _emit_files(files, args.json)
    return 0


def cmd_normalize(args: argparse.Namespace) -> int:
    heuristics = load_heuristics(args.heuristics, args.locale)
    raw = args.payload.read_text(encoding="utf-8") if args.payload else sys.stdin.read()
    try:
        files = normalize_payload(json.loads(raw), heuristics)
    except PayloadError as exc:
        if args.json:
            print(json.dumps({"error": str(exc)}))
        else:
            console.print(f"[red]Payload reports an error[/red]: {exc}")
        return 1
    _emit_files(files, args.json)
    return 0


def _load_image(path: Path) -> ImageAttachment:
    mime_type = mimetypes.guess_type(path.name)[0] or "image/png"
    return ImageAttachment(base64=base64.b64encode(path.read_bytes()).decode("ascii"), mime_type=mime_type)


async def _capture(args: argparse.Namespace) -> CaptureResult:
    # Imported lazily: Playwright is the optional `browser` extra
    from playwright.async_api import async_playwright

    from harvest.surfaces.browser import BrowserSurface, find_page

    heuristics = load_heuristics(args.heuristics, args.locale)
    profile = load_surface_profile(args.surface)
    request = PromptRequest(prompt=args.prompt, images=[_load_image(path) for path in args.image])

    async with async_playwright() as playwright:
        browser = await playwright.chromium.connect_over_cdp(args.cdp)
        page = find_page(browser, profile)
        if page is None:
            raise SystemExit(f"No open tab matches the '{profile.name}' profile ({profile.url_pattern})")
        session = CaptureSession(
            BrowserSurface(page, profile),
            heuristics=heuristics,
            timings=profile.timings,
            record=not args.no_record,
        )
        return await session.run(request)


def cmd_capture(args: argparse.Namespace) -> int:
    result = asyncio.run(_capture(args))
    if args.json:
        print(json.dumps(result.to_payload(), indent=2))
    else:
        render_result(result)
    return 0 if result.ok else 1


def cmd_metrics(args: argparse.Namespace) -> int:
    if args.json:
        payload = {
            "summary": get_summary(),
            "events": get_metrics(
                limit=args.limit,
                surface=args.surface,
                since=args.since,
                failures_only=args.failures_only,
            ),
        }
        print(json.dumps(payload, indent=2))
        return 0

    render_summary(get_summary())
    events = get_metrics(limit=args.limit, surface=args.surface, since=args.since, failures_only=args.failures_only)
    for e in events:
        mark = "[green]✓[/green]" if e.get("success") else "[red]✗[/red]"
        detail = e.get("reason") or e.get("completion") or ""
        console.print(
            f"{e.get('timestamp', '')[:19]} │ {e.get('surface', '?'):10} │ {mark} │ "
            f"{e.get('file_count', 0)} files │ {detail}"
        )
    return 0


def cmd_failures(args: argparse.Namespace) -> int:
    lines = get_recent_failures(args.limit)
    if args.json:
        print(json.dumps(lines, indent=2))
    elif not lines:
        console.print("No failures logged.")
    else:
        for line in lines:
            console.print(line, markup=False)
    return 0


COMMANDS = {
    "extract": cmd_extract,
    "normalize": cmd_normalize,
    "capture": cmd_capture,
    "metrics": cmd_metrics,
    "failures": cmd_failures,
}


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    return COMMANDS[args.command](args)


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
