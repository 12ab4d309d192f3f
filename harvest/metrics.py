"""Metrics collection and analysis for capture sessions.

Tracks outcome, latency and naming quality per capture.
"""

from __future__ import annotations

import json
import threading
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path

from harvest.config import harvest_home

MAX_EVENTS = 1000
PRUNE_COUNT = 200

# Thread lock for concurrent writes
_lock = threading.Lock()


def metrics_file() -> Path:
    return harvest_home() / "metrics.json"


@dataclass
class CaptureMetric:
    """A single capture event."""

    # Identity
    id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())
    surface: str = ""

    # Outcome
    success: bool = True
    reason: str | None = None
    completion: str | None = None
    cancelled: bool = False

    # Performance
    duration_ms: int = 0

    # Pipeline
    blocks_seen: int = 0
    duplicates_dropped: int = 0
    snippets_dropped: int = 0

    # Quality
    file_count: int = 0
    unresolved_count: int = 0
    error: str | None = None


def _load_metrics() -> list[dict]:
    path = metrics_file()
    if not path.exists():
        return []
    try:
        data = json.loads(path.read_text())
        return data if isinstance(data, list) else []
    except (json.JSONDecodeError, OSError):
        return []


def _save_metrics(events: list[dict]) -> None:
    """Save metrics to file with pruning."""
    if len(events) > MAX_EVENTS:
        events = events[-MAX_EVENTS + PRUNE_COUNT :]

    path = metrics_file()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(events, indent=2))


def log_capture(
    surface: str = "",
    success: bool = True,
    reason: str | None = None,
    completion: str | None = None,
    cancelled: bool = False,
    duration_ms: int = 0,
    blocks_seen: int = 0,
    duplicates_dropped: int = 0,
    snippets_dropped: int = 0,
    file_count: int = 0,
    unresolved_count: int = 0,
    error: str | None = None,
) -> None:
    """Log a capture event.

    Fire-and-forget function to record capture metrics.
    """
    event = CaptureMetric(
        surface=surface,
        success=success,
        reason=reason,
        completion=completion,
        cancelled=cancelled,
        duration_ms=duration_ms,
        blocks_seen=blocks_seen,
        duplicates_dropped=duplicates_dropped,
        snippets_dropped=snippets_dropped,
        file_count=file_count,
        unresolved_count=unresolved_count,
        error=error[:500] if error else None,  # Truncate errors
    )

    with _lock:
        events = _load_metrics()
        events.append(asdict(event))
        _save_metrics(events)


def get_metrics(
    limit: int = 100,
    surface: str | None = None,
    since: str | None = None,
    success_only: bool = False,
    failures_only: bool = False,
) -> list[dict]:
    """Get metrics with optional filtering.

    Args:
        limit: Max events to return
        surface: Filter by surface name
        since: Filter by date (YYYY-MM-DD)
        success_only: Only successful captures
        failures_only: Only failed captures

    Returns:
        List of metric events (newest first)
    """
    events = _load_metrics()

    if surface:
        events = [e for e in events if e.get("surface") == surface]
    if since:
        events = [e for e in events if e.get("timestamp", "")[:10] >= since]
    if success_only:
        events = [e for e in events if e.get("success")]
    if failures_only:
        events = [e for e in events if not e.get("success")]

    return list(reversed(events[-limit:]))


def get_summary() -> dict:
    """Get summary statistics for the metrics report."""
    events = _load_metrics()

    if not events:
        return {
            "total": 0,
            "success_count": 0,
            "success_rate": 0.0,
            "today_count": 0,
            "avg_duration_ms": 0,
            "by_surface": {},
            "by_reason": {},
            "timeout_rate": 0.0,
            "unresolved_rate": None,
        }

    today = datetime.now().strftime("%Y-%m-%d")
    today_events = [e for e in events if e.get("timestamp", "")[:10] == today]

    success_count = sum(1 for e in events if e.get("success"))
    success_rate = success_count / len(events)

    durations = [e.get("duration_ms", 0) for e in events if e.get("duration_ms")]
    avg_duration = sum(durations) / len(durations) if durations else 0

    by_surface = {}
    for e in events:
        name = e.get("surface") or "unknown"
        if name not in by_surface:
            by_surface[name] = {"total": 0, "success": 0}
        by_surface[name]["total"] += 1
        if e.get("success"):
            by_surface[name]["success"] += 1

    for surface_stats in by_surface.values():
        surface_stats["success_rate"] = surface_stats["success"] / surface_stats["total"]

    by_reason: dict[str, int] = {}
    for e in events:
        if not e.get("success") and e.get("reason"):
            by_reason[e["reason"]] = by_reason.get(e["reason"], 0) + 1

    timeout_rate = by_reason.get("timeout", 0) / len(events)

    # Share of captured files that needed a name from the caller
    total_files = sum(e.get("file_count", 0) for e in events)
    unresolved = sum(e.get("unresolved_count", 0) for e in events)
    unresolved_rate = unresolved / total_files if total_files else None

    return {
        "total": len(events),
        "success_count": success_count,
        "success_rate": success_rate,
        "today_count": len(today_events),
        "avg_duration_ms": avg_duration,
        "by_surface": by_surface,
        "by_reason": by_reason,
        "timeout_rate": timeout_rate,
        "unresolved_rate": unresolved_rate,
    }


# Thresholds for metric health indicators
THRESHOLDS = {
    "success_rate": {"good": 0.90, "okay": 0.70},
    "avg_duration_ms": {"good": 30000, "okay": 90000},  # Lower is better
    "timeout_rate": {"good": 0.05, "okay": 0.15},  # Lower is better
    "unresolved_rate": {"good": 0.10, "okay": 0.30},  # Lower is better
}

_LOWER_IS_BETTER = ("avg_duration_ms", "timeout_rate", "unresolved_rate")


def get_health_indicator(metric: str, value: float | None) -> str:
    """Get health indicator for a metric value.

    Returns: 'good', 'okay', 'bad' or 'unknown'
    """
    if value is None:
        return "unknown"

    thresholds = THRESHOLDS.get(metric)
    if not thresholds:
        return "unknown"

    if metric in _LOWER_IS_BETTER:
        if value <= thresholds["good"]:
            return "good"
        elif value <= thresholds["okay"]:
            return "okay"
        else:
            return "bad"
    else:
        if value >= thresholds["good"]:
            return "good"
        elif value >= thresholds["okay"]:
            return "okay"
        else:
            return "bad"


def clear_metrics() -> None:
    """Clear all metrics (for testing)."""
    with _lock:
        path = metrics_file()
        if path.exists():
            path.unlink()


__all__ = [
    "CaptureMetric",
    "log_capture",
    "get_metrics",
    "get_summary",
    "get_health_indicator",
    "clear_metrics",
    "THRESHOLDS",
    "metrics_file",
]
