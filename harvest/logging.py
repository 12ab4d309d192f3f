"""Session logging for capture runs.

Dual logging:
- Quick reference log: $HARVEST_HOME/failures.log
- Full session data: $HARVEST_HOME/sessions/<timestamp>.json
"""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from harvest.config import harvest_home


def failures_log() -> Path:
    return harvest_home() / "failures.log"


def sessions_dir() -> Path:
    return harvest_home() / "sessions"


def ensure_dirs():
    """Ensure harvest state directories exist."""
    harvest_home().mkdir(parents=True, exist_ok=True)
    sessions_dir().mkdir(parents=True, exist_ok=True)


def _write_session(session_data: dict[str, Any], timestamp: datetime) -> Path:
    session_id = timestamp.strftime("%Y%m%d_%H%M%S_%f")
    session_file = sessions_dir() / f"{session_id}.json"
    with open(session_file, "w") as f:
        json.dump(session_data, f, indent=2)
    return session_file


def log_failure(
    surface: str,
    reason: str,
    message: Optional[str] = None,
    prompt: Optional[str] = None,
    files: Optional[list[dict]] = None,
    extra: Optional[dict[str, Any]] = None,
) -> Path:
    """Log a failed capture to both quick log and full session.

    Args:
        surface: Surface name the capture ran against
        reason: Failure reason value (e.g. "timeout")
        message: Human-readable detail
        prompt: Prompt that was submitted
        files: Partial files kept on timeout
        extra: Additional data to log

    Returns:
        Path to the session file.
    """
    ensure_dirs()
    timestamp = datetime.now()
    timestamp_str = timestamp.strftime("%Y-%m-%d %H:%M:%S")

    # One line per failure
    with open(failures_log(), "a") as f:
        short_message = (message or reason)[:100].replace("\n", " ")
        f.write(f"{timestamp_str} | {surface} | {reason} | {short_message}\n")

    session_data: dict[str, Any] = {
        "timestamp": timestamp_str,
        "surface": surface,
        "status": "failed",
        "reason": reason,
    }
    if message:
        session_data["message"] = message
    if prompt:
        session_data["prompt"] = prompt
    if files:
        session_data["files"] = files
    if extra:
        session_data.update(extra)

    return _write_session(session_data, timestamp)


def log_success(
    surface: str,
    prompt: Optional[str] = None,
    files: Optional[list[dict]] = None,
    extra: Optional[dict[str, Any]] = None,
) -> Path:
    """Log a successful capture to a session file.

    Args:
        surface: Surface name the capture ran against
        prompt: Prompt that was submitted
        files: Captured files as dicts
        extra: Additional data to log

    Returns:
        Path to the session file.
    """
    ensure_dirs()
    timestamp = datetime.now()

    session_data: dict[str, Any] = {
        "timestamp": timestamp.strftime("%Y-%m-%d %H:%M:%S"),
        "surface": surface,
        "status": "success",
        "file_count": len(files or []),
    }
    if prompt:
        session_data["prompt"] = prompt
    if files:
        session_data["files"] = files
    if extra:
        session_data.update(extra)

    return _write_session(session_data, timestamp)


def get_recent_failures(limit: int = 10) -> list[str]:
    """Get recent failure log lines.

    Args:
        limit: Maximum number of lines to return

    Returns:
        List of recent failure log lines.
    """
    log_file = failures_log()
    if not log_file.exists():
        return []

    with open(log_file, "r") as f:
        lines = f.readlines()

    return [line.strip() for line in lines[-limit:]]


def get_session(session_id: str) -> Optional[dict]:
    """Load a session file by ID (the file stem, YYYYMMDD_HHMMSS_ffffff)."""
    session_file = sessions_dir() / f"{session_id}.json"
    if not session_file.exists():
        return None

    with open(session_file, "r") as f:
        return json.load(f)


def clear_old_sessions(days: int = 7) -> int:
    """Delete session files older than N days.

    Returns:
        Number of sessions deleted.
    """
    directory = sessions_dir()
    if not directory.exists():
        return 0

    cutoff = datetime.now().timestamp() - (days * 24 * 60 * 60)
    deleted = 0

    for session_file in directory.glob("*.json"):
        if session_file.stat().st_mtime < cutoff:
            session_file.unlink()
            deleted += 1

    return deleted


__all__ = [
    "clear_old_sessions",
    "ensure_dirs",
    "failures_log",
    "get_recent_failures",
    "get_session",
    "log_failure",
    "log_success",
    "sessions_dir",
]
