"""Utility functions for slacknote."""

import os
from datetime import UTC, date, datetime
from pathlib import Path


def ensure_dir(path: Path) -> Path:
    """Ensure a directory exists, creating it if necessary."""
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_data_path() -> Path:
    """Get the slacknote data directory.

    Respects SLACKNOTE_HOME environment variable; falls back to ~/.slacknote.
    """
    home = os.environ.get("SLACKNOTE_HOME", "").strip()
    if home:
        return ensure_dir(Path(home))
    return ensure_dir(Path.home() / ".slacknote")


def get_logs_path() -> Path:
    """Get the logs directory (~/.slacknote/var/logs)."""
    return ensure_dir(get_data_path() / "var" / "logs")


def ts_to_float(ts: str | float | None) -> float:
    """Platform timestamps are decimal strings; unparsable values sort first."""
    try:
        return float(ts)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return 0.0


def ts_to_datetime(ts: str | float) -> datetime:
    return datetime.fromtimestamp(ts_to_float(ts), tz=UTC)


def ts_to_date(ts: str | float) -> str:
    """UTC calendar date (YYYY-MM-DD) of a platform timestamp."""
    return ts_to_datetime(ts).date().isoformat()


def day_start_ts(day: date) -> float:
    """Epoch seconds at 00:00:00 UTC of *day*."""
    return datetime(day.year, day.month, day.day, tzinfo=UTC).timestamp()


def day_end_ts(day: date) -> float:
    """Epoch seconds at 23:59:59 UTC of *day*."""
    return datetime(day.year, day.month, day.day, 23, 59, 59, tzinfo=UTC).timestamp()


def truncate_string(s: str, max_len: int = 60, suffix: str = "...") -> str:
    """Truncate a string to max length, adding suffix if truncated."""
    s = s or ""
    if len(s) <= max_len:
        return s
    return s[: max_len - len(suffix)] + suffix
