"""
JSONL event logger.

- Write one JSON object per line
- Output to stdout
- No buffering, no batching
- Optional "level" key, filtered against the configured minimum
- Plain single-line text when JSON logs are disabled (local dev)
"""

from __future__ import annotations

import json
import sys
import time
from typing import Any, Mapping, Callable


_LEVELS: dict[str, int] = {
    "debug": 10,
    "info": 20,
    "warning": 30,
    "error": 40,
}

_min_level: int = _LEVELS["info"]
_json_enabled: bool = True


# ------------------------------------------------------------------
# Explicit output sink (patchable in tests)
# ------------------------------------------------------------------

def _stdout_print(line: str) -> None:
    sys.stdout.write(line + "\n")
    sys.stdout.flush()

_print: Callable[[str], None] = _stdout_print


def configure_logging(*, level: str = "INFO", enable_json: bool = True) -> None:
    """
    Apply process-wide logging settings (called once from the app factory).

    Unknown level names fall back to INFO.
    """
    global _min_level, _json_enabled  # pylint: disable=global-statement
    _min_level = _LEVELS.get(level.strip().lower(), _LEVELS["info"])
    _json_enabled = enable_json


def _format_text(event: Mapping[str, Any]) -> str:
    head = f"{event.get('ts_ms')} {str(event.get('level', 'info')).upper()} {event.get('event_type')}"
    rest = " ".join(
        f"{k}={v!r}" for k, v in event.items()
        if k not in ("ts_ms", "level", "event_type")
    )
    return f"{head} {rest}" if rest else head


def log_event(event: Mapping[str, Any]) -> None:
    """
    Write a single log event.

    The caller supplies a dict with at least "event_type".
    "ts_ms" is filled in from the wall clock when missing.

    This function:
    - Drops events below the configured level
    - Serializes to JSON (or text)
    - Writes exactly one line
    - Never raises
    """
    level = str(event.get("level", "info")).lower()
    if _LEVELS.get(level, _LEVELS["info"]) < _min_level:
        return

    if "ts_ms" not in event:
        event = {"ts_ms": time.time_ns() // 1_000_000, **event}

    if not _json_enabled:
        _print(_format_text(event))
        return

    try:
        line = json.dumps(event, ensure_ascii=False, separators=(",", ":"))
    except (TypeError, ValueError) as e:
        # Last-resort fallback: logging must never crash the relay
        fallback: dict[str, Any] = {
            "ts_ms": event.get("ts_ms"),
            "event_type": "LOGGER_SERIALIZATION_ERROR",
            "error": str(e),
            "original_event_repr": repr(event),
        }
        line = json.dumps(fallback, ensure_ascii=False, separators=(",", ":"))

    _print(line)
