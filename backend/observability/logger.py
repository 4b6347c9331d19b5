"""
JSONL event logger.

- Write one JSON object per line
- Output to stdout
- No buffering, no batching
- No side effects beyond logging

Two entry points:
- log_event(): write a fully-formed event dict as-is
- log(): build a leveled, categorized event and drop it if it is below
  the configured minimum level
"""

from __future__ import annotations

import json
import sys
import time
from typing import Any, Mapping, Callable


LEVELS: dict[str, int] = {
    "DEBUG": 10,
    "INFO": 20,
    "WARN": 30,
    "ERROR": 40,
}


# ------------------------------------------------------------------
# Explicit output sink (patchable in tests)
# ------------------------------------------------------------------

def _stdout_print(line: str) -> None:
    sys.stdout.write(line + "\n")
    sys.stdout.flush()

_print: Callable[[str], None] = _stdout_print

_min_level: int = LEVELS["INFO"]


def set_level(level: str) -> None:
    """
    Set the minimum level emitted by log().

    Unknown names fall back to INFO. "WARNING" is accepted as WARN.
    """
    global _min_level  # pylint: disable=global-statement
    name = level.upper()
    if name == "WARNING":
        name = "WARN"
    _min_level = LEVELS.get(name, LEVELS["INFO"])


def log_event(event: Mapping[str, Any]) -> None:
    """
    Write a single JSONL event to stdout.

    This function:
    - Serializes to JSON
    - Writes exactly one line
    - Flushes immediately (no buffering)
    - Never raises
    """
    try:
        line = json.dumps(event, ensure_ascii=False, separators=(",", ":"))
    except (TypeError, ValueError) as e:
        # Logging must never crash the caller
        fallback: dict[str, Any] = {
            "ts_ms": event.get("ts_ms"),
            "event_type": "LOGGER_SERIALIZATION_ERROR",
            "error": str(e),
            "original_event_repr": repr(event),
        }
        line = json.dumps(fallback, ensure_ascii=False, separators=(",", ":"))

    _print(line)


def log(level: str, category: str, message: str, **fields: Any) -> None:
    """
    Emit a leveled event: {ts_ms, level, category, message, **fields}.

    Events below the minimum level set via set_level() are dropped.
    """
    name = level.upper()
    if LEVELS.get(name, LEVELS["INFO"]) < _min_level:
        return

    log_event({
        "ts_ms": time.time_ns() // 1_000_000,
        "level": name,
        "category": category,
        "message": message,
        **fields,
    })
