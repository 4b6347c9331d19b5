"""
Timing helpers for observability.

Responsibilities:
- Measure durations using monotonic time (immune to clock changes)
- Emit metrics as JSONL events via observability.logger
- Never aggregate: one metric = one log event

Design notes:
- Durations use monotonic time for correctness
- Event timestamps (ts_ms) use wall-clock time for human readability
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from typing import Any, Iterator

from observability.logger import log_event


def emit_timer(
    name: str,
    duration_ms: int,
    *,
    generation_id: str | None = None,
    channel: str | None = None,
    details: dict[str, Any] | None = None,
) -> None:
    """Emit one METRIC_TIMER event."""
    log_event({
        "ts_ms": int(time.time() * 1000),
        "event_type": "METRIC_TIMER",
        "metric": name,
        "value_ms": duration_ms,
        "generation_id": generation_id,
        "channel": channel,
        "details": details or {},
    })


@contextmanager
def timed(
    name: str,
    *,
    generation_id: str | None = None,
    channel: str | None = None,
    details: dict[str, Any] | None = None,
) -> Iterator[dict[str, Any]]:
    """
    Context manager for measuring durations safely.

    Guarantees:
    - Metric is emitted exactly once, even when the block raises or
      is cancelled
    - Exceptions inside the block are not suppressed

    The yielded dict is merged into the metric's details, so the block
    can attach outcome fields:

        with timed("model_call", generation_id=gid) as extra:
            result = await invoker.invoke(text, catalog)
            extra["output_len"] = len(result)
    """
    extra: dict[str, Any] = {}
    start_ns = time.monotonic_ns()
    try:
        yield extra
    finally:
        emit_timer(
            name,
            (time.monotonic_ns() - start_ns) // 1_000_000,
            generation_id=generation_id,
            channel=channel,
            details={**(details or {}), **extra},
        )
