"""
Metrics and timing helpers for observability.

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


def record_metric(
    name: str,
    value: float,
    *,
    client_id: str | None = None,
    state: str | None = None,
    details: dict[str, Any] | None = None,
) -> None:
    """Emit a single metric sample."""
    log_event({
        "ts_ms": int(time.time() * 1000),
        "event_type": "METRIC",
        "metric": name,
        "value": value,
        "client_id": client_id,
        "state": state,
        "details": details or {},
    })


@contextmanager
def timed(
    name: str,
    *,
    client_id: str | None = None,
    details: dict[str, Any] | None = None,
) -> Iterator[None]:
    """
    Context manager for measuring durations safely.

    Guarantees:
    - Metric is emitted exactly once
    - Exceptions inside the block do NOT suppress timing

    Usage:
        with timed("audio_flush_ms", client_id=client_id):
            sink.flush(client_id, data)
    """
    start_ns = time.monotonic_ns()
    try:
        yield
    finally:
        record_metric(
            name,
            (time.monotonic_ns() - start_ns) // 1_000_000,
            client_id=client_id,
            details=details,
        )
