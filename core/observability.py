from __future__ import annotations

from dataclasses import dataclass

from core.db import QueryStats

WARMUP_SAMPLES = 20
SLOW_SHARE_WARN = 0.05


@dataclass
class StatusStrip:
    status: str
    message: str


def database_status(stats: QueryStats) -> StatusStrip:
    """Summarise recent query timings for the dashboard sidebar."""
    if stats.total < WARMUP_SAMPLES:
        return StatusStrip("OK", f"Warmup ({stats.total} queries)")
    if stats.slow / stats.total > SLOW_SHARE_WARN:
        return StatusStrip("WARN", f"{stats.slow} slow queries, p95 {stats.p95_ms}ms")
    return StatusStrip("OK", f"p95 {stats.p95_ms}ms")
