"""Tests for observability module."""

from __future__ import annotations

from core.db import QueryStats
from core.observability import StatusStrip, database_status


def test_database_status_warmup():
    s = database_status(QueryStats(total=3))
    assert s.status == "OK"
    assert "Warmup" in s.message


def test_database_status_nominal():
    s = database_status(QueryStats(total=100, slow=1, p95_ms=12.5))
    assert s.status == "OK"
    assert s.message == "p95 12.5ms"


def test_database_status_warn():
    s = database_status(QueryStats(total=100, slow=10, p95_ms=400.0))
    assert s.status == "WARN"
    assert "10 slow queries" in s.message


def test_status_strip_dataclass():
    ss = StatusStrip(status="OK", message="test")
    assert ss.status == "OK"
    assert ss.message == "test"


def test_request_log_fields():
    from api.observability import request_log_fields

    fields = request_log_fields(
        method="GET", path="/api/health", status_code=200, duration_ms=1.234, client_ip=None, query="a=1"
    )
    assert fields == {
        "method": "GET",
        "path": "/api/health",
        "status_code": 200,
        "duration_ms": 1.23,
        "client_ip": "",
        "query": "a=1",
    }


def test_request_json_formatter_includes_request_id():
    import json
    import logging

    from api.observability import JsonFormatter, reset_request_id, set_request_id

    token = set_request_id("req-1")
    try:
        record = logging.LogRecord("api", logging.INFO, "x.py", 1, "hello", (), None)
        record.cohort_id = 4
        payload = json.loads(JsonFormatter().format(record))
    finally:
        reset_request_id(token)
    assert payload["request_id"] == "req-1"
    assert payload["cohort_id"] == 4
    assert payload["message"] == "hello"


def test_bound_context_clears_user_with_request():
    from api.observability import bound_context, reset_request_id, set_request_id, set_user_id

    token = set_request_id("req-2")
    set_user_id(5)
    assert bound_context() == {"request_id": "req-2", "user_id": 5}
    reset_request_id(token)
    assert bound_context() == {}


def test_query_stats_window():
    from core import db

    db._query_samples.clear()
    for ms in [1.0] * 19 + [300.0]:
        db._record_query("SELECT 1", ms)
    stats = db.get_query_stats()
    db._query_samples.clear()
    assert stats == QueryStats(total=20, slow=1, p50_ms=1.0, p95_ms=300.0)
    assert db.get_query_stats() == QueryStats()
