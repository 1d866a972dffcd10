"""Engine, sessions and query timing.

Services receive a ``Session`` and only flush; the caller owns the
transaction through ``session_scope()``. Cursor timings are kept in a bounded
window and summarised by ``get_query_stats()`` for the dashboard sidebar.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass
from functools import lru_cache
from typing import Iterator

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import Session, sessionmaker

from core.config import get_settings
from core.models import Base

logger = logging.getLogger(__name__)

__all__ = ["Base", "QueryStats", "get_engine", "get_session_factory", "session_scope", "get_query_stats", "reset_engine"]

SLOW_QUERY_MS = 250
SAMPLE_WINDOW = 1000

_query_samples: deque[float] = deque(maxlen=SAMPLE_WINDOW)


@dataclass
class QueryStats:
    total: int = 0
    slow: int = 0
    p50_ms: float = 0.0
    p95_ms: float = 0.0


def _record_query(statement: str, elapsed_ms: float) -> None:
    _query_samples.append(elapsed_ms)
    if elapsed_ms > SLOW_QUERY_MS:
        logger.warning("slow_query", extra={"duration_ms": round(elapsed_ms, 2), "statement": statement[:200]})


def _attach_timing(engine: Engine) -> None:
    @event.listens_for(engine, "before_cursor_execute")
    def _started(conn, cursor, statement, parameters, context, executemany):
        context._query_started = time.perf_counter()

    @event.listens_for(engine, "after_cursor_execute")
    def _finished(conn, cursor, statement, parameters, context, executemany):
        _record_query(statement, (time.perf_counter() - context._query_started) * 1000)


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    url = get_settings().database_url
    # sessions cross threads under FastAPI's threadpool
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    engine = create_engine(url, pool_pre_ping=True, connect_args=connect_args)
    _attach_timing(engine)
    return engine


@lru_cache(maxsize=1)
def get_session_factory() -> sessionmaker:
    return sessionmaker(bind=get_engine(), autoflush=False, expire_on_commit=False)


def reset_engine() -> None:
    """Drop cached engine/session factory so a new DATABASE_URL takes effect."""
    if get_engine.cache_info().currsize:
        get_engine().dispose()
    get_session_factory.cache_clear()
    get_engine.cache_clear()
    _query_samples.clear()


@contextmanager
def session_scope() -> Iterator[Session]:
    session = get_session_factory()()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def get_query_stats() -> QueryStats:
    if not _query_samples:
        return QueryStats()
    ordered = sorted(_query_samples)
    last = len(ordered) - 1
    return QueryStats(
        total=len(ordered),
        slow=sum(1 for ms in ordered if ms > SLOW_QUERY_MS),
        p50_ms=round(ordered[min(last, len(ordered) // 2)], 2),
        p95_ms=round(ordered[min(last, int(len(ordered) * 0.95))], 2),
    )
