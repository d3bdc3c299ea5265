"""Postgres connection helpers for the collection store."""

from __future__ import annotations

import contextvars
import logging
import os
import threading
import time
from contextlib import contextmanager
from typing import Any, Iterable

import psycopg2
import psycopg2.extras
from psycopg2.pool import SimpleConnectionPool


def get_db_url() -> str:
    url = os.getenv("CMS_DB_URL") or os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError("CMS_DB_URL or DATABASE_URL is required when CMS_USE_DB=1")
    return url


_POOL: SimpleConnectionPool | None = None
_DB_MS = 0.0
_DB_LOCK = threading.Lock()
_logger = logging.getLogger("cms.db")
_query_logger = logging.getLogger("cms.db.query")
_ACTIVE_CONN: contextvars.ContextVar[Any | None] = contextvars.ContextVar("cms_db_active_conn", default=None)
_SLOW_MS = float(os.getenv("CMS_QUERY_SLOW_MS", "200"))
_LOG_ALL = os.getenv("CMS_QUERY_LOG", "").strip() == "1"


def _redact_params(params: Iterable[Any] | None) -> list[Any] | None:
    if params is None:
        return None
    redacted: list[Any] = []
    for val in params:
        if isinstance(val, str) and len(val) > 80:
            redacted.append(f"{val[:40]}…{val[-10:]}")
        else:
            redacted.append(val)
    return redacted


def _log_query(*, query_name: str | None, params: Iterable[Any] | None, elapsed_ms: float, rowcount: int | None) -> None:
    if not _LOG_ALL and elapsed_ms < _SLOW_MS:
        return
    message = {
        "query": query_name or "unnamed",
        "ms": round(elapsed_ms, 2),
        "rowcount": rowcount,
        "params": _redact_params(params),
    }
    if elapsed_ms >= _SLOW_MS:
        _query_logger.warning("db_slow_query=%s", message)
    else:
        _query_logger.info("db_query=%s", message)


def init_pool(minconn: int | None = None, maxconn: int | None = None) -> None:
    global _POOL
    if _POOL is None:
        if minconn is None:
            minconn = int(os.getenv("CMS_DB_POOL_MIN", "1"))
        if maxconn is None:
            maxconn = int(os.getenv("CMS_DB_POOL_MAX", "10"))
        _POOL = SimpleConnectionPool(minconn, maxconn, dsn=get_db_url())


def reset_db_ms() -> None:
    global _DB_MS
    with _DB_LOCK:
        _DB_MS = 0.0


def add_db_ms(delta: float) -> None:
    global _DB_MS
    with _DB_LOCK:
        _DB_MS += delta


def get_db_ms() -> float:
    with _DB_LOCK:
        return _DB_MS


def _get_pool() -> SimpleConnectionPool:
    if _POOL is None:
        init_pool()
    return _POOL


def get_active_conn():
    return _ACTIVE_CONN.get()


@contextmanager
def get_conn():
    """Borrow a pooled connection, or reuse the one bound by ``transaction()``."""
    active = get_active_conn()
    if active is not None:
        yield active
        return
    pool = _get_pool()
    conn = pool.getconn()
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        pool.putconn(conn)


@contextmanager
def transaction():
    """Bind one connection for the block; commit on success, roll back on error."""
    active = get_active_conn()
    if active is not None:
        yield active
        return
    pool = _get_pool()
    conn = pool.getconn()
    token = _ACTIVE_CONN.set(conn)
    _logger.info("db_tx begin")
    try:
        yield conn
        conn.commit()
        _logger.info("db_tx commit")
    except Exception:
        conn.rollback()
        _logger.warning("db_tx rollback")
        raise
    finally:
        _ACTIVE_CONN.reset(token)
        pool.putconn(conn)


def fetch_one(conn, sql: str, params: Iterable[Any] | None = None, query_name: str | None = None) -> dict | None:
    start = time.perf_counter()
    with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
        cur.execute(sql, params or [])
        row = cur.fetchone()
        result = dict(row) if row else None
        rowcount = cur.rowcount
    elapsed_ms = (time.perf_counter() - start) * 1000
    add_db_ms(elapsed_ms)
    _log_query(query_name=query_name, params=params, elapsed_ms=elapsed_ms, rowcount=rowcount)
    return result


def fetch_all(conn, sql: str, params: Iterable[Any] | None = None, query_name: str | None = None) -> list[dict]:
    start = time.perf_counter()
    with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
        cur.execute(sql, params or [])
        result = [dict(r) for r in cur.fetchall()]
        rowcount = cur.rowcount
    elapsed_ms = (time.perf_counter() - start) * 1000
    add_db_ms(elapsed_ms)
    _log_query(query_name=query_name, params=params, elapsed_ms=elapsed_ms, rowcount=rowcount)
    return result


def execute(conn, sql: str, params: Iterable[Any] | None = None, query_name: str | None = None) -> int:
    start = time.perf_counter()
    with conn.cursor() as cur:
        cur.execute(sql, params or [])
        rowcount = cur.rowcount
    elapsed_ms = (time.perf_counter() - start) * 1000
    add_db_ms(elapsed_ms)
    _log_query(query_name=query_name, params=params, elapsed_ms=elapsed_ms, rowcount=rowcount)
    return rowcount
