"""
PostgreSQL access for AltoCRM.

The DAL, the audit log, the job queue and the migrator all borrow connections
from one ``ThreadedConnectionPool``. It is opened on first use with the
settings in ``get_config().db`` and closed by the API lifespan.

    from altocrm.db import get_cursor

    with get_cursor() as cur:
        cur.execute("SELECT count(*) AS n FROM crm_leads")
        total = cur.fetchone()["n"]
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Generator
from contextlib import contextmanager

import psycopg2
import psycopg2.pool
from psycopg2.extras import RealDictCursor

from altocrm.config import get_config

logger = logging.getLogger(__name__)

_pool: psycopg2.pool.ThreadedConnectionPool | None = None
_pool_lock = threading.Lock()


def _pool_open() -> bool:
    return _pool is not None and not _pool.closed


def get_pool() -> psycopg2.pool.ThreadedConnectionPool:
    """Return the shared pool, opening it if needed."""
    global _pool
    if _pool_open():
        return _pool

    with _pool_lock:
        # another thread may have won the race
        if _pool_open():
            return _pool

        db = get_config().db
        logger.info(
            "Opening PostgreSQL pool at %s with %d-%d connections",
            db.safe_url,
            db.min_connections,
            db.max_connections,
        )
        try:
            _pool = psycopg2.pool.ThreadedConnectionPool(
                minconn=db.min_connections,
                maxconn=db.max_connections,
                dsn=db.url,
            )
        except psycopg2.OperationalError as e:
            raise ConnectionError(
                f"PostgreSQL is unreachable at {db.safe_url} ({e}). "
                f"Is the server up, and does DATABASE_URL point at it?"
            ) from e
        return _pool


@contextmanager
def get_connection(
    autocommit: bool = False,
) -> Generator[psycopg2.extensions.connection, None, None]:
    """Borrow a pooled connection for the duration of a ``with`` block.

    The block runs as one transaction: a clean exit commits, an exception
    rolls back and propagates. With ``autocommit=True`` every statement
    commits on its own. The connection always goes back to the pool.
    """
    pool = get_pool()
    conn = pool.getconn()
    try:
        if autocommit:
            conn.autocommit = True
        yield conn
        if not autocommit:
            conn.commit()
    except Exception:
        if not autocommit:
            conn.rollback()
        raise
    finally:
        if autocommit:
            conn.autocommit = False
        pool.putconn(conn)


@contextmanager
def get_cursor(autocommit: bool = False) -> Generator[RealDictCursor, None, None]:
    """Like ``get_connection`` but yields a cursor whose rows are dicts."""
    with get_connection(autocommit=autocommit) as conn:
        cur = conn.cursor(cursor_factory=RealDictCursor)
        try:
            yield cur
        finally:
            cur.close()


def close_pool() -> None:
    global _pool
    if _pool is not None:
        _pool.closeall()
        _pool = None
