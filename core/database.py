"""
core/database.py -- Engine factory, shared schema metadata and transactions.

Every store in the project (auth/, farm/, approvals/) registers its tables on
the single `metadata` defined here and receives the same Engine, so that an
entity write and its audit row commit in one transaction.

Pattern: Unit of Work via transaction(). Handlers open one transaction per
request-level operation; any exception rolls it back. A failing rollback is
logged and swallowed so the original exception is the one that propagates.

SQLite is the default backend (WAL mode, check_same_thread=False because
FastAPI runs sync handlers in a thread pool). PostgreSQL works by changing
DATABASE_URL; row locks requested with .with_for_update() are only emitted
there -- SQLite compiles them away.

Timestamps are stored as ISO 8601 UTC strings (same format everywhere), so
lexicographic comparison in SQL matches chronological order.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import MetaData, create_engine, event
from sqlalchemy.engine import Connection, Engine

logger = logging.getLogger("piscicola.db")

metadata = MetaData()


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def create_db_engine(db_url: str) -> Engine:
    """Create the process-wide Engine and make sure every known table exists."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    return engine


def ping(engine: Engine) -> bool:
    """Return True if the database answers a trivial query."""
    try:
        with engine.connect() as conn:
            conn.exec_driver_sql("SELECT 1")
        return True
    except Exception:
        logger.exception("Database ping failed")
        return False


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------


@contextmanager
def transaction(engine: Engine) -> Iterator[Connection]:
    """Yield a connection inside an explicit transaction.

    Commits when the block exits normally. On any exception the transaction
    is rolled back and the exception re-raised; a rollback failure is logged
    instead of replacing the original error.
    """
    conn = engine.connect()
    trans = conn.begin()
    try:
        yield conn
        trans.commit()
    except BaseException:
        try:
            trans.rollback()
        except Exception:
            logger.exception("Rollback failed")
        raise
    finally:
        conn.close()


# ---------------------------------------------------------------------------
# Time helpers
# ---------------------------------------------------------------------------


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat()


def now_iso() -> str:
    return to_iso(now_utc())


def parse_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
