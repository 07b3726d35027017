"""PostgreSQL access for events and their entries.

Expected tables (created and migrated outside this service)::

    events(id, name, registration_fee_per_dancer, solo_1_fee, solo_2_fee,
           solo_3_fee, solo_additional_fee, duet_trio_fee_per_person,
           small_group_fee_per_person, large_group_fee_per_person)
    event_entries(id, event_id, eodsa_id, contestant_id, participant_ids,
                  mastery, item_name, submitted_at, calculated_fee)

``participant_ids`` may be a text[] / jsonb array or JSON text; callers
normalize it.
"""

import os
from contextlib import contextmanager
from decimal import Decimal
from typing import Any, Dict, List, Optional

import psycopg2
from psycopg2 import errors as pg_errors
from psycopg2 import pool as pg_pool
from psycopg2.extras import RealDictCursor


_POOL: Optional[pg_pool.AbstractConnectionPool] = None

_EVENT_COLUMNS = (
    "id",
    "name",
    "registration_fee_per_dancer",
    "solo_1_fee",
    "solo_2_fee",
    "solo_3_fee",
    "solo_additional_fee",
    "duet_trio_fee_per_person",
    "small_group_fee_per_person",
    "large_group_fee_per_person",
)
# Rate columns added after the first release; absent on older databases.
_OPTIONAL_EVENT_COLUMNS = {
    "duet_trio_fee_per_person",
    "small_group_fee_per_person",
    "large_group_fee_per_person",
}


def _env_int(name: str, default: Optional[int] = None) -> Optional[int]:
    val = os.environ.get(name)
    if val is None:
        return default
    try:
        return int(val)
    except ValueError:
        return default


def _connect_kwargs() -> Dict[str, Any]:
    """Connection kwargs shared by the pool and direct connections.

    connect_timeout defaults to 10 seconds (DB_CONNECT_TIMEOUT). TCP
    keepalives are on unless DB_KEEPALIVES is 0/false; the IDLE, INTERVAL and
    COUNT tunables are passed through when set.
    """
    timeout = _env_int("DB_CONNECT_TIMEOUT")
    kwargs: Dict[str, Any] = {"connect_timeout": timeout if timeout is not None else 10}

    keepalives = os.environ.get("DB_KEEPALIVES")
    kwargs["keepalives"] = 0 if keepalives is not None and keepalives.lower() in ("0", "false") else 1

    for env_name, key in (
        ("DB_KEEPALIVES_IDLE", "keepalives_idle"),
        ("DB_KEEPALIVES_INTERVAL", "keepalives_interval"),
        ("DB_KEEPALIVES_COUNT", "keepalives_count"),
    ):
        value = _env_int(env_name)
        if value is not None:
            kwargs[key] = value
    return kwargs


def init_pool(minconn: int = 1, maxconn: int = 10) -> None:
    """Create the global connection pool from DATABASE_URL.

    A no-op once a pool exists or when DATABASE_URL is unset.
    """
    global _POOL
    if _POOL is not None:
        return
    url = os.environ.get("DATABASE_URL")
    if not url:
        return
    _POOL = pg_pool.ThreadedConnectionPool(minconn, maxconn, dsn=url, **_connect_kwargs())


def _ping(conn) -> bool:
    try:
        with conn.cursor() as cur:
            cur.execute("SELECT 1")
        if not getattr(conn, "autocommit", False):
            conn.rollback()
        return True
    except (psycopg2.OperationalError, psycopg2.InterfaceError):
        return False


def _rollback_quietly(conn) -> None:
    try:
        conn.rollback()
    except psycopg2.Error:
        pass


def _checkout():
    """Take a healthy connection from the pool, replacing one stale connection."""
    for _attempt in range(2):
        conn = _POOL.getconn()
        if _ping(conn):
            return conn
        _POOL.putconn(conn, close=True)
    raise psycopg2.OperationalError("Failed to acquire healthy DB connection after retry")


@contextmanager
def _get_conn():
    """Yield a pooled connection when a pool exists, else a direct one.

    The connection is rolled back on error and never handed back to the pool
    mid-transaction.
    """
    url = os.environ.get("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL not set; configure a PostgreSQL connection string")
    if _POOL is None:
        conn = psycopg2.connect(url, **_connect_kwargs())
        try:
            yield conn
        except Exception:
            _rollback_quietly(conn)
            raise
        finally:
            conn.close()
        return

    conn = _checkout()
    try:
        yield conn
    except Exception:
        _rollback_quietly(conn)
        raise
    finally:
        # status 1 = active, 2 = in transaction, 3 = in error
        if getattr(conn, "closed", 0) == 0 and not getattr(conn, "autocommit", False):
            if getattr(conn, "status", 0) in (1, 2, 3):
                _rollback_quietly(conn)
        _POOL.putconn(conn)


def _as_number(value: Any) -> Any:
    # NUMERIC columns arrive as Decimal
    if isinstance(value, Decimal):
        return float(value)
    return value


def get_event(event_id: str) -> Optional[Dict[str, Any]]:
    """Return the event row with its fee columns, or None."""
    with _get_conn() as conn, conn.cursor(cursor_factory=RealDictCursor) as cur:
        try:
            cur.execute(
                f"SELECT {', '.join(_EVENT_COLUMNS)} FROM events WHERE id = %s",
                (event_id,),
            )
        except pg_errors.UndefinedColumn:
            conn.rollback()
            columns = [c for c in _EVENT_COLUMNS if c not in _OPTIONAL_EVENT_COLUMNS]
            cur.execute(
                f"SELECT {', '.join(columns)} FROM events WHERE id = %s",
                (event_id,),
            )
        row = cur.fetchone()
    if not row:
        return None
    return {key: _as_number(val) for key, val in row.items()}


def list_event_entries(event_id: str) -> List[Dict[str, Any]]:
    """Return all entries of an event in one query."""
    with _get_conn() as conn, conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT id, event_id, eodsa_id, contestant_id, participant_ids,
                   mastery, item_name, submitted_at, calculated_fee
            FROM event_entries
            WHERE event_id = %s
            ORDER BY submitted_at, id
            """,
            (event_id,),
        )
        rows = cur.fetchall() or []
    return [{key: _as_number(val) for key, val in row.items()} for row in rows]


def update_entry_fee(entry_id: str, fee: float) -> None:
    """Write one entry's calculated_fee in its own committed statement."""
    with _get_conn() as conn, conn.cursor() as cur:
        cur.execute(
            "UPDATE event_entries SET calculated_fee = %s WHERE id = %s",
            (fee, entry_id),
        )
        if cur.rowcount == 0:
            conn.rollback()
            raise LookupError(f"entry {entry_id} no longer exists")
        conn.commit()
