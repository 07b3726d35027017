import importlib
from decimal import Decimal

import pytest


class FakeCursor:
    def __init__(self, conn):
        self.conn = conn
        self.rowcount = conn.rowcount

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def execute(self, sql, params=None):
        if self.conn.fail_sql:
            from psycopg2 import OperationalError

            raise OperationalError("SSL connection has been closed unexpectedly")
        self.conn.statements.append((" ".join(sql.split()), params))

    def fetchone(self):
        return self.conn.rows[0] if self.conn.rows else None

    def fetchall(self):
        return list(self.conn.rows)


class FakeConn:
    autocommit = False
    closed = 0
    status = 0

    def __init__(self, rows=None, rowcount=1, fail_sql=False):
        self.rows = rows or []
        self.rowcount = rowcount
        self.fail_sql = fail_sql
        self.statements = []
        self.commits = 0
        self.rollbacks = 0

    def cursor(self, cursor_factory=None):
        return FakeCursor(self)

    def commit(self):
        self.commits += 1

    def rollback(self):
        self.rollbacks += 1

    def close(self):
        self.closed = 1


@pytest.fixture()
def pg(monkeypatch):
    import app.datastore_pg as module
    # Reload to restore the real functions the autouse fixture patches
    module = importlib.reload(module)
    monkeypatch.setattr(module, "_POOL", None)
    return module


def test_init_pool_passes_keepalive_kwargs(monkeypatch, pg):
    monkeypatch.setenv("DB_CONNECT_TIMEOUT", "7")
    monkeypatch.setenv("DB_KEEPALIVES", "1")
    monkeypatch.setenv("DB_KEEPALIVES_IDLE", "30")
    monkeypatch.setenv("DB_KEEPALIVES_INTERVAL", "10")
    monkeypatch.setenv("DB_KEEPALIVES_COUNT", "3")
    captured = {}

    class FakePool:
        def __init__(self, minconn, maxconn, dsn=None, **kwargs):
            captured.update(minconn=minconn, maxconn=maxconn, dsn=dsn, kwargs=kwargs)

    monkeypatch.setattr(pg.pg_pool, "ThreadedConnectionPool", FakePool)
    pg.init_pool(minconn=2, maxconn=5)

    assert captured["dsn"].startswith("postgresql://")
    assert (captured["minconn"], captured["maxconn"]) == (2, 5)
    assert captured["kwargs"] == {
        "connect_timeout": 7,
        "keepalives": 1,
        "keepalives_idle": 30,
        "keepalives_interval": 10,
        "keepalives_count": 3,
    }


def test_keepalives_can_be_disabled(monkeypatch, pg):
    monkeypatch.setenv("DB_KEEPALIVES", "false")
    monkeypatch.delenv("DB_CONNECT_TIMEOUT", raising=False)
    kwargs = pg._connect_kwargs()
    assert kwargs["keepalives"] == 0
    assert kwargs["connect_timeout"] == 10


def test_pool_checkout_replaces_stale_connection(monkeypatch, pg):
    class FakePool:
        def __init__(self):
            self.handed_out = [FakeConn(fail_sql=True), FakeConn()]
            self.returned = []

        def getconn(self):
            return self.handed_out.pop(0)

        def putconn(self, conn, close=False):
            self.returned.append((conn, close))
            if close:
                conn.close()

    pool = FakePool()
    monkeypatch.setattr(pg, "_POOL", pool)

    with pg._get_conn() as conn:
        assert not conn.fail_sql

    assert [close for _conn, close in pool.returned] == [True, False]


def test_update_entry_fee_commits_single_update(monkeypatch, pg):
    conn = FakeConn(rowcount=1)
    monkeypatch.setattr(pg.psycopg2, "connect", lambda dsn=None, **kwargs: conn)

    pg.update_entry_fee("e1", 350.0)

    assert conn.statements == [("UPDATE event_entries SET calculated_fee = %s WHERE id = %s", (350.0, "e1"))]
    assert conn.commits == 1
    assert conn.closed == 1


def test_update_entry_fee_missing_row_raises(monkeypatch, pg):
    conn = FakeConn(rowcount=0)
    monkeypatch.setattr(pg.psycopg2, "connect", lambda dsn=None, **kwargs: conn)

    with pytest.raises(LookupError):
        pg.update_entry_fee("gone", 350.0)
    assert conn.commits == 0
    assert conn.rollbacks >= 1


def test_get_event_converts_numeric_columns(monkeypatch, pg):
    row = {"id": "EVT1", "name": "Regionals", "solo_1_fee": Decimal("400.00"), "solo_2_fee": None}
    conn = FakeConn(rows=[row])
    monkeypatch.setattr(pg.psycopg2, "connect", lambda dsn=None, **kwargs: conn)

    event = pg.get_event("EVT1")

    assert event == {"id": "EVT1", "name": "Regionals", "solo_1_fee": 400.0, "solo_2_fee": None}
    assert conn.statements[0][1] == ("EVT1",)


def test_get_conn_requires_database_url(monkeypatch, pg):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    with pytest.raises(RuntimeError):
        with pg._get_conn():
            pass
