import sqlite3

import pytest

from kismet_to_psql.catalog import BIGINT, BYTEA, DOUBLE, CATALOG
from kismet_to_psql.joblog import JobLog

SQLITE_TYPES = {BIGINT: 'INTEGER', DOUBLE: 'REAL', BYTEA: 'BLOB'}


class FakeCursor:
    def __init__(self, conn):
        self.conn = conn
        self._result = []

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        return False

    def execute(self, query, params=None):
        self.conn.executed.append((query, params))
        self._result = list(self.conn.results.pop(0)) if self.conn.results else []

    def fetchone(self):
        return self._result[0] if self._result else None

    def fetchall(self):
        return self._result


class FakePgConn:
    """Stands in for a psycopg2 connection; records statements and transaction calls"""

    def __init__(self, results=None):
        self.executed = []
        self.results = list(results or [])
        self.commits = 0
        self.rollbacks = 0
        self.closed = False

    def cursor(self):
        return FakeCursor(self)

    def commit(self):
        self.commits += 1

    def rollback(self):
        self.rollbacks += 1

    def close(self):
        self.closed = True


def create_kismet_tables(conn, skip_columns=None):
    skip_columns = skip_columns or {}
    for table in CATALOG:
        cols = ', '.join(
            f'"{col.name}" {SQLITE_TYPES.get(col.pg_type, "TEXT")}'
            for col in table.columns
            if col.name not in skip_columns.get(table.name, ())
        )
        conn.execute(f'CREATE TABLE "{table.name}" ({cols})')
    conn.commit()


def insert_messages(conn, count):
    conn.executemany(
        'INSERT INTO messages (ts_sec, lat, lon, msgtype, message) VALUES (?, ?, ?, ?, ?)',
        [(1700000000 + i, 52.1, 4.3, 'INFO', f'message {i}') for i in range(count)]
    )
    conn.commit()


@pytest.fixture
def source_conn():
    conn = sqlite3.connect(':memory:')
    create_kismet_tables(conn)
    yield conn
    conn.close()


@pytest.fixture
def kismet_file(tmp_path):
    path = tmp_path / 'Kismet-20240101.kismet'
    conn = sqlite3.connect(str(path))
    create_kismet_tables(conn)
    insert_messages(conn, 3)
    conn.close()
    return path


@pytest.fixture
def pg_conn():
    return FakePgConn()


@pytest.fixture
def job_log():
    return JobLog('test-job', 'unit')
