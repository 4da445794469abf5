import psycopg2
import pytest

from kismet_to_psql import copier
from kismet_to_psql.catalog import get_table
from kismet_to_psql.copier import (
    RowConversionError, convert_row, convert_value, copy_table, decode_text, iter_batches, read_rows
)

from conftest import create_kismet_tables, insert_messages

MESSAGES = get_table('messages')


@pytest.fixture
def inserts(monkeypatch):
    calls = []

    def fake_insert(pg_conn, table, columns, values):
        calls.append(values)

    monkeypatch.setattr(copier, 'insert_batch', fake_insert)
    return calls


def test_iter_batches_sizes():
    rows = list(range(60))
    batches = list(iter_batches(rows, 25))
    assert [(start, end) for start, end, _ in batches] == [(0, 25), (25, 50), (50, 60)]
    assert [len(chunk) for _, _, chunk in batches] == [25, 25, 10]


def test_iter_batches_exact_multiple():
    batches = list(iter_batches(list(range(50)), 25))
    assert [len(chunk) for _, _, chunk in batches] == [25, 25]


@pytest.mark.parametrize('batch_size', [0, -1, 2.5])
def test_iter_batches_rejects_bad_size(batch_size):
    with pytest.raises(ValueError):
        list(iter_batches([1, 2, 3], batch_size))


def test_copy_sixty_rows_in_three_batches(source_conn, pg_conn, job_log, inserts):
    insert_messages(source_conn, 60)

    copied = copy_table(MESSAGES, source_conn, pg_conn, job_log, batch_size=25)

    assert copied == 60
    assert [len(values) for values in inserts] == [25, 25, 10]
    assert "✅ Copied 60 rows from messages" in job_log.read()


def test_copy_preserves_source_order(source_conn, pg_conn, job_log, inserts):
    insert_messages(source_conn, 7)

    copy_table(MESSAGES, source_conn, pg_conn, job_log, batch_size=3)

    ts = [values[0] for batch in inserts for values in batch]
    assert ts == [1700000000 + i for i in range(7)]


def test_empty_table(source_conn, pg_conn, job_log, inserts):
    copied = copy_table(MESSAGES, source_conn, pg_conn, job_log)

    assert copied == 0
    assert inserts == []
    assert "No rows found in messages" in job_log.read()


def test_failed_batch_stops_table(source_conn, pg_conn, job_log, monkeypatch):
    insert_messages(source_conn, 60)
    calls = []

    def flaky_insert(conn, table, columns, values):
        calls.append(len(values))
        if len(calls) == 2:
            raise psycopg2.OperationalError("parameter limit exceeded")

    monkeypatch.setattr(copier, 'insert_batch', flaky_insert)

    copied = copy_table(MESSAGES, source_conn, pg_conn, job_log, batch_size=25)

    assert copied == 25
    assert calls == [25, 25]
    assert pg_conn.rollbacks == 1
    output = job_log.read()
    assert "Failed to copy batch for messages (25–50)" in output
    assert "parameter limit exceeded" in output


def test_missing_source_table(pg_conn, job_log, inserts):
    import sqlite3
    conn = sqlite3.connect(':memory:')

    copied = copy_table(MESSAGES, conn, pg_conn, job_log)

    assert copied == 0
    assert inserts == []
    assert "Failed to query messages" in job_log.read()


def test_conversion_failure_fails_its_batch(source_conn, pg_conn, job_log, inserts):
    insert_messages(source_conn, 30)
    source_conn.execute("UPDATE messages SET ts_sec = 'not a number' WHERE rowid = 28")
    source_conn.commit()

    copied = copy_table(MESSAGES, source_conn, pg_conn, job_log, batch_size=25)

    assert copied == 25
    assert len(inserts) == 1
    output = job_log.read()
    assert "messages.ts_sec (row 27)" in output
    assert "(25–30)" in output


def test_read_rows_with_missing_column(job_log):
    import sqlite3
    conn = sqlite3.connect(':memory:')
    create_kismet_tables(conn, skip_columns={'messages': ('msgtype',)})
    conn.execute("INSERT INTO messages (ts_sec, lat, lon, message) VALUES (1, 2.0, 3.0, 'hi')")

    columns, rows = read_rows(conn, MESSAGES, job_log)

    assert columns == ['ts_sec', 'lat', 'lon', 'message']
    assert rows == [{'ts_sec': 1, 'lat': 2.0, 'lon': 3.0, 'message': 'hi'}]
    assert "source lacks columns msgtype" in job_log.read()


def test_convert_value_types():
    devices = get_table('devices')
    assert convert_value('12', devices.column('first_time')) == 12
    assert convert_value(3.0, devices.column('first_time')) == 3
    assert convert_value(5, devices.column('min_lat')) == 5.0
    assert convert_value('ab\x00c', devices.column('devmac')) == 'abc'
    assert convert_value(b'AA:BB', devices.column('devmac')) == 'AA:BB'
    assert convert_value('{"a": 1}', devices.column('device')) == b'{"a": 1}'
    assert convert_value(None, devices.column('device')) is None


def test_convert_value_rejects_fractional_int():
    with pytest.raises(ValueError):
        convert_value(1.5, get_table('devices').column('first_time'))


def test_convert_row_names_column():
    with pytest.raises(RowConversionError) as excinfo:
        convert_row(MESSAGES, ['ts_sec', 'lat'], {'ts_sec': 1, 'lat': 'north'}, 4)
    assert excinfo.value.column_name == 'lat'
    assert excinfo.value.row_index == 4


def test_insert_batch_commits(pg_conn, monkeypatch):
    seen = {}

    def fake_execute_values(cur, query, values, page_size):
        seen['values'] = values
        seen['page_size'] = page_size

    monkeypatch.setattr(copier, 'execute_values', fake_execute_values)

    copier.insert_batch(pg_conn, MESSAGES, ['ts_sec'], [(1,), (2,), (3,)])

    assert seen == {'values': [(1,), (2,), (3,)], 'page_size': 3}
    assert pg_conn.commits == 1


def test_dropped_connection_fails_batch_without_raising(source_conn, job_log):
    from conftest import FakePgConn
    insert_messages(source_conn, 30)

    class DeadConn(FakePgConn):
        def cursor(self):
            raise psycopg2.OperationalError('server closed the connection unexpectedly')

        def rollback(self):
            raise psycopg2.InterfaceError('connection already closed')

    copied = copy_table(MESSAGES, source_conn, DeadConn(), job_log, batch_size=25)

    assert copied == 0
    output = job_log.read()
    assert 'Failed to copy batch for messages (0–25)' in output
    assert 'Rollback failed, connection unusable: connection already closed' in output


def test_invalid_utf8_text_is_copied(source_conn, pg_conn, job_log, inserts):
    source_conn.text_factory = decode_text
    insert_messages(source_conn, 30)
    source_conn.execute("UPDATE messages SET message = CAST(X'ff41' AS TEXT) WHERE rowid = 30")
    source_conn.commit()

    copied = copy_table(MESSAGES, source_conn, pg_conn, job_log, batch_size=25)

    assert copied == 30
    assert [len(values) for values in inserts] == [25, 5]
    assert inserts[1][-1][-1] == '\ufffdA'
