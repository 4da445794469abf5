"""
Row copy from the Kismet SQLite log into Postgres

Rows are read as column -> value mappings, decoded against the catalog
column types, and written in fixed-size multi-row INSERTs so a single
statement never exceeds the Postgres bind-parameter limit.
"""
import logging
import sqlite3
from datetime import datetime
from typing import Any, Dict, Iterator, List, Sequence, Tuple

import psycopg2
from psycopg2 import sql
from psycopg2.extras import execute_values

from .catalog import BIGINT, BYTEA, DOUBLE, TEXT, Column, TableDef

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 25


class RowConversionError(ValueError):
    """A source value could not be decoded into its catalog column type"""

    def __init__(self, table_name, column_name, row_index, value, reason):
        self.table_name = table_name
        self.column_name = column_name
        self.row_index = row_index
        self.value = value
        super().__init__(
            f"{table_name}.{column_name} (row {row_index}): cannot convert {value!r}: {reason}"
        )


def decode_text(raw: bytes) -> str:
    """SQLite text_factory: Kismet logs can hold TEXT that is not valid UTF-8"""
    return raw.decode('utf-8', errors='replace')


def get_source_columns(source_conn, table_name) -> List[str]:
    """Column names of a SQLite table; raises sqlite3.OperationalError if it does not exist"""
    cur = source_conn.execute(f'PRAGMA table_info("{table_name}")')
    columns = [row[1] for row in cur.fetchall()]
    if not columns:
        raise sqlite3.OperationalError(f"no such table: {table_name}")
    return columns


def read_rows(source_conn, table: TableDef, log=None) -> Tuple[List[str], List[Dict[str, Any]]]:
    """Read every row of a source table, in rowid order, as dicts keyed by column name"""
    present = set(get_source_columns(source_conn, table.name))
    columns = [name for name in table.column_names if name in present]
    missing = [name for name in table.column_names if name not in present]

    if missing and log is not None:
        log.warning(f"⚠️  {table.name}: source lacks columns {', '.join(missing)} - they will be NULL")
    if not columns:
        return columns, []

    col_list = ', '.join(f'"{name}"' for name in columns)
    cur = source_conn.execute(f'SELECT {col_list} FROM "{table.name}" ORDER BY rowid')
    rows = [dict(zip(columns, row)) for row in cur.fetchall()]
    return columns, rows


def convert_value(value, column: Column):
    """Decode one SQLite value into the Python type Postgres expects for the column"""
    if value is None:
        return None

    if column.pg_type == BIGINT:
        if isinstance(value, bool):
            return int(value)
        if isinstance(value, float):
            if not value.is_integer():
                raise ValueError("not an integer")
            return int(value)
        if isinstance(value, (bytes, bytearray)):
            raise ValueError("blob in integer column")
        return int(value)

    if column.pg_type == DOUBLE:
        if isinstance(value, (bytes, bytearray)):
            raise ValueError("blob in numeric column")
        return float(value)

    if column.pg_type == BYTEA:
        if isinstance(value, str):
            return value.encode('utf-8')
        if isinstance(value, (bytes, bytearray, memoryview)):
            return bytes(value)
        return str(value).encode('utf-8')

    if column.pg_type == TEXT:
        if isinstance(value, (bytes, bytearray)):
            value = bytes(value).decode('utf-8', errors='replace')
        elif not isinstance(value, str):
            value = str(value)
        # Postgres text cannot hold NUL characters
        if '\x00' in value:
            value = value.replace('\x00', '')
        return value

    return value


def convert_row(table: TableDef, columns: Sequence[str], row: Dict[str, Any], row_index: int) -> tuple:
    values = []
    for name in columns:
        try:
            values.append(convert_value(row.get(name), table.column(name)))
        except (TypeError, ValueError) as e:
            raise RowConversionError(table.name, name, row_index, row.get(name), e) from e
    return tuple(values)


def iter_batches(rows: Sequence, batch_size: int) -> Iterator[Tuple[int, int, Sequence]]:
    """Yield (start, end, rows[start:end]) for contiguous batches of at most batch_size rows"""
    if not isinstance(batch_size, int) or batch_size < 1:
        raise ValueError(f"batch size must be a positive integer, got {batch_size!r}")
    for start in range(0, len(rows), batch_size):
        end = min(start + batch_size, len(rows))
        yield start, end, rows[start:end]


def safe_rollback(pg_conn, log=None):
    """Roll back after a failed statement; a dropped connection cannot roll back and is only reported"""
    try:
        pg_conn.rollback()
    except psycopg2.Error as e:
        message = f"Rollback failed, connection unusable: {e}"
        if log is not None:
            log.error(f"⚠️  {message}")
        else:
            logger.error(message)
        return False
    return True


def insert_batch(pg_conn, table: TableDef, columns: Sequence[str], values: List[tuple]):
    """Insert a batch with one multi-row INSERT and commit it"""
    query = sql.SQL("INSERT INTO {} ({}) VALUES %s").format(
        sql.Identifier(table.name),
        sql.SQL(', ').join(map(sql.Identifier, columns))
    )
    with pg_conn.cursor() as cur:
        execute_values(cur, query, values, page_size=len(values))
    pg_conn.commit()


def copy_table(table: TableDef, source_conn, pg_conn, log, batch_size=DEFAULT_BATCH_SIZE) -> int:
    """Copy one table; returns the number of rows written before any failing batch"""
    start_time = datetime.now()

    try:
        columns, rows = read_rows(source_conn, table, log)
    except sqlite3.Error as e:
        log.warning(f"⚠️  Failed to query {table.name}: {e}")
        return 0

    count = len(rows)
    if count == 0:
        log.info(f"ℹ️  No rows found in {table.name}")
        return 0

    copied = 0
    for start, end, batch in iter_batches(rows, batch_size):
        try:
            values = [convert_row(table, columns, row, start + i) for i, row in enumerate(batch)]
            insert_batch(pg_conn, table, columns, values)
        except (psycopg2.Error, RowConversionError) as e:
            if isinstance(e, psycopg2.Error):
                safe_rollback(pg_conn, log)
            log.error(f"⚠️  Failed to copy batch for {table.name} ({start}–{end}): {e}")
            log.warning(f"   {table.name}: {copied} of {count} rows copied, remaining batches skipped")
            return copied
        copied += len(batch)

    elapsed = (datetime.now() - start_time).total_seconds()
    rate = copied / elapsed if elapsed > 0 else 0
    log.info(f"✅ Copied {copied} rows from {table.name} in {elapsed:.1f}s ({rate:.0f} rows/sec)")
    return copied
