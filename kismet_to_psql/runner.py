"""
Migration job: schema sync followed by a table-by-table copy
"""
import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional

import psycopg2

from .catalog import CATALOG
from .copier import DEFAULT_BATCH_SIZE, copy_table, decode_text
from .schema_sync import SchemaSyncError, sync_schema
from .validation import verify_counts

logger = logging.getLogger(__name__)


@dataclass
class JobResult:
    total_rows: int = 0
    tables: Dict[str, int] = field(default_factory=dict)
    error: Optional[str] = None

    @property
    def ok(self):
        return self.error is None


def open_source(sqlite_path):
    """Open the SQLite file read-only; a missing file fails instead of creating an empty db"""
    uri = Path(sqlite_path).resolve().as_uri() + '?mode=ro'
    conn = sqlite3.connect(uri, uri=True)
    conn.text_factory = decode_text
    return conn


def open_destination(dsn):
    return psycopg2.connect(dsn)


def copy_all(source_conn, pg_conn, log, batch_size, result: JobResult, catalog=CATALOG):
    log.info("Copying data from SQLite to PostgreSQL...")
    for table in catalog:
        copied = copy_table(table, source_conn, pg_conn, log, batch_size=batch_size)
        result.tables[table.name] = copied
        result.total_rows += copied
        if pg_conn.closed:
            raise psycopg2.InterfaceError(f"connection to PostgreSQL lost while copying {table.name}")
    log.info(f"🎉 Data copy complete. Total rows copied: {result.total_rows}")


def run_job(sqlite_path, dsn, log, copy_data=True, batch_size=DEFAULT_BATCH_SIZE, verify=False) -> JobResult:
    """Run one full migration and report through the job log; never raises for database errors"""
    result = JobResult()
    start_time = datetime.now()
    source_conn = None
    pg_conn = None

    try:
        try:
            source_conn = open_source(sqlite_path)
        except sqlite3.Error as e:
            result.error = f"Failed to open SQLite: {e}"
            log.error(f"❌ {result.error}")
            return result

        try:
            pg_conn = open_destination(dsn)
        except psycopg2.Error as e:
            result.error = f"Failed to connect to PostgreSQL: {e}"
            log.error(f"❌ {result.error}")
            return result

        log.info("Migrating schema to PostgreSQL...")
        try:
            sync_schema(pg_conn, log)
        except SchemaSyncError as e:
            result.error = f"Schema migration failed: {e}"
            log.error(f"❌ {result.error}")
            return result
        log.info("✅ Schema migration complete")

        try:
            if copy_data:
                copy_all(source_conn, pg_conn, log, batch_size, result)
            else:
                log.info("ℹ️  Data copy disabled - schema only")

            if verify:
                verify_counts(source_conn, pg_conn, log)
        except (psycopg2.InterfaceError, psycopg2.OperationalError) as e:
            result.error = f"Lost connection to PostgreSQL: {e}"
            log.error(f"❌ {result.error}")
            return result

        elapsed = (datetime.now() - start_time).total_seconds()
        log.info(f"✅ Migration completed in {elapsed:.1f}s")
        return result
    finally:
        if source_conn is not None:
            source_conn.close()
        if pg_conn is not None:
            pg_conn.close()
