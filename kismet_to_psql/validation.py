"""
Post-copy verification

Compares per-table row counts between the SQLite source and the Postgres
destination. Informational only: a mismatch is reported, never fatal.
"""
import logging
import sqlite3
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

import psycopg2
from psycopg2 import sql

from .catalog import CATALOG
from .copier import safe_rollback

logger = logging.getLogger(__name__)


class ValidationStatus(Enum):
    """Validation check status"""
    PASS = "✓ PASS"
    WARN = "⚠ WARN"
    FAIL = "✗ FAIL"
    SKIP = "⊘ SKIP"


@dataclass
class CountCheck:
    """Row count comparison for one table"""
    table: str
    source_rows: Optional[int]
    dest_rows: Optional[int]
    status: ValidationStatus

    @property
    def explanation(self):
        if self.status == ValidationStatus.SKIP:
            return "row count unavailable"
        diff = (self.dest_rows or 0) - (self.source_rows or 0)
        if diff == 0:
            return "counts match"
        if diff > 0:
            return f"destination has {diff} more rows (previous runs?)"
        return f"destination is missing {-diff} rows"


def classify(source_rows, dest_rows) -> ValidationStatus:
    if source_rows is None or dest_rows is None:
        return ValidationStatus.SKIP
    if source_rows == dest_rows:
        return ValidationStatus.PASS
    if dest_rows > source_rows:
        return ValidationStatus.WARN
    return ValidationStatus.FAIL


def count_source_rows(source_conn, table_name) -> Optional[int]:
    try:
        return source_conn.execute(f'SELECT COUNT(*) FROM "{table_name}"').fetchone()[0]
    except sqlite3.Error as e:
        logger.warning(f"Could not count source rows for {table_name}: {e}")
        return None


def count_dest_rows(pg_conn, table_name) -> Optional[int]:
    try:
        with pg_conn.cursor() as cur:
            cur.execute(sql.SQL("SELECT COUNT(*) FROM {}").format(sql.Identifier(table_name)))
            return cur.fetchone()[0]
    except psycopg2.Error as e:
        safe_rollback(pg_conn)
        logger.warning(f"Could not count destination rows for {table_name}: {e}")
        return None


def verify_counts(source_conn, pg_conn, log, catalog=CATALOG) -> List[CountCheck]:
    log.info("Verifying row counts...")
    checks = []
    for table in catalog:
        source_rows = count_source_rows(source_conn, table.name)
        dest_rows = count_dest_rows(pg_conn, table.name)
        check = CountCheck(table.name, source_rows, dest_rows, classify(source_rows, dest_rows))
        checks.append(check)

        message = f"   {check.status.value} {table.name}: source={source_rows} dest={dest_rows} - {check.explanation}"
        if check.status == ValidationStatus.FAIL:
            log.warning(message)
        else:
            log.info(message)

    failed = sum(1 for c in checks if c.status == ValidationStatus.FAIL)
    if failed:
        log.warning(f"⚠️  {failed}/{len(checks)} tables have fewer rows in PostgreSQL than in SQLite")
    else:
        log.info(f"✅ Row counts verified for {len(checks)} tables")
    return checks
