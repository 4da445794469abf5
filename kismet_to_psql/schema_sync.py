"""
Schema synchronization for the Postgres destination

Creates missing tables, adds missing columns and indexes. Additive only:
existing columns are never dropped, retyped or narrowed, so running it again
against an up-to-date destination is a no-op.
"""
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Set

import psycopg2
from psycopg2 import sql

from .catalog import CATALOG, Column, Index, TableDef
from .copier import safe_rollback

logger = logging.getLogger(__name__)

CREATE_TABLE = 'create_table'
ADD_COLUMN = 'add_column'
CREATE_INDEX = 'create_index'


class SchemaSyncError(Exception):
    """DDL against the destination failed; the job must not copy data"""


def column_definition(column: Column):
    definition = sql.SQL("{} {}").format(sql.Identifier(column.name), sql.SQL(column.pg_type))
    if not column.nullable:
        definition = sql.SQL("{} NOT NULL").format(definition)
    return definition


@dataclass(frozen=True)
class SchemaChange:
    action: str
    table: TableDef
    column: Optional[Column] = None
    index: Optional[Index] = None

    def statement(self):
        if self.action == CREATE_TABLE:
            return sql.SQL("CREATE TABLE IF NOT EXISTS {} ({})").format(
                sql.Identifier(self.table.name),
                sql.SQL(', ').join(column_definition(col) for col in self.table.columns)
            )
        if self.action == ADD_COLUMN:
            return sql.SQL("ALTER TABLE {} ADD COLUMN IF NOT EXISTS {}").format(
                sql.Identifier(self.table.name),
                column_definition(self.column)
            )
        if self.action == CREATE_INDEX:
            template = "CREATE UNIQUE INDEX IF NOT EXISTS {} ON {} ({})" if self.index.unique \
                else "CREATE INDEX IF NOT EXISTS {} ON {} ({})"
            return sql.SQL(template).format(
                sql.Identifier(self.index.name),
                sql.Identifier(self.table.name),
                sql.SQL(', ').join(map(sql.Identifier, self.index.columns))
            )
        raise ValueError(f"Unknown schema change: {self.action}")

    def describe(self):
        if self.action == CREATE_TABLE:
            return f"Created table {self.table.name}"
        if self.action == ADD_COLUMN:
            return f"Added column {self.table.name}.{self.column.name} ({self.column.pg_type})"
        kind = 'UNIQUE INDEX' if self.index.unique else 'INDEX'
        return f"Created {kind} {self.index.name} on {self.table.name} ({', '.join(self.index.columns)})"


def table_exists(pg_conn, table_name) -> bool:
    with pg_conn.cursor() as cur:
        cur.execute("""
            SELECT EXISTS (
                SELECT FROM information_schema.tables
                WHERE table_schema = current_schema()
                AND table_name = %s
            )
        """, (table_name,))
        return bool(cur.fetchone()[0])


def get_existing_columns(pg_conn, table_name) -> Dict[str, str]:
    """Column name -> data type for a destination table (empty if the table is absent)"""
    with pg_conn.cursor() as cur:
        cur.execute("""
            SELECT column_name, data_type
            FROM information_schema.columns
            WHERE table_schema = current_schema() AND table_name = %s
            ORDER BY ordinal_position
        """, (table_name,))
        return {name: data_type for name, data_type in cur.fetchall()}


def get_existing_indexes(pg_conn, table_name) -> Set[str]:
    with pg_conn.cursor() as cur:
        cur.execute("""
            SELECT indexname
            FROM pg_indexes
            WHERE schemaname = current_schema() AND tablename = %s
        """, (table_name,))
        return {row[0] for row in cur.fetchall()}


def plan_table(table: TableDef, existing_columns: Dict[str, str], existing_indexes: Set[str],
               exists: Optional[bool] = None) -> List[SchemaChange]:
    """Changes needed to bring one destination table up to its definition

    exists defaults to "has any columns"; pass it explicitly when the table
    may exist with no columns at all.
    """
    changes = []
    if exists is None:
        exists = bool(existing_columns)

    if not exists:
        changes.append(SchemaChange(CREATE_TABLE, table))
    else:
        for col in table.columns:
            if col.name not in existing_columns:
                changes.append(SchemaChange(ADD_COLUMN, table, column=col))

    for idx in table.indexes:
        if idx.name not in existing_indexes:
            changes.append(SchemaChange(CREATE_INDEX, table, index=idx))

    return changes


def type_mismatches(table: TableDef, existing_columns: Dict[str, str]):
    """(column, wanted, found) for existing columns whose type differs; reported, never altered"""
    mismatches = []
    for col in table.columns:
        found = existing_columns.get(col.name)
        if found is not None and found != col.pg_type:
            mismatches.append((col.name, col.pg_type, found))
    return mismatches


def apply_change(pg_conn, change: SchemaChange):
    with pg_conn.cursor() as cur:
        cur.execute(change.statement())


def sync_schema(pg_conn, log, catalog=CATALOG) -> List[SchemaChange]:
    """Create or extend every catalog table on the destination"""
    applied = []

    for table in catalog:
        try:
            exists = table_exists(pg_conn, table.name)
            existing_columns = get_existing_columns(pg_conn, table.name)
            existing_indexes = get_existing_indexes(pg_conn, table.name)

            for col_name, wanted, found in type_mismatches(table, existing_columns):
                log.warning(f"⚠️  {table.name}.{col_name} is {found}, expected {wanted} - leaving as is")

            changes = plan_table(table, existing_columns, existing_indexes, exists=exists)
            for change in changes:
                apply_change(pg_conn, change)
            pg_conn.commit()
        except psycopg2.Error as e:
            safe_rollback(pg_conn, log)
            raise SchemaSyncError(f"Failed to migrate table {table.name}: {e}") from e

        for change in changes:
            log.info(f"   ✅ {change.describe()}")
        applied.extend(changes)

    return applied
