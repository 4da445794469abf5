"""
Table catalog for the Kismet log database

One ordered list drives both schema creation on Postgres and the data copy,
so the two can never disagree about which tables exist or in which order
they are processed.
"""
from dataclasses import dataclass, field
from typing import Tuple

BIGINT = 'bigint'
DOUBLE = 'double precision'
TEXT = 'text'
BYTEA = 'bytea'


@dataclass(frozen=True)
class Column:
    name: str
    pg_type: str
    nullable: bool = True


@dataclass(frozen=True)
class Index:
    name: str
    columns: Tuple[str, ...]
    unique: bool = False


@dataclass(frozen=True)
class TableDef:
    name: str
    columns: Tuple[Column, ...]
    indexes: Tuple[Index, ...] = field(default_factory=tuple)

    @property
    def column_names(self):
        return [col.name for col in self.columns]

    def column(self, name):
        for col in self.columns:
            if col.name == name:
                return col
        raise KeyError(f"{self.name} has no column {name}")


def _cols(*specs):
    return tuple(Column(name, pg_type) for name, pg_type in specs)


KISMET = TableDef('KISMET', _cols(
    ('kismet_version', TEXT),
    ('db_version', BIGINT),
    ('db_module', TEXT),
))

DEVICES = TableDef('devices', _cols(
    ('first_time', BIGINT),
    ('last_time', BIGINT),
    ('devkey', TEXT),
    ('phyname', TEXT),
    ('devmac', TEXT),
    ('strongest_signal', BIGINT),
    ('min_lat', DOUBLE),
    ('min_lon', DOUBLE),
    ('max_lat', DOUBLE),
    ('max_lon', DOUBLE),
    ('avg_lat', DOUBLE),
    ('avg_lon', DOUBLE),
    ('bytes_data', BIGINT),
    ('type', TEXT),
    ('device', BYTEA),
), indexes=(
    Index('idx_phy_devmac', ('phyname', 'devmac'), unique=True),
))

PACKETS = TableDef('packets', _cols(
    ('ts_sec', BIGINT),
    ('ts_usec', BIGINT),
    ('phyname', TEXT),
    ('sourcemac', TEXT),
    ('destmac', TEXT),
    ('transmac', TEXT),
    ('frequency', DOUBLE),
    ('devkey', TEXT),
    ('lat', DOUBLE),
    ('lon', DOUBLE),
    ('alt', DOUBLE),
    ('speed', DOUBLE),
    ('heading', DOUBLE),
    ('packet_len', BIGINT),
    ('signal', BIGINT),
    ('datasource', TEXT),
    ('dlt', BIGINT),
    ('packet', BYTEA),
    ('error', BIGINT),
    ('tags', TEXT),
    ('datarate', DOUBLE),
    ('hash', BIGINT),
    ('packetid', BIGINT),
))

DATA = TableDef('data', _cols(
    ('ts_sec', BIGINT),
    ('ts_usec', BIGINT),
    ('phyname', TEXT),
    ('devmac', TEXT),
    ('lat', DOUBLE),
    ('lon', DOUBLE),
    ('alt', DOUBLE),
    ('speed', DOUBLE),
    ('heading', DOUBLE),
    ('datasource', TEXT),
    ('type', TEXT),
    ('json', BYTEA),
))

DATASOURCES = TableDef('datasources', _cols(
    ('uuid', TEXT),
    ('typestring', TEXT),
    ('definition', TEXT),
    ('name', TEXT),
    ('interface', TEXT),
    ('json', BYTEA),
), indexes=(
    Index('idx_datasources_uuid', ('uuid',), unique=True),
))

ALERTS = TableDef('alerts', _cols(
    ('ts_sec', BIGINT),
    ('ts_usec', BIGINT),
    ('phyname', TEXT),
    ('devmac', TEXT),
    ('lat', DOUBLE),
    ('lon', DOUBLE),
    ('header', TEXT),
    ('json', BYTEA),
))

MESSAGES = TableDef('messages', _cols(
    ('ts_sec', BIGINT),
    ('lat', DOUBLE),
    ('lon', DOUBLE),
    ('msgtype', TEXT),
    ('message', TEXT),
))

SNAPSHOTS = TableDef('snapshots', _cols(
    ('ts_sec', BIGINT),
    ('ts_usec', BIGINT),
    ('lat', DOUBLE),
    ('lon', DOUBLE),
    ('snaptype', TEXT),
    ('json', BYTEA),
))

# Copy order: metadata, devices, packets, data, data sources, alerts, messages, snapshots
CATALOG = (KISMET, DEVICES, PACKETS, DATA, DATASOURCES, ALERTS, MESSAGES, SNAPSHOTS)


def get_table(name):
    """Look up a table definition by destination table name"""
    for table in CATALOG:
        if table.name == name:
            return table
    raise KeyError(f"Unknown table: {name}. Valid options: {[t.name for t in CATALOG]}")
