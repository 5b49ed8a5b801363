"""Registration model: datastore config, table descriptors, mappings, and pool."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from connections import ConnectionPool, DatastoreConfig, cursor_for
from dialects import Dialect, get_dialect

if TYPE_CHECKING:
    from mapping.virtual_tables import Mapping

logger = logging.getLogger(__name__)


@dataclass
class ColumnDescriptor:
    """Column of a descriptor-created table.

    ``data_type`` is either a Polars dtype name (int64, string, float64,
    bool, date, datetime, ...) mapped per dialect, or a literal SQL type.
    """

    name: str
    data_type: str = "string"
    nullable: bool = True


def _column(data) -> ColumnDescriptor:
    if isinstance(data, str):
        return ColumnDescriptor(name=data)
    return ColumnDescriptor(
        name=data.get("name") or data.get("Name"),
        data_type=data.get("data_type") or data.get("dataType") or data.get("DataType") or "string",
        nullable=data.get("nullable", data.get("Nullable", True)),
    )


@dataclass
class TableDescriptor:
    """Per-table metadata: primary key, autoincrement column, optional DDL."""

    table: str
    pk_columns: list[str] = field(default_factory=list)
    autoincrement: str | None = None
    columns: list[ColumnDescriptor] = field(default_factory=list)
    ddl: str | None = None
    from_query: str | None = None
    # True when discovered from the datastore catalog rather than registered
    discovered: bool = False

    @classmethod
    def from_dict(cls, data: dict) -> TableDescriptor:
        pk = data.get("pk_columns") or data.get("PkColumns") or []
        autoincrement = data.get("autoincrement") or data.get("Autoincrement")
        if autoincrement is True:
            # Boolean form: the single key column is the autoincrement column
            autoincrement = pk[0] if len(pk) == 1 else None
        return cls(
            table=data.get("table") or data.get("Table"),
            pk_columns=[pk] if isinstance(pk, str) else list(pk),
            autoincrement=autoincrement or None,
            columns=[_column(c) for c in data.get("columns") or []],
            ddl=data.get("ddl"),
            from_query=data.get("from_query") or data.get("FromQuery"),
        )

    @property
    def has_schema(self) -> bool:
        return bool(self.ddl or self.columns)


@dataclass
class Registration:
    """A named datastore: config, descriptors, mappings, and its connection pool.

    All datastore work against a registration holds ``lock`` (the pool's
    re-entrant lock), which serializes concurrent requests and makes Recreate
    a barrier.
    """

    name: str
    config: DatastoreConfig
    tables: dict[str, TableDescriptor] = field(default_factory=dict)
    mappings: dict[str, Mapping] = field(default_factory=dict)
    pool: ConnectionPool | None = None

    def __post_init__(self) -> None:
        if self.pool is None:
            self.pool = ConnectionPool(self.name, self.config)

    @property
    def dialect(self) -> Dialect:
        return get_dialect(self.config.driver_name)

    @property
    def lock(self):
        return self.pool.lock

    def connection(self):
        """Context manager yielding the pooled connection under the lock."""
        return self.pool.acquire()

    def descriptor(self, table: str) -> TableDescriptor:
        """Registered descriptor, or one discovered from the catalog and cached.

        Discovery reads the primary key and identity/rowid column. A table the
        datastore does not know yields an empty (insert-only) descriptor that
        is not cached, so a later CREATE TABLE is picked up.
        """
        with self.lock:
            if table in self.tables:
                return self.tables[table]
            with self.connection() as conn, cursor_for(conn) as cursor:
                if not self.dialect.table_exists(cursor, table):
                    return TableDescriptor(table=table, discovered=True)
                descriptor = TableDescriptor(
                    table=table,
                    pk_columns=self.dialect.primary_key_columns(cursor, table),
                    autoincrement=self.dialect.autoincrement_column(cursor, table),
                    discovered=True,
                )
            self.tables[table] = descriptor
            logger.debug(
                "Discovered descriptor for %s.%s: pk=%s autoincrement=%s",
                self.name, table, descriptor.pk_columns, descriptor.autoincrement,
            )
            return descriptor

    def forget_discovered(self) -> None:
        """Drop catalog-discovered descriptors (after schema changes)."""
        with self.lock:
            self.tables = {k: v for k, v in self.tables.items() if not v.discovered}

    def close(self) -> None:
        self.pool.close()
