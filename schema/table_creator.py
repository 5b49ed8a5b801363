"""CREATE TABLE statements from table descriptors.

Column types in a descriptor are Polars dtype names (``int64``, ``string``,
``float64``, ``bool``, ``date``, ``datetime``, ...) mapped to the dialect's
SQL type, or literal SQL types passed through unchanged.

The autoincrement column is generated as ``BIGINT IDENTITY(1,1)`` on SQL
Server and as ``INTEGER PRIMARY KEY`` (rowid alias) on SQLite.
"""

from __future__ import annotations

import logging

import polars as pl

from connections import quote_identifier, quote_table
from dialects import Dialect, DialectType
from registry.models import ColumnDescriptor, TableDescriptor

logger = logging.getLogger(__name__)

# Descriptor type names -> Polars dtype
_DTYPE_NAMES: dict[str, type] = {
    "int8": pl.Int8,
    "int16": pl.Int16,
    "int32": pl.Int32,
    "int": pl.Int64,
    "int64": pl.Int64,
    "integer": pl.Int64,
    "float32": pl.Float32,
    "float": pl.Float64,
    "float64": pl.Float64,
    "double": pl.Float64,
    "decimal": pl.Decimal,
    "bool": pl.Boolean,
    "boolean": pl.Boolean,
    "str": pl.String,
    "string": pl.String,
    "utf8": pl.String,
    "text": pl.String,
    "date": pl.Date,
    "datetime": pl.Datetime,
    "timestamp": pl.Datetime,
    "time": pl.Time,
    "binary": pl.Binary,
}

# Polars dtype -> SQL Server type mapping
_SQL_SERVER_TYPES: dict[type, str] = {
    pl.Int8: "TINYINT",
    pl.Int16: "SMALLINT",
    pl.Int32: "INT",
    pl.Int64: "BIGINT",
    pl.Float32: "REAL",
    pl.Float64: "FLOAT",
    pl.Decimal: "DECIMAL(38, 10)",
    pl.Boolean: "BIT",
    pl.String: "NVARCHAR(MAX)",
    pl.Date: "DATE",
    pl.Datetime: "DATETIME2",
    pl.Time: "TIME",
    pl.Binary: "VARBINARY(MAX)",
}

# Polars dtype -> SQLite declared type (drives column affinity)
_SQLITE_TYPES: dict[type, str] = {
    pl.Int8: "INTEGER",
    pl.Int16: "INTEGER",
    pl.Int32: "INTEGER",
    pl.Int64: "INTEGER",
    pl.Float32: "REAL",
    pl.Float64: "REAL",
    pl.Decimal: "NUMERIC",
    pl.Boolean: "INTEGER",
    pl.String: "TEXT",
    pl.Date: "TEXT",
    pl.Datetime: "TEXT",
    pl.Time: "TEXT",
    pl.Binary: "BLOB",
}


def column_sql_type(dialect: Dialect, data_type: str) -> str:
    """Map a descriptor type name to the dialect's SQL type; unknown names pass through."""
    dtype = _DTYPE_NAMES.get((data_type or "string").strip().lower())
    if dtype is None:
        return data_type
    types = _SQL_SERVER_TYPES if dialect.dialect_type == DialectType.SQL_SERVER else _SQLITE_TYPES
    return types[dtype]


def _column_ddl(
    dialect: Dialect,
    column: ColumnDescriptor,
    descriptor: TableDescriptor,
    inline_pk: bool,
) -> str:
    q_col = quote_identifier(column.name)
    if column.name == descriptor.autoincrement:
        if inline_pk:
            return f"    {q_col} {dialect.autoincrement_type} PRIMARY KEY"
        return f"    {q_col} {dialect.autoincrement_type} NOT NULL"
    nullable = column.nullable and column.name not in descriptor.pk_columns
    return f"    {q_col} {column_sql_type(dialect, column.data_type)} {'NULL' if nullable else 'NOT NULL'}"


def create_table_ddl(dialect: Dialect, descriptor: TableDescriptor) -> str | None:
    """CREATE TABLE statement for a descriptor, or None when it carries no schema.

    An explicit ``ddl`` wins over ``columns``.
    """
    if descriptor.ddl:
        return descriptor.ddl
    if not descriptor.columns:
        return None

    columns = list(descriptor.columns)
    if descriptor.autoincrement and descriptor.autoincrement not in {c.name for c in columns}:
        columns.insert(0, ColumnDescriptor(name=descriptor.autoincrement, data_type="int64", nullable=False))

    # SQLite only treats INTEGER PRIMARY KEY declared inline as the rowid alias
    inline_pk = (
        dialect.dialect_type == DialectType.SQLITE
        and descriptor.autoincrement is not None
        and descriptor.pk_columns in ([], [descriptor.autoincrement])
    )
    col_ddl = [_column_ddl(dialect, c, descriptor, inline_pk) for c in columns]
    if not inline_pk:
        pk_columns = descriptor.pk_columns or (
            [descriptor.autoincrement] if descriptor.autoincrement else []
        )
        if pk_columns:
            col_ddl.append(f"    PRIMARY KEY ({', '.join(quote_identifier(c) for c in pk_columns)})")

    ddl = f"CREATE TABLE {quote_table(descriptor.table)} (\n" + ",\n".join(col_ddl) + "\n)"
    logger.debug("Generated DDL for %s:\n%s", descriptor.table, ddl)
    return ddl
