"""Dialect registry: SQL Server (pyodbc) and SQLite (sqlite) catalog queries and DDL."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from connections import quote_identifier, quote_table


class DialectType(Enum):
    SQL_SERVER = "SQL_SERVER"
    SQLITE = "SQLITE"


@dataclass(frozen=True)
class Dialect:
    name: str
    dialect_type: DialectType
    can_create_database: bool
    # Column type used for generated autoincrement columns. SQLite uses a plain
    # INTEGER PRIMARY KEY (rowid alias, assigned as MAX(rowid) + 1) rather than
    # AUTOINCREMENT, which never reuses keys and would break MAX-based prediction.
    autoincrement_type: str

    def list_tables(self, cursor) -> list[str]:
        if self.dialect_type == DialectType.SQLITE:
            cursor.execute(
                "SELECT name FROM sqlite_master "
                "WHERE type = 'table' AND name NOT LIKE 'sqlite_%' ORDER BY name"
            )
            return [row[0] for row in cursor.fetchall()]
        cursor.execute(
            "SELECT TABLE_SCHEMA, TABLE_NAME FROM INFORMATION_SCHEMA.TABLES "
            "WHERE TABLE_TYPE = 'BASE TABLE' ORDER BY TABLE_SCHEMA, TABLE_NAME"
        )
        return [
            row[1] if row[0] == "dbo" else f"{row[0]}.{row[1]}"
            for row in cursor.fetchall()
        ]

    def table_exists(self, cursor, table: str) -> bool:
        if self.dialect_type == DialectType.SQLITE:
            cursor.execute(
                "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?", (table,),
            )
        else:
            cursor.execute("SELECT 1 WHERE OBJECT_ID(?, 'U') IS NOT NULL", (table,))
        return cursor.fetchone() is not None

    def primary_key_columns(self, cursor, table: str) -> list[str]:
        """Primary key columns in key order, empty when the table has none."""
        if self.dialect_type == DialectType.SQLITE:
            cursor.execute(f"PRAGMA table_info({quote_table(table)})")
            # (cid, name, type, notnull, dflt_value, pk) - pk is the 1-based key position
            keyed = [(row[5], row[1]) for row in cursor.fetchall() if row[5]]
            return [name for _, name in sorted(keyed)]
        cursor.execute(
            "SELECT c.name FROM sys.indexes i "
            "JOIN sys.index_columns ic "
            "  ON ic.object_id = i.object_id AND ic.index_id = i.index_id "
            "JOIN sys.columns c "
            "  ON c.object_id = ic.object_id AND c.column_id = ic.column_id "
            "WHERE i.is_primary_key = 1 AND i.object_id = OBJECT_ID(?) "
            "ORDER BY ic.key_ordinal",
            (table,),
        )
        return [row[0] for row in cursor.fetchall()]

    def autoincrement_column(self, cursor, table: str) -> str | None:
        if self.dialect_type == DialectType.SQLITE:
            cursor.execute(f"PRAGMA table_info({quote_table(table)})")
            keys = [row for row in cursor.fetchall() if row[5]]
            if len(keys) == 1 and (keys[0][2] or "").upper() == "INTEGER":
                return keys[0][1]
            return None
        cursor.execute(
            "SELECT name FROM sys.identity_columns WHERE object_id = OBJECT_ID(?)",
            (table,),
        )
        row = cursor.fetchone()
        return row[0] if row else None

    def table_ddl(self, cursor, table: str) -> str | None:
        """CREATE TABLE statement stored by the datastore, if it keeps one."""
        if self.dialect_type != DialectType.SQLITE:
            return None
        cursor.execute(
            "SELECT sql FROM sqlite_master WHERE type = 'table' AND name = ?", (table,),
        )
        row = cursor.fetchone()
        return row[0] if row else None

    def drop_table_statement(self, table: str) -> str:
        return f"DROP TABLE IF EXISTS {quote_table(table)}"

    def drop_database_statements(self, database: str) -> list[tuple[str, tuple]]:
        if not self.can_create_database:
            raise ValueError(f"{self.name} cannot drop databases")
        q_db = quote_identifier(database)
        return [
            (
                "IF DB_ID(?) IS NOT NULL "
                f"ALTER DATABASE {q_db} SET SINGLE_USER WITH ROLLBACK IMMEDIATE",
                (database,),
            ),
            (f"DROP DATABASE IF EXISTS {q_db}", ()),
        ]

    def create_database_statements(self, database: str) -> list[tuple[str, tuple]]:
        if not self.can_create_database:
            raise ValueError(f"{self.name} cannot create databases")
        return [(f"CREATE DATABASE {quote_identifier(database)}", ())]

    def identity_insert_statements(self, table: str, enabled: bool) -> list[str]:
        """Statements allowing explicit values in an identity column (SQL Server only)."""
        if self.dialect_type != DialectType.SQL_SERVER:
            return []
        return [f"SET IDENTITY_INSERT {quote_table(table)} {'ON' if enabled else 'OFF'}"]


# --- Dialect Registry (keyed by driver name) ---
_DIALECTS: dict[str, Dialect] = {
    "pyodbc": Dialect(
        name="pyodbc",
        dialect_type=DialectType.SQL_SERVER,
        can_create_database=True,
        autoincrement_type="BIGINT IDENTITY(1,1)",
    ),
    "sqlite": Dialect(
        name="sqlite",
        dialect_type=DialectType.SQLITE,
        can_create_database=False,
        autoincrement_type="INTEGER",
    ),
}


def get_dialect(driver_name: str) -> Dialect:
    key = driver_name.lower()
    if key not in _DIALECTS:
        raise ValueError(f"Unknown driver: {driver_name}. Available: {list(_DIALECTS.keys())}")
    return _DIALECTS[key]
