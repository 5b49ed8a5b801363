"""Recreate: rebuild a registered datastore (or its descriptor tables) empty.

Recreate holds the registration lock for its whole duration, so no other
request against the registration can interleave with it.
"""

from __future__ import annotations

import logging
import sqlite3

import pyodbc

from connections import cursor_for, get_connection, transaction
from registry.models import Registration
from schema.table_creator import create_table_ddl

logger = logging.getLogger(__name__)


class RecreateError(Exception):
    """Raised when a datastore or table cannot be dropped and recreated."""


def recreate(registration: Registration, admin: Registration | None = None) -> list[str]:
    """Drop and recreate the datastore or its descriptor tables.

    When the dialect can create databases and the config names one, the
    database is dropped and created through the admin registration's
    autocommit connection, then descriptor tables with a schema are created.
    Otherwise each descriptor table is dropped and created again from its
    ``ddl``, its ``columns``, or the DDL the datastore reported before the drop.

    Returns:
        Names of the tables created.

    Raises:
        RecreateError: If no admin datastore is given for a database recreate,
            a table has no DDL source, or a statement fails.
    """
    dialect = registration.dialect
    database = registration.config.database
    with registration.lock:
        try:
            if dialect.can_create_database and database:
                if admin is None:
                    raise RecreateError(
                        f"Recreating database {database} of {registration.name} needs an admin datastore"
                    )
                _recreate_database(registration, admin, database)
                tables = _create_tables(registration, registration, drop=False)
            else:
                tables = _create_tables(registration, admin or registration, drop=True)
        except (pyodbc.Error, sqlite3.Error) as e:
            raise RecreateError(f"Recreate of {registration.name} failed: {e}") from e
        registration.forget_discovered()

    logger.info("Recreated %s: %d table(s) %s", registration.name, len(tables), tables)
    return tables


def _recreate_database(registration: Registration, admin: Registration, database: str) -> None:
    # The pooled data connection holds the database open; DROP DATABASE would block on it
    registration.pool.evict()
    dialect = registration.dialect
    conn = get_connection(admin.config, autocommit=True)
    try:
        with cursor_for(conn) as cursor:
            for sql, params in dialect.drop_database_statements(database):
                cursor.execute(sql, params)
            for sql, params in dialect.create_database_statements(database):
                cursor.execute(sql, params)
    finally:
        conn.close()
    logger.info("Recreated database %s", database)


def _create_tables(registration: Registration, executor: Registration, drop: bool) -> list[str]:
    """Create (and optionally first drop) every registered descriptor table.

    ``executor`` supplies the connection: the registration itself, or the
    admin registration when one is given.
    """
    dialect = registration.dialect
    descriptors = [d for d in registration.tables.values() if not d.discovered] or list(
        registration.tables.values()
    )
    created = []
    with executor.connection() as conn, transaction(conn), cursor_for(conn) as cursor:
        for descriptor in descriptors:
            ddl = create_table_ddl(dialect, descriptor)
            if ddl is None and drop:
                ddl = dialect.table_ddl(cursor, descriptor.table)
            if ddl is None:
                if drop:
                    raise RecreateError(f"No DDL for table {descriptor.table}: declare ddl or columns")
                logger.debug("Descriptor %s has no schema; not created", descriptor.table)
                continue
            if drop:
                cursor.execute(dialect.drop_table_statement(descriptor.table))
            cursor.execute(ddl)
            created.append(descriptor.table)
            logger.debug("Created table %s", descriptor.table)
    return created
