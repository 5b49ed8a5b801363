"""Datastore connections (pyodbc for SQL Server, sqlite3 for file datastores).

Provides the DB-API connection factory used by every registration, a
per-registration connection pool, the unit-of-work helper, and identifier
quoting helpers for safe dynamic SQL construction.
"""

from __future__ import annotations

import logging
import re
import sqlite3
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field

import pyodbc

import config

logger = logging.getLogger(__name__)


class ConnectivityError(Exception):
    """Raised when a datastore cannot be reached or authenticated against."""


# ---------------------------------------------------------------------------
# SQL identifier escaping: bracket-escape with ]] doubling
# ---------------------------------------------------------------------------

_MAX_IDENTIFIER_LENGTH = 128  # SQL Server sysname limit (matches QUOTENAME())


def quote_identifier(name: str) -> str:
    """Bracket-escape an identifier (column, table or schema name).

    Equivalent to T-SQL QUOTENAME(): wraps in brackets and doubles any embedded
    closing brackets. SQLite accepts the same bracket quoting. Rejects
    identifiers longer than 128 characters to match the sysname limit.

    Args:
        name: Raw identifier (e.g. column name, table name).

    Returns:
        Bracket-escaped identifier (e.g. ``[my_column]``, ``[tricky]]name]``).

    Raises:
        ValueError: If name exceeds 128 characters or is empty.
    """
    if not name:
        raise ValueError("Identifier cannot be empty")
    if len(name) > _MAX_IDENTIFIER_LENGTH:
        raise ValueError(
            f"Identifier exceeds {_MAX_IDENTIFIER_LENGTH} characters "
            f"(len={len(name)}): {name[:50]}..."
        )
    return f"[{name.replace(']', ']]')}]"


def quote_table(table_name: str) -> str:
    """Bracket-escape a table name with up to three parts (db.schema.table).

    Splits on '.' and bracket-escapes each part individually.

    Args:
        table_name: e.g. ``users``, ``dbo.users`` or ``mydb.dbo.users``

    Returns:
        e.g. ``[users]``, ``[dbo].[users]``, ``[mydb].[dbo].[users]``

    Raises:
        ValueError: If more than 3 parts, or any part is empty or too long.
    """
    parts = table_name.split(".")
    if len(parts) > 3:
        raise ValueError(
            f"Expected at most 3-part table name (db.schema.table), "
            f"got {len(parts)} parts: {table_name}"
        )
    return ".".join(quote_identifier(p) for p in parts)


# ---------------------------------------------------------------------------
# Datastore configuration
# ---------------------------------------------------------------------------

_PLACEHOLDER = re.compile(r"\[(\w+)\]")


@dataclass
class DatastoreConfig:
    """Connection configuration of a registered datastore.

    ``descriptor`` is an ODBC connection string (pyodbc) or a database path
    (sqlite). ``[name]`` placeholders in it are replaced by ``parameters``
    values, e.g. ``SERVER=[host],[port];DATABASE=[dbname]``.
    """

    driver_name: str = config.DEFAULT_DRIVER
    descriptor: str = ""
    parameters: dict[str, str] = field(default_factory=dict)
    credentials: str | None = None

    @classmethod
    def from_dict(cls, data: dict) -> DatastoreConfig:
        params = data.get("parameters") or data.get("Parameters") or {}
        return cls(
            driver_name=data.get("driver_name") or data.get("DriverName") or config.DEFAULT_DRIVER,
            descriptor=data.get("descriptor") or data.get("Descriptor") or "",
            parameters={str(k): str(v) for k, v in params.items()},
            credentials=data.get("credentials") or data.get("Credentials"),
        )

    @classmethod
    def from_url(cls, url: str) -> DatastoreConfig:
        from dataset.resource import load_structured

        return cls.from_dict(load_structured(url))

    @property
    def database(self) -> str | None:
        return self.parameters.get("dbname") or self.parameters.get("database")

    def resolved_parameters(self) -> dict[str, str]:
        """Parameters merged with the credentials secret (username/password)."""
        params = dict(self.parameters)
        if self.credentials:
            from dataset.resource import load_structured

            secret = load_structured(self.credentials)
            for key in ("username", "password"):
                value = secret.get(key) or secret.get(key.capitalize())
                if value is not None:
                    params[key] = str(value)
        return params

    def resolved_descriptor(self) -> str:
        params = self.resolved_parameters()
        return _PLACEHOLDER.sub(
            lambda m: params.get(m.group(1), m.group(0)), self.descriptor,
        )


def _pyodbc_connection_string(datastore_config: DatastoreConfig) -> str:
    if datastore_config.descriptor:
        return datastore_config.resolved_descriptor()
    params = datastore_config.resolved_parameters()
    conn_str = (
        f"DRIVER={{{params.get('driver', config.ODBC_DRIVER)}}};"
        f"SERVER={params.get('host', config.SQL_SERVER_HOST)},"
        f"{params.get('port', config.SQL_SERVER_PORT)};"
        f"UID={params.get('username', config.SQL_SERVER_USER)};"
        f"PWD={params.get('password', config.SQL_SERVER_PASSWORD)};"
        "TrustServerCertificate=yes;"
    )
    if datastore_config.database:
        conn_str += f"DATABASE={datastore_config.database};"
    return conn_str


def get_connection(datastore_config: DatastoreConfig, autocommit: bool = False):
    """Open a fresh DB-API connection (not pooled).

    Data connections are opened with autocommit off; callers commit through
    transaction(). Administrative connections (CREATE/DROP DATABASE) need
    autocommit=True because SQL Server refuses those statements inside a
    transaction.

    Raises:
        ConnectivityError: If the driver cannot connect.
        ValueError: If the driver name is unknown.
    """
    driver = datastore_config.driver_name
    start = time.monotonic()
    try:
        if driver == "pyodbc":
            conn = pyodbc.connect(
                _pyodbc_connection_string(datastore_config),
                autocommit=autocommit,
                timeout=config.CONNECTION_TIMEOUT,
            )
        elif driver == "sqlite":
            conn = sqlite3.connect(
                datastore_config.resolved_descriptor() or ":memory:",
                timeout=config.CONNECTION_TIMEOUT,
                isolation_level=None if autocommit else "",
                check_same_thread=False,
            )
        else:
            raise ValueError(f"Unknown driver: {driver}. Available: ['pyodbc', 'sqlite']")
    except (pyodbc.Error, sqlite3.Error) as e:
        raise ConnectivityError(f"Could not connect with {driver}: {e}") from e
    logger.debug(
        "Opened %s connection in %.1f ms", driver, (time.monotonic() - start) * 1000,
    )
    return conn


# --- Context Managers ---

@contextmanager
def cursor_for(conn):
    """Yield a cursor for the connection and always close it.

    Usage::

        with cursor_for(conn) as cur:
            cur.execute("SELECT 1")
            row = cur.fetchone()
    """
    cursor = conn.cursor()
    try:
        yield cursor
    finally:
        cursor.close()


@contextmanager
def transaction(conn):
    """Unit of work: commit when the block completes, roll back on any error."""
    try:
        yield conn
    except BaseException:
        conn.rollback()
        raise
    conn.commit()


class ConnectionPool:
    """One long-lived connection per registration, handed out under a lock.

    The lock is re-entrant so a request that already holds the connection
    (e.g. Recreate, which is a barrier) can call helpers that acquire it again.
    Concurrent requests against the same registration are serialized.
    On pyodbc.OperationalError (connection dropped, server restart), the stale
    connection is evicted and the error propagates to the caller.
    """

    def __init__(self, name: str, datastore_config: DatastoreConfig) -> None:
        self.name = name
        self.config = datastore_config
        self.lock = threading.RLock()
        self._conn = None

    @contextmanager
    def acquire(self):
        with self.lock:
            if self._conn is None:
                self._conn = get_connection(self.config)
                logger.debug("Connection pool %s: opened connection", self.name)
            try:
                yield self._conn
            except (pyodbc.OperationalError, pyodbc.InterfaceError):
                # Connection-level failure: evict stale connection from pool.
                self.evict()
                raise

    def evict(self) -> None:
        with self.lock:
            conn, self._conn = self._conn, None
            if conn is None:
                return
            try:
                conn.close()
            except (pyodbc.Error, sqlite3.Error):
                logger.debug("Connection pool %s: close failed", self.name, exc_info=True)

    def close(self) -> None:
        self.evict()
        logger.debug("Connection pool %s closed", self.name)
