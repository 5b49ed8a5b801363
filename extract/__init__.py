"""Extract package: read datastore state into Polars DataFrames.

Every read of actual table or query state (Expect, Query, virtual tables)
goes through read_sql_frame() so row typing is handled in one place.
"""

from __future__ import annotations

import logging
import time

import polars as pl

from connections import cursor_for

logger = logging.getLogger(__name__)


def _unique_columns(names: list[str]) -> list[str]:
    """Suffix repeated result column names (SELECT a.id, b.id) so Polars accepts them."""
    seen: dict[str, int] = {}
    unique = []
    for name in names:
        count = seen.get(name, 0)
        seen[name] = count + 1
        unique.append(name if count == 0 else f"{name}_{count}")
    return unique


def read_sql_frame(
    conn,
    query: str,
    params: tuple | list = (),
    *,
    context: str = "",
) -> pl.DataFrame:
    """Execute a query on a DB-API connection and return the rows as a DataFrame.

    SQLite columns are dynamically typed, so one column can hold both integers
    and strings. The whole result is scanned for schema inference and built
    non-strict, which widens mixed columns to their common supertype instead
    of failing.

    Args:
        conn: Open DB-API connection (pyodbc or sqlite3).
        query: SQL query to execute.
        params: Positional parameters bound to ``?`` placeholders.
        context: Description for log messages (e.g. "Expect read users").

    Returns:
        Polars DataFrame; an empty result keeps the column names as Utf8 columns.
    """
    start = time.monotonic()
    with cursor_for(conn) as cursor:
        cursor.execute(query, tuple(params))
        if cursor.description is None:
            return pl.DataFrame()
        columns = _unique_columns([desc[0] for desc in cursor.description])
        rows = [tuple(row) for row in cursor.fetchall()]

    if not rows:
        return pl.DataFrame(schema={c: pl.Utf8 for c in columns})

    df = pl.DataFrame(
        rows,
        schema=columns,
        orient="row",
        infer_schema_length=None,
        strict=False,
    )
    logger.debug(
        "Read %d rows in %.1f ms%s",
        len(df), (time.monotonic() - start) * 1000,
        f" ({context})" if context else "",
    )
    return df


def frame_to_records(df: pl.DataFrame) -> list[dict]:
    """Rows of a DataFrame as plain dicts (column -> Python value)."""
    if df.is_empty():
        return []
    return df.to_dicts()
