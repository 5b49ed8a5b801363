"""Autoincrement boundaries: current MAX per table and per-request key prediction.

Prediction is best-effort: a writer outside this process inserting between
the snapshot and our INSERT makes the predicted key stale.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from connections import cursor_for, quote_identifier, quote_table
from mapping.virtual_tables import VirtualTableResolver

if TYPE_CHECKING:
    from registry.models import Registration

logger = logging.getLogger(__name__)


class SequenceTracker:
    def __init__(self, registration: Registration) -> None:
        self.registration = registration
        self.resolver = VirtualTableResolver(registration)

    @staticmethod
    def snapshot(conn, table: str, column: str) -> int:
        """COALESCE(MAX(column), 0): 0 for an empty table."""
        with cursor_for(conn) as cursor:
            cursor.execute(
                f"SELECT COALESCE(MAX({quote_identifier(column)}), 0) FROM {quote_table(table)}"
            )
            row = cursor.fetchone()
        return int(row[0]) if row and row[0] is not None else 0

    def current(self, conn, tables: list[str]) -> dict[str, int]:
        """Current sequence value per table; tables without an autoincrement column are omitted."""
        sequences: dict[str, int] = {}
        for name in tables:
            target = self.resolver.resolve(name)
            if not target.table or not target.autoincrement:
                logger.debug("No autoincrement column for %s; skipping", name)
                continue
            sequences[name] = self.snapshot(conn, target.table, target.autoincrement)
        return sequences


class SequencePredictor:
    """Per-request predictor: one past the highest key the request has seen.

    The table MAX is read once, on first use. Every key inserted afterwards,
    predicted or supplied by the record, is reported through ``observe`` so
    the next prediction steps past it.
    """

    def __init__(self, conn) -> None:
        self._conn = conn
        self._last: dict[str, int] = {}

    def _current(self, table: str, column: str) -> int:
        if table not in self._last:
            self._last[table] = SequenceTracker.snapshot(self._conn, table, column)
            logger.debug("Sequence snapshot %s.%s = %d", table, column, self._last[table])
        return self._last[table]

    def next_value(self, table: str, column: str) -> int:
        value = self._current(table, column) + 1
        self._last[table] = value
        return value

    def observe(self, table: str, column: str, value) -> None:
        """Record a key written with an explicit value; non-integer keys are ignored."""
        try:
            key = int(value)
        except (TypeError, ValueError):
            return
        if key > self._current(table, column):
            self._last[table] = key
