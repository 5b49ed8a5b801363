"""Prepare: reconcile datasets into a datastore, record by record.

Per record, primary-key presence decides the operation:
  - all key values present: UPDATE keyed on them, INSERT when no row matched
    (``persist``). A record holding only key columns gets an existence check
    instead of the UPDATE.
  - no key values, or no key declared: INSERT (``load``). A missing
    autoincrement value is filled with the predicted next key, published to
    the scenario state as ``state[SEQUENCE_STATE_KEY][<dataset>]``. Keys inserted
    with an explicit value move later predictions past them.
  - some but not all key values: ReconciliationError.

The whole request is one unit of work on the registration's pooled
connection. The first failing record rolls everything back and aborts the
remaining records.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from typing import TYPE_CHECKING, Any

import pyodbc

import config
from connections import cursor_for, quote_identifier, quote_table, transaction
from dataset.macros import MacroExpander
from dataset.models import Dataset, DatastoreDatasets
from mapping.virtual_tables import MappingError, TableTarget, VirtualTableResolver
from observability import log_handler
from prepare.models import METHOD_PERSIST, ModificationInfo
from sequence.tracker import SequencePredictor

if TYPE_CHECKING:
    from registry.models import Registration

logger = logging.getLogger(__name__)


class ReconciliationError(Exception):
    """Raised when a record cannot be written; carries the tallies made so far.

    The tallies describe work that was rolled back with the transaction.
    """

    def __init__(
        self,
        message: str,
        subject: str | None = None,
        record_index: int | None = None,
        modifications: dict[str, ModificationInfo] | None = None,
    ) -> None:
        super().__init__(message)
        self.subject = subject
        self.record_index = record_index
        self.modifications = modifications if modifications is not None else {}


def _sql_value(value: Any) -> Any:
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    return value


def _where_clause(columns: list[str]) -> str:
    return " AND ".join(f"{quote_identifier(c)} = ?" for c in columns)


class Reconciler:
    """Applies DatastoreDatasets to one registration.

    ``state`` is the scenario state shared with the caller; predicted keys
    are published into it while the request runs, so later records and later
    requests can reference them.
    """

    def __init__(self, registration: Registration, state: dict[str, Any]) -> None:
        self.registration = registration
        self.state = state
        self.resolver = VirtualTableResolver(registration)

    def apply(
        self,
        datasets: DatastoreDatasets,
        expand: bool = False,
    ) -> dict[str, ModificationInfo]:
        """Reconcile every dataset in order inside one transaction.

        Returns:
            subject -> ModificationInfo, in dataset order.

        Raises:
            ReconciliationError: On the first failing record or an unresolvable
                target (after rollback); a MappingError is kept as its cause.
        """
        modifications: dict[str, ModificationInfo] = {}
        with self.registration.connection() as conn:
            predictor = SequencePredictor(conn)
            try:
                with transaction(conn):
                    for dataset in datasets.datasets:
                        log_handler.set_context(datastore=self.registration.name, subject=dataset.name)
                        info = modifications.setdefault(dataset.name, ModificationInfo(subject=dataset.name))
                        self._apply_dataset(conn, dataset, info, predictor, expand)
            except ReconciliationError as e:
                e.modifications = modifications
                raise
            finally:
                log_handler.set_context(subject=None)

        for info in modifications.values():
            logger.info(
                "Prepared %s (%s): added=%d modified=%d deleted=%d",
                info.subject, info.method, info.added, info.modified, info.deleted,
            )
        return modifications

    def _apply_dataset(
        self,
        conn,
        dataset: Dataset,
        info: ModificationInfo,
        predictor: SequencePredictor,
        expand: bool,
    ) -> None:
        try:
            target = self.resolver.resolve(dataset.name, expand, self.state)
            table = target.require_table()
        except (MappingError, pyodbc.Error, sqlite3.Error) as e:
            raise ReconciliationError(f"{dataset.name}: {e}", subject=dataset.name) from e
        pk_columns = dataset.pk_columns or target.pk_columns
        autoincrement = dataset.autoincrement or target.autoincrement
        expander = MacroExpander(self.state)

        if dataset.replace:
            try:
                info.deleted += self._delete_all(conn, target, pk_columns)
            except (pyodbc.Error, sqlite3.Error) as e:
                raise ReconciliationError(
                    f"{dataset.name}: replace failed: {e}",
                    subject=dataset.name,
                ) from e

        for index, raw in enumerate(dataset.records):
            # Expanded against the live state: earlier records may have published keys
            record = expander.expand_record(raw) if expand else dict(raw)
            if target.is_virtual:
                record = {**target.defaults, **record}

            present = [c for c in pk_columns if record.get(c) is not None]
            if present and len(present) < len(pk_columns):
                missing = [c for c in pk_columns if c not in present]
                raise ReconciliationError(
                    f"{dataset.name}[{index}]: partial primary key, missing {missing}",
                    subject=dataset.name, record_index=index,
                )

            try:
                if present:
                    info.method = METHOD_PERSIST
                    inserted = self._persist(conn, table, record, pk_columns, autoincrement, info)
                else:
                    if autoincrement and record.get(autoincrement) is None:
                        record[autoincrement] = predictor.next_value(table, autoincrement)
                        self._publish(dataset.name, record[autoincrement])
                    self._insert(conn, table, record, autoincrement)
                    info.added += 1
                    inserted = True
                if inserted and autoincrement and record.get(autoincrement) is not None:
                    predictor.observe(table, autoincrement, record[autoincrement])
            except (pyodbc.Error, sqlite3.Error, ValueError) as e:
                raise ReconciliationError(
                    f"{dataset.name}[{index}]: {e}",
                    subject=dataset.name, record_index=index,
                ) from e

    def _publish(self, subject: str, value: int) -> None:
        self.state.setdefault(config.SEQUENCE_STATE_KEY, {})[subject] = value
        logger.debug("Published %s.%s = %d", config.SEQUENCE_STATE_KEY, subject, value)

    def _persist(
        self,
        conn,
        table: str,
        record: dict[str, Any],
        pk_columns: list[str],
        autoincrement: str | None,
        info: ModificationInfo,
    ) -> bool:
        """UPDATE or existence-check by key, INSERT when no row matched. Returns whether it inserted."""
        key_values = tuple(_sql_value(record[c]) for c in pk_columns)
        data_columns = [c for c in record if c not in pk_columns]

        with cursor_for(conn) as cursor:
            if data_columns:
                set_clause = ", ".join(f"{quote_identifier(c)} = ?" for c in data_columns)
                cursor.execute(
                    f"UPDATE {quote_table(table)} SET {set_clause} WHERE {_where_clause(pk_columns)}",
                    tuple(_sql_value(record[c]) for c in data_columns) + key_values,
                )
                matched = cursor.rowcount > 0
                if matched:
                    info.modified += 1
            else:
                cursor.execute(
                    f"SELECT 1 FROM {quote_table(table)} WHERE {_where_clause(pk_columns)}",
                    key_values,
                )
                matched = cursor.fetchone() is not None

        if matched:
            return False
        self._insert(conn, table, record, autoincrement)
        info.added += 1
        return True

    def _insert(
        self,
        conn,
        table: str,
        record: dict[str, Any],
        autoincrement: str | None,
    ) -> None:
        columns = list(record)
        q_table = quote_table(table)
        dialect = self.registration.dialect
        explicit_identity = bool(autoincrement) and record.get(autoincrement) is not None

        with cursor_for(conn) as cursor:
            if explicit_identity:
                for statement in dialect.identity_insert_statements(table, True):
                    cursor.execute(statement)
            try:
                if columns:
                    cursor.execute(
                        f"INSERT INTO {q_table} ({', '.join(quote_identifier(c) for c in columns)}) "
                        f"VALUES ({', '.join('?' for _ in columns)})",
                        tuple(_sql_value(record[c]) for c in columns),
                    )
                else:
                    cursor.execute(f"INSERT INTO {q_table} DEFAULT VALUES")
            finally:
                if explicit_identity:
                    for statement in dialect.identity_insert_statements(table, False):
                        cursor.execute(statement)

    def _delete_all(self, conn, target: TableTarget, pk_columns: list[str]) -> int:
        """Delete the target's rows: the whole table, or the rows a mapping selects."""
        table = quote_table(target.require_table())
        with cursor_for(conn) as cursor:
            if not target.is_virtual:
                cursor.execute(f"DELETE FROM {table}")
            else:
                if len(pk_columns) != 1:
                    raise ReconciliationError(
                        f"{target.name}: replacing a virtual table needs a single-column key, "
                        f"got {pk_columns}",
                        subject=target.name,
                    )
                q_key = quote_identifier(pk_columns[0])
                cursor.execute(
                    f"DELETE FROM {table} WHERE {q_key} IN "
                    f"(SELECT v.{q_key} FROM ({target.query}) AS v)",
                    target.parameters,
                )
            deleted = max(cursor.rowcount, 0)
        logger.info("Deleted %d row(s) from %s", deleted, target.name)
        return deleted
