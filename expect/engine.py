"""Expect: re-read datastore state and diff it against expected datasets.

Every dataset is evaluated, even after earlier failures. A dataset whose
state cannot be read is reported failed with the error instead of aborting
the request.
"""

from __future__ import annotations

import logging
import sqlite3
from collections import deque
from typing import TYPE_CHECKING, Any, Callable

import pyodbc

from dataset.macros import MacroExpander, maybe_expand_text
from dataset.models import Dataset, DatastoreDatasets
from expect.compare import compare_fields, key_of
from expect.models import CheckPolicy, DatasetValidation, FieldMismatch, MissingRow
from extract import frame_to_records
from mapping.virtual_tables import MappingError, TableTarget, VirtualTableResolver
from observability import log_handler

if TYPE_CHECKING:
    from registry.models import Registration

logger = logging.getLogger(__name__)


def _key_dict(record: dict[str, Any], pk_columns: list[str]) -> dict[str, Any] | None:
    if not pk_columns or any(record.get(c) is None for c in pk_columns):
        return None
    return {c: record[c] for c in pk_columns}


def _match_unkeyed(candidates: list[list[int]]) -> dict[int, int]:
    """Maximum matching of expected records to candidate rows.

    ``candidates[r]`` lists the actual rows record ``r`` is satisfied by. Each
    record is placed through a breadth-first augmenting path, so a loose
    record gives up its row when a stricter record has no other candidate.

    Returns:
        actual row index -> position in ``candidates``.
    """
    owner: dict[int, int] = {}
    for start in range(len(candidates)):
        reached: dict[int, int] = {}  # row -> record that reached it
        held: dict[int, int | None] = {start: None}  # record -> row it gives up on the path
        queue = deque([start])
        free_row = None
        while queue and free_row is None:
            record = queue.popleft()
            for row in candidates[record]:
                if row in reached:
                    continue
                reached[row] = record
                if row not in owner:
                    free_row = row
                    break
                held[owner[row]] = row
                queue.append(owner[row])

        row = free_row
        while row is not None:
            record = reached[row]
            owner[row] = record
            row = held[record]
    return owner


def match_records(
    validation: DatasetValidation,
    expected: list[dict[str, Any]],
    actual: list[dict[str, Any]],
    pk_columns: list[str],
    flag_unexpected: bool,
) -> None:
    """Match expected records to actual rows and record the differences.

    Keyed records are matched by primary key and compared field by field.
    Records without a full key are then matched to the remaining rows whose
    values equal all their expected fields, maximizing the number of matched
    records. Each actual row is consumed at most once.
    """
    consumed: set[int] = set()
    by_key: dict[tuple, list[int]] = {}
    if pk_columns:
        for i, row in enumerate(actual):
            key = key_of(row, pk_columns)
            if key is not None:
                by_key.setdefault(key, []).append(i)

    unkeyed: list[int] = []
    for index, record in enumerate(expected):
        key = key_of(record, pk_columns) if pk_columns else None
        if key is None:
            unkeyed.append(index)
            continue
        candidates = [i for i in by_key.get(key, []) if i not in consumed]
        if not candidates:
            validation.missing.append(
                MissingRow(record_index=index, key=_key_dict(record, pk_columns), record=record)
            )
            continue
        row_index = candidates[0]
        consumed.add(row_index)
        for column, expected_value, actual_value in compare_fields(record, actual[row_index]):
            validation.mismatches.append(
                FieldMismatch(
                    record_index=index,
                    key=_key_dict(record, pk_columns),
                    column=column,
                    expected=expected_value,
                    actual=actual_value,
                )
            )

    free_rows = [i for i in range(len(actual)) if i not in consumed]
    owner = _match_unkeyed([
        [i for i in free_rows if not compare_fields(expected[index], actual[i])]
        for index in unkeyed
    ])
    consumed.update(owner)
    matched = {unkeyed[position] for position in owner.values()}
    for index in unkeyed:
        if index not in matched:
            validation.missing.append(MissingRow(record_index=index, key=None, record=expected[index]))
    validation.missing.sort(key=lambda m: m.record_index)

    if flag_unexpected:
        validation.unexpected.extend(row for i, row in enumerate(actual) if i not in consumed)


class Validator:
    """Checks DatastoreDatasets against one registration under a CheckPolicy."""

    def __init__(self, registration: Registration, state: dict[str, Any]) -> None:
        self.registration = registration
        self.state = state
        self.resolver = VirtualTableResolver(registration)
        self._handlers: dict[CheckPolicy, Callable[..., None]] = {
            CheckPolicy.FULL_TABLE: self._check_full_table,
            CheckPolicy.SNAPSHOT: self._check_snapshot,
        }

    def validate(
        self,
        datasets: DatastoreDatasets,
        policy: CheckPolicy = CheckPolicy.FULL_TABLE,
        expand: bool = False,
    ) -> list[DatasetValidation]:
        policy = CheckPolicy.parse(policy)
        handler = self._handlers[policy]
        expander = MacroExpander(self.state)
        results = []

        with self.registration.connection() as conn:
            try:
                for dataset in datasets.datasets:
                    log_handler.set_context(datastore=self.registration.name, subject=dataset.name)
                    validation = DatasetValidation(dataset=dataset.name, policy=policy)
                    try:
                        target = self.resolver.resolve(dataset.name, expand, self.state)
                        expected = [
                            expander.expand_record(r) if expand else dict(r) for r in dataset.records
                        ]
                        query = maybe_expand_text(dataset.from_query, expand, self.state) if dataset.from_query else None
                        handler(conn, validation, dataset, target, expected, query)
                    except (pyodbc.Error, sqlite3.Error, MappingError, ValueError) as e:
                        logger.warning("Could not read %s: %s", dataset.name, e)
                        validation.error = str(e)
                        # A failed read can leave an aborted transaction behind
                        conn.rollback()

                    if validation.passed:
                        logger.info("Expect %s passed (%s)", dataset.name, policy.name)
                    else:
                        logger.warning("Expect %s failed: %s", dataset.name, validation.summary())
                    results.append(validation)
            finally:
                # End the read transaction pyodbc opened implicitly
                conn.rollback()
                log_handler.set_context(subject=None)
        return results

    def _check_full_table(
        self,
        conn,
        validation: DatasetValidation,
        dataset: Dataset,
        target: TableTarget,
        expected: list[dict[str, Any]],
        query: str | None,
    ) -> None:
        pk_columns = dataset.pk_columns or target.pk_columns
        actual = frame_to_records(self.resolver.read(conn, target, query))
        match_records(validation, expected, actual, pk_columns, flag_unexpected=dataset.exhaustive)

    def _check_snapshot(
        self,
        conn,
        validation: DatasetValidation,
        dataset: Dataset,
        target: TableTarget,
        expected: list[dict[str, Any]],
        query: str | None,
    ) -> None:
        pk_columns = dataset.pk_columns or target.pk_columns
        keys = [tuple(r.get(c) for c in pk_columns) for r in expected] if pk_columns else []
        if keys and all(None not in k for k in keys):
            unique_keys = list(dict.fromkeys(keys))
            frame = self.resolver.read_keys(conn, target, pk_columns, unique_keys, query)
        else:
            # Without keys for every record there is nothing to address; read all, flag nothing extra
            frame = self.resolver.read(conn, target, query)
        match_records(validation, expected, frame_to_records(frame), pk_columns, flag_unexpected=False)
