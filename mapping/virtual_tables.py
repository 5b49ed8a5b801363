"""Virtual tables: named datasets backed by a query instead of a physical table.

Prepare and Expect address every dataset through resolve(), which returns a
TableTarget. A physical table reads as ``SELECT * FROM <table>``; a mapping
reads its query and writes to the table named in (or derived from) it.
"""

from __future__ import annotations

import logging
import re
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

import polars as pl

import config
from connections import quote_identifier, quote_table
from dataset.macros import MacroExpander, maybe_expand_text
from dataset.resource import ResourceError, load_structured
from extract import read_sql_frame

if TYPE_CHECKING:
    from registry.models import Registration

logger = logging.getLogger(__name__)


class MappingError(Exception):
    """Raised when a mapping cannot be resolved or is used for writing without a table."""


class MappingState(Enum):
    DECLARED = "DECLARED"
    RESOLVED = "RESOLVED"


_NAME_PART = r"(?:\[[^\]]+\]|\"[^\"]+\"|`[^`]+`|[\w$#]+)"
_FROM = re.compile(r"\bFROM\s+", re.IGNORECASE)
_TABLE_NAME = re.compile(rf"{_NAME_PART}(?:\s*\.\s*{_NAME_PART}){{0,2}}")


def derive_table(query: str) -> str | None:
    """Physical table of the first FROM clause, unquoted; None for a subquery."""
    keyword = _FROM.search(query or "")
    if not keyword:
        return None
    match = _TABLE_NAME.match(query, keyword.end())
    if not match:
        return None
    parts = re.split(r"\s*\.\s*", match.group(0))
    return ".".join(p.strip("[]\"`") for p in parts)


@dataclass
class Mapping:
    """A virtual table declared on a registration.

    Resolution runs once, on first reference: a mapping declared by ``url``
    is decoded from that resource, the query is checked, and the physical
    table is derived from the query when not given. A failed resolution
    leaves the mapping DECLARED so a later request retries it.
    """

    name: str
    query: str = ""
    parameters: list[Any] = field(default_factory=list)
    table: str | None = None
    pk_columns: list[str] = field(default_factory=list)
    autoincrement: str | None = None
    defaults: dict[str, Any] = field(default_factory=dict)
    url: str | None = None
    state: MappingState = MappingState.DECLARED
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    @classmethod
    def from_dict(cls, data: dict) -> Mapping:
        pk = data.get("pk_columns") or []
        return cls(
            name=data.get("name") or "",
            query=data.get("query") or "",
            parameters=list(data.get("parameters") or []),
            table=data.get("table"),
            pk_columns=[pk] if isinstance(pk, str) else list(pk),
            autoincrement=data.get("autoincrement"),
            defaults=dict(data.get("defaults") or {}),
            url=data.get("url"),
        )

    def resolve(self) -> Mapping:
        """Resolve once and memoize.

        Raises:
            MappingError: If the url cannot be decoded or no query is defined.
        """
        with self._lock:
            if self.state == MappingState.RESOLVED:
                return self

            query, table, parameters = self.query, self.table, self.parameters
            pk_columns, defaults = self.pk_columns, self.defaults
            if self.url:
                try:
                    payload = load_structured(self.url)
                except ResourceError as e:
                    raise MappingError(f"Mapping {self.name}: {e}") from e
                if not isinstance(payload, dict):
                    raise MappingError(f"Mapping {self.name}: {self.url} does not hold an object")
                payload = {str(k).lower(): v for k, v in payload.items()}
                query = query or payload.get("query") or ""
                table = table or payload.get("table")
                parameters = parameters or list(payload.get("parameters") or [])
                pk = payload.get("pk_columns") or payload.get("pkcolumns") or []
                pk_columns = pk_columns or ([pk] if isinstance(pk, str) else list(pk))
                defaults = defaults or dict(payload.get("defaults") or {})

            if not query.strip():
                raise MappingError(f"Mapping {self.name} has no query")

            self.query = query
            self.parameters = parameters
            self.pk_columns = pk_columns
            self.defaults = defaults
            self.table = table or derive_table(query)
            self.state = MappingState.RESOLVED
            logger.info(
                "Resolved mapping %s -> table %s", self.name, self.table or "(read-only)",
            )
            return self


@dataclass
class TableTarget:
    """Where a dataset is read from and written to."""

    name: str
    table: str | None
    query: str
    parameters: tuple = ()
    pk_columns: list[str] = field(default_factory=list)
    autoincrement: str | None = None
    defaults: dict[str, Any] = field(default_factory=dict)
    is_virtual: bool = False

    def require_table(self) -> str:
        if not self.table:
            raise MappingError(f"{self.name} is read-only: its query names no physical table")
        return self.table


class VirtualTableResolver:
    """Resolves dataset names against a registration's tables and mappings."""

    def __init__(self, registration: Registration) -> None:
        self.registration = registration

    def resolve(
        self,
        name: str,
        expand: bool = False,
        state: dict | None = None,
    ) -> TableTarget:
        state = state if state is not None else {}
        mapping = self.registration.mappings.get(name)
        if mapping is None:
            descriptor = self.registration.descriptor(name)
            query = descriptor.from_query or f"SELECT * FROM {quote_table(name)}"
            return TableTarget(
                name=name,
                table=name,
                query=maybe_expand_text(query, expand, state),
                pk_columns=list(descriptor.pk_columns),
                autoincrement=descriptor.autoincrement,
            )

        mapping.resolve()
        parameters = list(mapping.parameters)
        defaults = dict(mapping.defaults)
        if expand:
            expander = MacroExpander(state)
            parameters = [expander.expand_value(p) for p in parameters]
            defaults = expander.expand_record(defaults)

        pk_columns, autoincrement = list(mapping.pk_columns), mapping.autoincrement
        if mapping.table:
            descriptor = self.registration.descriptor(mapping.table)
            pk_columns = pk_columns or list(descriptor.pk_columns)
            autoincrement = autoincrement or descriptor.autoincrement

        return TableTarget(
            name=name,
            table=mapping.table,
            query=maybe_expand_text(mapping.query, expand, state),
            parameters=tuple(parameters),
            pk_columns=pk_columns,
            autoincrement=autoincrement,
            defaults=defaults,
            is_virtual=True,
        )

    def read(self, conn, target: TableTarget, query: str | None = None) -> pl.DataFrame:
        """Read the whole (virtual) table, or ``query`` when given."""
        if query:
            return read_sql_frame(conn, query, context=f"read {target.name}")
        return read_sql_frame(conn, target.query, target.parameters, context=f"read {target.name}")

    def read_keys(
        self,
        conn,
        target: TableTarget,
        pk_columns: list[str],
        keys: list[tuple],
        query: str | None = None,
    ) -> pl.DataFrame:
        """Read only the rows whose key tuples are listed.

        The read query is wrapped as a derived table and filtered on
        ``(k1 = ? AND k2 = ?) OR ...``, KEY_FILTER_CHUNK_SIZE tuples per SELECT.
        """
        base_query, base_params = (query, ()) if query else (target.query, target.parameters)
        predicate = "(" + " AND ".join(f"v.{quote_identifier(c)} = ?" for c in pk_columns) + ")"
        chunk_size = max(1, config.KEY_FILTER_CHUNK_SIZE)

        frames = []
        for start in range(0, len(keys), chunk_size):
            chunk = keys[start:start + chunk_size]
            sql = (
                f"SELECT * FROM ({base_query}) AS v WHERE "
                + " OR ".join(predicate for _ in chunk)
            )
            params = tuple(base_params) + tuple(v for key in chunk for v in key)
            frame = read_sql_frame(conn, sql, params, context=f"key read {target.name}")
            if not frame.is_empty():
                frames.append(frame)

        if not frames:
            return pl.DataFrame()
        return pl.concat(frames, how="vertical_relaxed")
