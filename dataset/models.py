"""Dataset model: named table datasets, table directives, and dataset resources."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from dataset.resource import (
    Resource,
    ResourceError,
    decode_text,
    extension_of,
    is_remote,
    list_table_files,
    load_text,
    local_path,
)

logger = logging.getLogger(__name__)

# Directive keys accepted in a leading directive record, e.g.
#   [{"@indexBy@": "id", "@autoincrement@": "id"}, {"name": "Vudi"}, ...]
INDEX_BY = "@indexBy@"
AUTOINCREMENT = "@autoincrement@"
FROM_QUERY = "@fromQuery@"
REPLACE = "@replace@"
EXHAUSTIVE = "@exhaustive@"


def _is_directive_key(key: str) -> bool:
    return len(key) > 2 and key.startswith("@") and key.endswith("@")


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes", "y")
    return bool(value)


@dataclass
class Dataset:
    """Ordered records of one logical table (physical table or mapping name).

    Records may carry different column sets (sparse fixtures). Directives
    override the registered table descriptor for this dataset only.
    """

    name: str
    records: list[dict[str, Any]] = field(default_factory=list)
    pk_columns: list[str] = field(default_factory=list)
    autoincrement: str | None = None
    from_query: str | None = None
    replace: bool = False
    exhaustive: bool = True

    @classmethod
    def from_records(cls, name: str, records: list[dict] | None) -> Dataset:
        """Build a dataset, lifting a leading directive record into fields."""
        records = [dict(r) for r in records or []]
        dataset = cls(name=name)
        if records and records[0] and all(_is_directive_key(k) for k in records[0]):
            dataset.apply_directives(records.pop(0))
        dataset.records = records
        return dataset

    def apply_directives(self, directives: dict[str, Any]) -> None:
        for key, value in directives.items():
            if key == INDEX_BY:
                self.pk_columns = [value] if isinstance(value, str) else list(value)
            elif key == AUTOINCREMENT:
                self.autoincrement = value or None
            elif key == FROM_QUERY:
                self.from_query = value or None
            elif key == REPLACE:
                self.replace = _as_bool(value)
            elif key == EXHAUSTIVE:
                self.exhaustive = _as_bool(value)
            else:
                logger.warning("Dataset %s: ignoring unknown directive %s", self.name, key)

    @property
    def columns(self) -> list[str]:
        """Union of record columns in first-seen order."""
        return list(dict.fromkeys(k for r in self.records for k in r))


@dataclass
class DatastoreDatasets:
    """The ordered datasets addressed to one registered datastore."""

    datastore: str
    datasets: list[Dataset] = field(default_factory=list)

    @property
    def names(self) -> list[str]:
        return [d.name for d in self.datasets]


def _datasets_from_payload(payload: Any, default_name: str | None) -> list[Dataset]:
    """Decode one table (list of records) or several (table -> records)."""
    if payload is None:
        return []
    if isinstance(payload, list):
        if default_name is None:
            raise ResourceError("A list of records needs a table name")
        return [Dataset.from_records(default_name, payload)]
    if isinstance(payload, dict):
        if "table" in payload and "records" in payload:
            return [Dataset.from_records(payload["table"], payload["records"])]
        return [Dataset.from_records(name, records) for name, records in payload.items()]
    raise ResourceError(f"Unsupported dataset payload: {type(payload).__name__}")


@dataclass
class DatasetResource:
    """Where a request's datasets come from.

    ``url`` is a directory of ``<prefix><table><postfix>.<ext>`` files, a
    single table file (JSON/YAML/CSV/TSV), or a remote file URL. ``datasets``
    holds inline content: an object of table -> records, or a list of
    ``{"table": ..., "records": [...]}`` entries. ``tables`` optionally fixes
    the order (and selection) of the loaded datasets.
    """

    datastore: str = ""
    url: str | None = None
    prefix: str = ""
    postfix: str = ""
    tables: list[str] = field(default_factory=list)
    datasets: Any = None

    @classmethod
    def from_dict(cls, data: dict) -> DatasetResource:
        return cls(
            datastore=data.get("datastore", ""),
            url=data.get("url"),
            prefix=data.get("prefix", ""),
            postfix=data.get("postfix", ""),
            tables=list(data.get("tables") or []),
            datasets=data.get("datasets"),
        )

    @property
    def has_content(self) -> bool:
        return bool(self.url) or self.datasets is not None

    def load(self) -> DatastoreDatasets:
        """Load all datasets in order (inline content first, then the url)."""
        loaded: list[Dataset] = []
        if isinstance(self.datasets, list):
            for entry in self.datasets:
                loaded.extend(_datasets_from_payload(entry, None))
        elif self.datasets is not None:
            loaded.extend(_datasets_from_payload(self.datasets, None))

        if self.url:
            loaded.extend(self._load_url(self.url))

        if self.tables:
            by_name = {d.name: d for d in loaded}
            missing = [t for t in self.tables if t not in by_name]
            if missing:
                raise ResourceError(f"Datasets not found in {self.url or 'inline content'}: {missing}")
            loaded = [by_name[t] for t in self.tables]

        logger.info(
            "Loaded %d dataset(s) for %s: %s",
            len(loaded), self.datastore, [d.name for d in loaded],
        )
        return DatastoreDatasets(datastore=self.datastore, datasets=loaded)

    def _load_url(self, url: str) -> list[Dataset]:
        if not is_remote(url) and local_path(url).is_dir():
            datasets = []
            for table, path in list_table_files(url, self.prefix, self.postfix):
                datasets.extend(
                    _datasets_from_payload(decode_text(load_text(path), extension_of(path)), table)
                )
            return datasets

        stem = Path(local_path(url) if not is_remote(url) else url).stem
        if self.prefix and stem.startswith(self.prefix):
            stem = stem[len(self.prefix):]
        if self.postfix and stem.endswith(self.postfix):
            stem = stem[: len(stem) - len(self.postfix)]
        resource = Resource(url=url)
        return _datasets_from_payload(decode_text(resource.load_text(), resource.extension), stem)
