"""Resource loading: local paths, file:// and http(s):// URLs, or inline content.

Decodes the table file formats used by fixtures:
  - .json / .yaml / .yml: a list of records, or an object of table -> records
  - .csv / .tsv: header row + values, read with Polars (all values as text)
"""

from __future__ import annotations

import io
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any
from urllib.parse import unquote, urlparse

import polars as pl
import requests
import yaml

import config

logger = logging.getLogger(__name__)


class ResourceError(Exception):
    """Raised when a resource cannot be read or decoded."""


def is_remote(url: str) -> bool:
    return url.startswith(("http://", "https://"))


def local_path(url: str) -> Path:
    """Filesystem path for a plain path or a file:// URL."""
    if url.startswith("file://"):
        return Path(unquote(urlparse(url).path))
    return Path(url).expanduser()


def extension_of(url: str) -> str:
    path = urlparse(url).path if is_remote(url) else url
    return Path(path).suffix.lower()


@dataclass
class Resource:
    """A reference to text content: a URL/path, or the content itself."""

    url: str | None = None
    content: str | None = None

    @classmethod
    def of(cls, value: Any) -> Resource:
        if isinstance(value, Resource):
            return value
        if isinstance(value, str):
            return cls(url=value)
        if isinstance(value, dict):
            return cls(
                url=value.get("url") or value.get("URL"),
                content=value.get("content") or value.get("Content"),
            )
        raise ResourceError(f"Unsupported resource reference: {value!r}")

    @property
    def extension(self) -> str:
        return extension_of(self.url) if self.url else ""

    def load_text(self) -> str:
        if self.content is not None:
            return self.content
        if not self.url:
            raise ResourceError("Resource has neither url nor content")
        return load_text(self.url)


def load_text(url: str) -> str:
    """Read a resource as text.

    Raises:
        ResourceError: If the file is missing or the HTTP request fails.
    """
    if is_remote(url):
        try:
            response = requests.get(url, timeout=config.RESOURCE_HTTP_TIMEOUT)
            response.raise_for_status()
        except requests.RequestException as e:
            raise ResourceError(f"Could not fetch {url}: {e}") from e
        logger.debug("Fetched %s (%d bytes)", url, len(response.content))
        return response.text

    path = local_path(url)
    try:
        return path.read_text(encoding=config.RESOURCE_ENCODING)
    except OSError as e:
        raise ResourceError(f"Could not read {path}: {e}") from e


def decode_text(text: str, extension: str) -> Any:
    """Decode resource text by file extension.

    Unknown extensions (inline content, extension-less URLs) are tried as
    JSON first, then YAML.
    """
    try:
        if extension == ".json":
            return json.loads(text)
        if extension in (".yaml", ".yml"):
            return yaml.safe_load(text)
        if extension in (".csv", ".tsv"):
            return _decode_delimited(text, "\t" if extension == ".tsv" else ",")
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            return yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError, pl.exceptions.PolarsError) as e:
        raise ResourceError(f"Could not decode {extension or 'resource'} content: {e}") from e


def _decode_delimited(text: str, separator: str) -> list[dict]:
    """Read CSV/TSV rows as records; empty cells are treated as absent fields.

    infer_schema_length=0 keeps every value as text so leading zeros and
    macro tokens survive; the datastore applies column affinity on write and
    Expect compares numeric text numerically.
    """
    if not text.strip():
        return []
    df = pl.read_csv(
        io.BytesIO(text.encode(config.RESOURCE_ENCODING)),
        separator=separator,
        infer_schema_length=0,
    )
    return [
        {k: v for k, v in row.items() if v is not None}
        for row in df.iter_rows(named=True)
    ]


def load_structured(reference: Any) -> Any:
    """Load and decode a JSON/YAML resource (request bodies, configs, secrets)."""
    resource = Resource.of(reference)
    return decode_text(resource.load_text(), resource.extension)


def list_table_files(
    directory: str,
    prefix: str = "",
    postfix: str = "",
) -> list[tuple[str, str]]:
    """List (table, path) pairs for ``<prefix><table><postfix>.<ext>`` files.

    Files are returned in file-name order; only DATASET_EXTENSIONS are picked.

    Raises:
        ResourceError: If the directory does not exist or is remote.
    """
    if is_remote(directory):
        raise ResourceError(f"Remote directories cannot be listed: {directory}")
    path = local_path(directory)
    if not path.is_dir():
        raise ResourceError(f"Dataset directory not found: {path}")

    found = []
    for file in sorted(path.iterdir()):
        if not file.is_file() or file.suffix.lower() not in config.DATASET_EXTENSIONS:
            continue
        stem = file.stem
        if not stem.startswith(prefix) or not stem.endswith(postfix):
            continue
        table = stem[len(prefix):len(stem) - len(postfix)] if postfix else stem[len(prefix):]
        if table:
            found.append((table, str(file)))
    return found
