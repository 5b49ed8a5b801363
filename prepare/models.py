"""Prepare result model."""

from __future__ import annotations

from dataclasses import dataclass

METHOD_LOAD = "load"  # insert-only
METHOD_PERSIST = "persist"  # insert-or-update


@dataclass
class ModificationInfo:
    """Counts of what Prepare did to one subject (table or mapping)."""

    subject: str
    method: str = METHOD_LOAD
    added: int = 0
    modified: int = 0
    deleted: int = 0
