"""Expect result model: check policies and per-dataset validation outcomes."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any


class CheckPolicy(IntEnum):
    """How much of the actual state Expect inspects.

    FULL_TABLE reads the whole table and flags unexpected rows; SNAPSHOT reads
    only the rows addressed by the expected keys.
    """

    FULL_TABLE = 0
    SNAPSHOT = 1

    @classmethod
    def parse(cls, value: Any) -> CheckPolicy:
        """Accept a member, its int value, or a name (``snapshot``, ``FullTable``...)."""
        if isinstance(value, CheckPolicy):
            return value
        if isinstance(value, int):
            return cls(value)
        if isinstance(value, str):
            text = value.strip()
            if text.isdigit():
                return cls(int(text))
            key = text.replace("_", "").replace("-", "").upper()
            for member in cls:
                if member.name.replace("_", "") == key:
                    return member
        raise ValueError(f"Unknown check policy: {value!r}")


@dataclass
class FieldMismatch:
    record_index: int
    key: dict[str, Any] | None
    column: str
    expected: Any
    actual: Any


@dataclass
class MissingRow:
    record_index: int
    key: dict[str, Any] | None
    record: dict[str, Any]


@dataclass
class DatasetValidation:
    """Structural diff between one expected dataset and the actual state."""

    dataset: str
    policy: CheckPolicy
    mismatches: list[FieldMismatch] = field(default_factory=list)
    missing: list[MissingRow] = field(default_factory=list)
    unexpected: list[dict[str, Any]] = field(default_factory=list)
    error: str | None = None

    @property
    def passed(self) -> bool:
        return self.error is None and not (self.mismatches or self.missing or self.unexpected)

    def summary(self) -> str:
        if self.error:
            return f"{self.dataset}: error: {self.error}"
        return (
            f"{self.dataset}: {len(self.mismatches)} mismatch(es), "
            f"{len(self.missing)} missing, {len(self.unexpected)} unexpected"
        )
