"""Macro expansion of `$` tokens against the shared scenario state.

Recognized tokens:
  - ``${path}`` and ``$path`` where path is ``name(.name)*``
  - ``$name["key"]`` / ``$name['key']`` for keys that are not identifiers

Lookup tries the full dotted key first, then walks nested mappings, so
``$seq.users`` resolves ``state["seq"]["users"]``. Unresolved tokens are
left in place verbatim; callers needing strict resolution check the state
beforehand.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Mapping

logger = logging.getLogger(__name__)

_PATH = r"[A-Za-z_]\w*(?:\.[A-Za-z_]\w*)*"
_TOKEN = re.compile(
    r"\$(?:"
    rf"\{{(?P<braced>{_PATH})\}}"
    rf"|(?P<name>[A-Za-z_]\w*)\[(?P<quote>[\"'])(?P<key>[^\"']+)(?P=quote)\]"
    rf"|(?P<bare>{_PATH})"
    r")"
)

_MISSING = object()


def _lookup(state: Mapping[str, Any], path: str) -> Any:
    if path in state:
        return state[path]
    current: Any = state
    for part in path.split("."):
        if isinstance(current, Mapping) and part in current:
            current = current[part]
        else:
            return _MISSING
    return current


def _resolve(state: Mapping[str, Any], match: re.Match) -> Any:
    if match.group("braced"):
        return _lookup(state, match.group("braced"))
    if match.group("name"):
        container = _lookup(state, match.group("name"))
        if isinstance(container, Mapping):
            return container.get(match.group("key"), _MISSING)
        return _MISSING
    return _lookup(state, match.group("bare"))


def _stringify(value: Any) -> str:
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    return str(value)


class MacroExpander:
    """Expands `$` tokens in SQL text and dataset values from a state mapping."""

    def __init__(self, state: Mapping[str, Any] | None = None) -> None:
        self.state: Mapping[str, Any] = state if state is not None else {}

    def expand_text(self, text: str) -> str:
        """Replace every resolvable token in text; leave the rest untouched."""
        if not isinstance(text, str) or "$" not in text:
            return text

        def _replace(match: re.Match) -> str:
            value = _resolve(self.state, match)
            if value is not _MISSING:
                return _stringify(value)
            bare = match.group("bare")
            if bare and "." in bare:
                # $user.name with only $user in state: expand the longest known prefix
                parts = bare.split(".")
                for i in range(len(parts) - 1, 0, -1):
                    value = _lookup(self.state, ".".join(parts[:i]))
                    if value is not _MISSING:
                        return _stringify(value) + "." + ".".join(parts[i:])
            return match.group(0)

        return _TOKEN.sub(_replace, text)

    def expand_value(self, value: Any) -> Any:
        """Expand a dataset value, recursing into lists and mappings.

        A string that is exactly one token takes the raw state value, so a
        predicted integer key stays an integer.
        """
        if isinstance(value, str):
            match = _TOKEN.fullmatch(value)
            if match:
                resolved = _resolve(self.state, match)
                return value if resolved is _MISSING else resolved
            return self.expand_text(value)
        if isinstance(value, dict):
            return {k: self.expand_value(v) for k, v in value.items()}
        if isinstance(value, list):
            return [self.expand_value(v) for v in value]
        return value

    def expand_record(self, record: dict[str, Any]) -> dict[str, Any]:
        return {k: self.expand_value(v) for k, v in record.items()}


def maybe_expand_text(text: str, expand: bool, state: Mapping[str, Any]) -> str:
    """Expand text only when the request's expand flag is set."""
    if not expand:
        return text
    return MacroExpander(state).expand_text(text)
