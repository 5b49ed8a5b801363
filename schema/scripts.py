"""SQL script splitting and execution for RunScript / RunSQL.

split_sql_script() cuts a script into statements on ``;`` and on ``GO``
batch separator lines, ignoring separators inside quotes, comments and
``BEGIN ... END`` / ``CASE ... END`` blocks (trigger and procedure bodies).
Comments are dropped from the returned statements.
"""

from __future__ import annotations

import logging
import re

from connections import cursor_for, transaction

logger = logging.getLogger(__name__)

_GO = re.compile(r"^\s*GO\s*(?:--.*)?$", re.IGNORECASE)
_WORD = re.compile(r"[A-Za-z_][\w$#]*")
# BEGIN followed by one of these starts a transaction, not a block
_BEGIN_TRANSACTION = re.compile(
    r"\s*(?:;|(?:TRAN|TRANSACTION|DEFERRED|IMMEDIATE|EXCLUSIVE|DISTRIBUTED)\b)", re.IGNORECASE,
)
_CLOSING_QUOTE = {"'": "'", '"': '"', "[": "]", "`": "`"}


def _flush(buffer: list[str], statements: list[str]) -> None:
    statement = "".join(buffer).strip()
    buffer.clear()
    if statement:
        statements.append(statement)


def split_sql_script(script: str) -> list[str]:
    statements: list[str] = []
    buffer: list[str] = []
    depth = 0
    closing: str | None = None  # closing quote character while inside a literal
    in_block_comment = False

    for line in script.splitlines(keepends=True):
        if closing is None and not in_block_comment and _GO.match(line):
            _flush(buffer, statements)
            depth = 0
            continue

        i, n = 0, len(line)
        while i < n:
            ch = line[i]
            if in_block_comment:
                if line.startswith("*/", i):
                    in_block_comment = False
                    buffer.append(" ")
                    i += 2
                else:
                    i += 1
                continue
            if closing is not None:
                buffer.append(ch)
                if ch == closing:
                    # A doubled closing quote is an escaped quote inside the literal
                    if i + 1 < n and line[i + 1] == closing:
                        buffer.append(closing)
                        i += 2
                        continue
                    closing = None
                i += 1
                continue
            if line.startswith("--", i):
                if line.endswith("\n"):
                    buffer.append("\n")
                break
            if line.startswith("/*", i):
                in_block_comment = True
                i += 2
                continue
            if ch in _CLOSING_QUOTE:
                closing = _CLOSING_QUOTE[ch]
                buffer.append(ch)
                i += 1
                continue
            if ch == ";" and depth == 0:
                _flush(buffer, statements)
                i += 1
                continue
            match = _WORD.match(line, i) if (ch.isalpha() or ch == "_") else None
            if match:
                word = match.group(0).upper()
                if word == "CASE" or (word == "BEGIN" and not _BEGIN_TRANSACTION.match(line, match.end())):
                    depth += 1
                elif word == "END" and depth > 0:
                    depth -= 1
                buffer.append(match.group(0))
                i = match.end()
                continue
            buffer.append(ch)
            i += 1

    _flush(buffer, statements)
    return statements


def run_statements(conn, statements: list[str]) -> int:
    """Execute statements in order in one transaction.

    Returns:
        Sum of the positive row counts reported by the driver.
    """
    rows_affected = 0
    with transaction(conn), cursor_for(conn) as cursor:
        for index, statement in enumerate(statements):
            logger.debug("Executing statement %d/%d: %.200s", index + 1, len(statements), statement)
            cursor.execute(statement)
            if cursor.rowcount and cursor.rowcount > 0:
                rows_affected += cursor.rowcount
    return rows_affected
