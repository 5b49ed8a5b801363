"""Logging setup and the thread-local datastore/subject log context.

Every module uses standard logger = logging.getLogger(__name__) calls.
LogContextFilter stamps the datastore and subject (table or dataset) the
current thread is working on onto every record, so engine log lines read
``[db1/users] ...`` without each call site repeating them.
"""

from __future__ import annotations

import logging
import sys
import threading

import config

_context = threading.local()

LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s [%(datastore)s/%(subject)s] %(message)s"


def set_context(datastore: str | None = None, subject: str | None = None) -> None:
    """Set the current thread's log context; a None subject clears it."""
    if datastore is not None:
        _context.datastore = datastore
    _context.subject = subject


def clear_context() -> None:
    _context.datastore = None
    _context.subject = None


def get_context() -> tuple[str | None, str | None]:
    return (
        getattr(_context, "datastore", None),
        getattr(_context, "subject", None),
    )


class LogContextFilter(logging.Filter):
    """Adds ``datastore`` and ``subject`` attributes to every record.

    Usage:
        handler.addFilter(LogContextFilter())
        set_context(datastore="db1", subject="users")
    """

    def filter(self, record: logging.LogRecord) -> bool:
        datastore, subject = get_context()
        record.datastore = datastore or "-"
        record.subject = subject or "-"
        return True


def setup_logging(level: str | int | None = None) -> logging.Handler:
    """Install a console handler with the context filter on the root logger.

    Idempotent: a second call only updates the level.
    """
    root = logging.getLogger()
    root.setLevel(level or config.LOG_LEVEL)
    for handler in root.handlers:
        if getattr(handler, "_dsunit_handler", False):
            return handler

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.addFilter(LogContextFilter())
    handler._dsunit_handler = True
    root.addHandler(handler)
    return handler
