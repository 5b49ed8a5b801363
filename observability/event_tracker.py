"""RequestTracker context manager: one event per service request.

Usage:
    tracker = RequestTracker()
    with tracker.track("PREPARE", "db1") as event:
        modification = reconciler.apply(datasets)
        event.rows_inserted = sum(m.added for m in modification.values())
"""

from __future__ import annotations

import logging
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone

logger = logging.getLogger(__name__)


@dataclass
class RequestEvent:
    """Mutable event object; service code sets counts inside the with block."""

    request_type: str
    datastore: str
    started_at: datetime | None = None
    completed_at: datetime | None = None
    duration_ms: float = 0.0
    status: str = "SUCCESS"
    error_message: str | None = None
    datasets: int = 0
    rows_inserted: int = 0
    rows_updated: int = 0
    rows_deleted: int = 0
    rows_affected: int = 0


class RequestTracker:
    """Tracks service requests and logs one summary line per request.

    The last ``history`` events are kept in memory for inspection from tests.
    """

    def __init__(self, history: int = 1000) -> None:
        self.events: deque[RequestEvent] = deque(maxlen=history)

    @contextmanager
    def track(self, request_type: str, datastore: str):
        """Context manager that yields a RequestEvent for the caller to populate."""
        event = RequestEvent(request_type=request_type, datastore=datastore)
        event.started_at = datetime.now(timezone.utc)
        try:
            yield event
        except Exception as e:
            event.status = "FAILED"
            event.error_message = str(e)[:4000]
            raise
        finally:
            event.completed_at = datetime.now(timezone.utc)
            event.duration_ms = (
                (event.completed_at - event.started_at).total_seconds() * 1000
            )
            self._write_event(event)

    def _write_event(self, event: RequestEvent) -> None:
        self.events.append(event)
        log = logger.info if event.status == "SUCCESS" else logger.warning
        log(
            "%s %s %s in %.1f ms (datasets=%d inserted=%d updated=%d deleted=%d affected=%d)%s",
            event.request_type,
            event.datastore or "-",
            event.status,
            event.duration_ms,
            event.datasets,
            event.rows_inserted,
            event.rows_updated,
            event.rows_deleted,
            event.rows_affected,
            f": {event.error_message}" if event.error_message else "",
        )
