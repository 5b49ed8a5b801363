"""Registry of named datastores.

A Registry is an explicit object with an owner-controlled lifetime: tests
build one per test (or per session) and close it, which closes every pooled
connection.
"""

from __future__ import annotations

import logging
import threading

from connections import DatastoreConfig
from registry.models import Registration, TableDescriptor

logger = logging.getLogger(__name__)


class UnknownDatastoreError(Exception):
    """Raised when a request names a datastore that was never registered."""


class Registry:
    def __init__(self) -> None:
        self._registrations: dict[str, Registration] = {}
        self._lock = threading.Lock()

    def register(
        self,
        name: str,
        datastore_config: DatastoreConfig,
        tables: list[TableDescriptor] | None = None,
    ) -> Registration:
        """Register (or re-register) a datastore.

        Re-registering a name replaces its config, descriptors and mappings;
        the previous registration's pool is closed.
        """
        registration = Registration(
            name=name,
            config=datastore_config,
            tables={d.table: d for d in tables or []},
        )
        # Validates the driver name before anything is stored
        registration.dialect
        with self._lock:
            previous = self._registrations.get(name)
            self._registrations[name] = registration
        if previous is not None:
            logger.info("Re-registering %s: closing previous pool", name)
            previous.close()
        logger.info(
            "Registered %s (%s) with %d table descriptor(s)",
            name, datastore_config.driver_name, len(registration.tables),
        )
        return registration

    def get(self, name: str) -> Registration:
        with self._lock:
            registration = self._registrations.get(name)
        if registration is None:
            raise UnknownDatastoreError(f"Unknown datastore: {name!r}")
        return registration

    def names(self) -> list[str]:
        with self._lock:
            return list(self._registrations)

    def __contains__(self, name: str) -> bool:
        with self._lock:
            return name in self._registrations

    def close(self) -> None:
        with self._lock:
            registrations = list(self._registrations.values())
            self._registrations.clear()
        for registration in registrations:
            registration.close()

    def __enter__(self) -> Registry:
        return self

    def __exit__(self, *exc) -> None:
        self.close()
