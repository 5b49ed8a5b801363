"""Service facade: routes requests to the engines and never raises to the caller.

Usage:
    service = Service()
    service.register({"datastore": "db1", "config": {"driver_name": "sqlite", "descriptor": "/tmp/db1.db"}})
    response = service.prepare(PrepareRequest(expand=True, resource=DatasetResource(datastore="db1", url="fixtures/")))
    response.raise_for_status()

Every request is validated before any datastore access. Any failure is
logged with its traceback and reported as a non-ok response.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable

import config
from connections import cursor_for, transaction
from dataset.macros import maybe_expand_text
from dataset.models import DatasetResource
from expect.engine import Validator
from expect.models import CheckPolicy
from extract import frame_to_records, read_sql_frame
from observability import log_handler
from observability.event_tracker import RequestEvent, RequestTracker
from prepare.engine import ReconciliationError, Reconciler
from registry.registry import Registry
from schema.recreate import recreate
from schema.scripts import run_statements, split_sql_script
from sequence.tracker import SequenceTracker
from service.contracts import (
    BaseRequest,
    BaseResponse,
    ExpectRequest,
    ExpectResponse,
    InitRequest,
    InitResponse,
    MappingRequest,
    MappingResponse,
    PrepareRequest,
    PrepareResponse,
    QueryRequest,
    QueryResponse,
    RecreateRequest,
    RecreateResponse,
    RegisterRequest,
    RegisterResponse,
    RunScriptRequest,
    RunScriptResponse,
    RunSQLRequest,
    RunSQLResponse,
    SequenceRequest,
    SequenceResponse,
)

logger = logging.getLogger(__name__)


def _datastore_of(request: BaseRequest) -> str:
    resource = getattr(request, "resource", None)
    if resource is not None:
        return resource.datastore
    return getattr(request, "datastore", "") or ""


def _use_case_prefix(use_case: str, stage: str) -> str:
    return f"{use_case}_{stage}_" if use_case else f"{stage}_"


class Service:
    """Entry point for test suites.

    ``state`` is the scenario state shared by every request of this service:
    Prepare publishes predicted keys into it and macro expansion reads it.
    """

    def __init__(
        self,
        registry: Registry | None = None,
        state: dict[str, Any] | None = None,
        tracker: RequestTracker | None = None,
    ) -> None:
        self.registry = registry if registry is not None else Registry()
        self.state = state if state is not None else {}
        self.tracker = tracker if tracker is not None else RequestTracker()

    def close(self) -> None:
        self.registry.close()

    def __enter__(self) -> Service:
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def _run(
        self,
        request_type: str,
        request_cls: type[BaseRequest],
        request: BaseRequest | dict,
        response: BaseResponse,
        handler: Callable[[Any, Any, RequestEvent], None],
    ) -> BaseResponse:
        datastore = ""
        try:
            if isinstance(request, dict):
                request = request_cls.from_dict(request)
            datastore = _datastore_of(request)
            request.validate()
            log_handler.set_context(datastore=datastore or None, subject=None)
            with self.tracker.track(request_type, datastore) as event:
                handler(request, response, event)
                if not response.ok:
                    event.status = "FAILED"
                    event.error_message = response.message
        except Exception as e:
            logger.exception("%s %s failed", request_type, datastore or "-")
            response.set_error(e)
        finally:
            log_handler.clear_context()
        return response

    # --- Registration ---

    def register(self, request: RegisterRequest | dict) -> RegisterResponse:
        return self._run("REGISTER", RegisterRequest, request, RegisterResponse(), self._register)

    def _register(self, request: RegisterRequest, response: RegisterResponse, event: RequestEvent) -> None:
        self.registry.register(request.datastore, request.datastore_config(), request.tables)
        response.message = f"registered {request.datastore}"

    def recreate(self, request: RecreateRequest | dict) -> RecreateResponse:
        return self._run("RECREATE", RecreateRequest, request, RecreateResponse(), self._recreate)

    def _recreate(self, request: RecreateRequest, response: RecreateResponse, event: RequestEvent) -> None:
        registration = self.registry.get(request.datastore)
        admin = self.registry.get(request.admin_datastore) if request.admin_datastore else None
        response.tables = recreate(registration, admin)
        event.datasets = len(response.tables)

    def mapping(self, request: MappingRequest | dict) -> MappingResponse:
        return self._run("MAPPING", MappingRequest, request, MappingResponse(), self._mapping)

    def _mapping(self, request: MappingRequest, response: MappingResponse, event: RequestEvent) -> None:
        registration = self.registry.get(request.datastore)
        with registration.lock:
            for mapping in request.mappings:
                registration.mappings[mapping.name] = mapping
        response.tables = [m.name for m in request.mappings]
        logger.info("Declared mapping(s) on %s: %s", request.datastore, response.tables)

    def init(self, request: InitRequest | dict) -> InitResponse:
        return self._run("INIT", InitRequest, request, InitResponse(), self._init)

    def _init(self, request: InitRequest, response: InitResponse, event: RequestEvent) -> None:
        steps: list[tuple[str, Callable, BaseRequest]] = []
        if request.admin is not None:
            steps.append(("admin register", self.register, request.admin))
        steps.append(("register", self.register, request.register))
        if request.recreate:
            admin_datastore = request.admin.datastore if request.admin is not None else ""
            steps.append((
                "recreate",
                self.recreate,
                RecreateRequest(datastore=request.register.datastore, admin_datastore=admin_datastore),
            ))
        if request.mapping is not None:
            steps.append(("mapping", self.mapping, request.mapping))
        if request.run_script is not None:
            steps.append(("run_script", self.run_script, request.run_script))

        for label, call, section in steps:
            sub = call(section)
            if not sub.ok:
                response.set_error(sub.error())
                response.message = f"Init {request.datastore}: {label} failed: {sub.message}"
                return
            response.tables.extend(t for t in getattr(sub, "tables", []) if t not in response.tables)

    # --- SQL ---

    def run_sql(self, request: RunSQLRequest | dict) -> RunSQLResponse:
        return self._run("RUN_SQL", RunSQLRequest, request, RunSQLResponse(), self._run_sql)

    def _run_sql(self, request: RunSQLRequest, response: RunSQLResponse, event: RequestEvent) -> None:
        registration = self.registry.get(request.datastore)
        statements = [maybe_expand_text(s, request.expand, self.state) for s in request.sql]
        with registration.connection() as conn:
            response.rows_affected = run_statements(conn, statements)
        event.rows_affected = response.rows_affected

    def run_script(self, request: RunScriptRequest | dict) -> RunScriptResponse:
        return self._run("RUN_SCRIPT", RunScriptRequest, request, RunScriptResponse(), self._run_script)

    def _run_script(self, request: RunScriptRequest, response: RunScriptResponse, event: RequestEvent) -> None:
        registration = self.registry.get(request.datastore)
        statements: list[str] = []
        for script in request.scripts:
            text = maybe_expand_text(script.load_text(), request.expand, self.state)
            statements.extend(split_sql_script(text))
        logger.info("Running %d statement(s) from %d script(s)", len(statements), len(request.scripts))
        with registration.connection() as conn:
            response.rows_affected = run_statements(conn, statements)
        event.rows_affected = response.rows_affected

    def query(self, request: QueryRequest | dict) -> QueryResponse:
        return self._run("QUERY", QueryRequest, request, QueryResponse(), self._query)

    def _query(self, request: QueryRequest, response: QueryResponse, event: RequestEvent) -> None:
        registration = self.registry.get(request.datastore)
        with registration.connection() as conn, transaction(conn):
            response.records = frame_to_records(read_sql_frame(conn, request.sql, context="query"))
        event.rows_affected = len(response.records)

    def sequence(self, request: SequenceRequest | dict) -> SequenceResponse:
        return self._run("SEQUENCE", SequenceRequest, request, SequenceResponse(), self._sequence)

    def _sequence(self, request: SequenceRequest, response: SequenceResponse, event: RequestEvent) -> None:
        registration = self.registry.get(request.datastore)
        with registration.connection() as conn, transaction(conn):
            tables = request.tables
            if not tables:
                with cursor_for(conn) as cursor:
                    tables = registration.dialect.list_tables(cursor)
            response.sequences = SequenceTracker(registration).current(conn, tables)

    # --- Datasets ---

    def prepare(self, request: PrepareRequest | dict) -> PrepareResponse:
        return self._run("PREPARE", PrepareRequest, request, PrepareResponse(), self._prepare)

    def _prepare(self, request: PrepareRequest, response: PrepareResponse, event: RequestEvent) -> None:
        registration = self.registry.get(request.resource.datastore)
        datasets = request.resource.load()
        event.datasets = len(datasets.datasets)
        try:
            response.modification = Reconciler(registration, self.state).apply(datasets, request.expand)
        except ReconciliationError as e:
            # Report how far the request got before it was rolled back
            response.modification = e.modifications
            raise
        event.rows_inserted = sum(m.added for m in response.modification.values())
        event.rows_updated = sum(m.modified for m in response.modification.values())
        event.rows_deleted = sum(m.deleted for m in response.modification.values())

    def expect(self, request: ExpectRequest | dict) -> ExpectResponse:
        return self._run("EXPECT", ExpectRequest, request, ExpectResponse(), self._expect)

    def _expect(self, request: ExpectRequest, response: ExpectResponse, event: RequestEvent) -> None:
        registration = self.registry.get(request.resource.datastore)
        datasets = request.resource.load()
        event.datasets = len(datasets.datasets)
        response.validation = Validator(registration, self.state).validate(
            datasets, request.check_policy, request.expand,
        )
        response.passed_count = sum(1 for v in response.validation if v.passed)
        response.failed_count = len(response.validation) - response.passed_count
        if response.failed_count:
            response.set_error("; ".join(v.summary() for v in response.validation if not v.passed))

    # --- Test helpers ---

    def prepare_for(
        self,
        datastore: str,
        base_dir: str | Path | None = None,
        use_case: str = "",
    ) -> PrepareResponse:
        """Prepare from ``<base_dir>/<use_case>_prepare_<table>.<ext>`` files."""
        resource = DatasetResource(
            datastore=datastore,
            url=str(base_dir or config.BASE_DIR),
            prefix=_use_case_prefix(use_case, "prepare"),
        )
        return self.prepare(PrepareRequest(expand=True, resource=resource))

    def expect_for(
        self,
        datastore: str,
        policy: CheckPolicy | int | str = CheckPolicy.FULL_TABLE,
        base_dir: str | Path | None = None,
        use_case: str = "",
    ) -> ExpectResponse:
        """Expect from ``<base_dir>/<use_case>_expect_<table>.<ext>`` files."""
        resource = DatasetResource(
            datastore=datastore,
            url=str(base_dir or config.BASE_DIR),
            prefix=_use_case_prefix(use_case, "expect"),
        )
        return self.expect(ExpectRequest(expand=True, resource=resource, check_policy=policy))
