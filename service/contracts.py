"""Request and response types of the Service.

Requests are built from dicts (snake_case or CamelCase keys) or decoded
from a JSON/YAML resource with from_url(). validate() runs before any
datastore access and raises RequestValidationError.

Every response carries ``status`` ("ok" on success) and ``message``, and
serializes with to_dict().
"""

from __future__ import annotations

import dataclasses
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from connections import DatastoreConfig
from dataset.models import DatasetResource
from dataset.resource import Resource, load_structured
from expect.models import CheckPolicy, DatasetValidation
from mapping.virtual_tables import Mapping
from prepare.models import ModificationInfo
from registry.models import TableDescriptor

logger = logging.getLogger(__name__)

STATUS_OK = "ok"
STATUS_ERROR = "error"


class RequestValidationError(Exception):
    """Raised when a request is incomplete; no datastore has been touched."""


class ResponseError(Exception):
    """Raised by BaseResponse.raise_for_status() for a non-ok response."""


def _snake(name: str) -> str:
    name = re.sub(r"([A-Z]+)([A-Z][a-z])", r"\1_\2", name)
    return re.sub(r"([a-z0-9])([A-Z])", r"\1_\2", name).lower()


def snake_keys(data: dict | None) -> dict:
    """Top-level keys converted to snake_case (``ConfigURL`` -> ``config_url``)."""
    return {_snake(str(k)): v for k, v in (data or {}).items()}


def _as_list(value: Any) -> list:
    if value is None:
        return []
    return list(value) if isinstance(value, (list, tuple)) else [value]


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class BaseRequest:
    @classmethod
    def from_dict(cls, data: dict):
        raise NotImplementedError

    @classmethod
    def from_url(cls, url: str):
        """Decode a request from a JSON/YAML file or URL."""
        return cls.from_dict(load_structured(url))

    def validate(self) -> None:
        pass


def _require_datastore(request_name: str, datastore: str) -> None:
    if not datastore:
        raise RequestValidationError(f"{request_name}: datastore is required")


@dataclass
class RegisterRequest(BaseRequest):
    datastore: str = ""
    config: DatastoreConfig | None = None
    config_url: str | None = None
    tables: list[TableDescriptor] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> RegisterRequest:
        data = snake_keys(data)
        return cls(
            datastore=data.get("datastore") or "",
            config=DatastoreConfig.from_dict(snake_keys(data["config"])) if data.get("config") else None,
            config_url=data.get("config_url"),
            tables=[TableDescriptor.from_dict(snake_keys(t)) for t in _as_list(data.get("tables"))],
        )

    def validate(self) -> None:
        _require_datastore("Register", self.datastore)
        if self.config is None and not self.config_url:
            raise RequestValidationError(f"Register {self.datastore}: config or config_url is required")
        for descriptor in self.tables:
            if not descriptor.table:
                raise RequestValidationError(f"Register {self.datastore}: table descriptor without a table name")

    def datastore_config(self) -> DatastoreConfig:
        if self.config is not None:
            return self.config
        return DatastoreConfig.from_url(self.config_url)


@dataclass
class RecreateRequest(BaseRequest):
    datastore: str = ""
    admin_datastore: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> RecreateRequest:
        data = snake_keys(data)
        return cls(datastore=data.get("datastore") or "", admin_datastore=data.get("admin_datastore") or "")

    def validate(self) -> None:
        _require_datastore("Recreate", self.datastore)


@dataclass
class MappingRequest(BaseRequest):
    datastore: str = ""
    mappings: list[Mapping] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> MappingRequest:
        data = snake_keys(data)
        mappings = []
        for entry in _as_list(data.get("mappings")):
            if isinstance(entry, str):
                # A bare string is the URL of a mapping resource named after its file
                mappings.append(Mapping(name=Path(entry).stem, url=entry))
            else:
                mappings.append(Mapping.from_dict(snake_keys(entry)))
        return cls(datastore=data.get("datastore") or "", mappings=mappings)

    def validate(self) -> None:
        _require_datastore("Mapping", self.datastore)
        if not self.mappings:
            raise RequestValidationError(f"Mapping {self.datastore}: mappings must not be empty")
        for index, mapping in enumerate(self.mappings):
            if not mapping.name:
                raise RequestValidationError(f"Mapping {self.datastore}: mapping {index} has no name")
            if not mapping.query and not mapping.url:
                raise RequestValidationError(f"Mapping {mapping.name}: query or url is required")


@dataclass
class RunScriptRequest(BaseRequest):
    datastore: str = ""
    expand: bool = False
    scripts: list[Resource] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> RunScriptRequest:
        data = snake_keys(data)
        return cls(
            datastore=data.get("datastore") or "",
            expand=bool(data.get("expand", False)),
            scripts=[Resource.of(s) for s in _as_list(data.get("scripts"))],
        )

    def validate(self) -> None:
        _require_datastore("RunScript", self.datastore)


@dataclass
class InitRequest(BaseRequest):
    """Register, optionally recreate, declare mappings and run scripts in one call.

    Section datastores default to ``datastore``; the admin section defaults
    to ``<datastore>_admin``.
    """

    datastore: str = ""
    recreate: bool = False
    register: RegisterRequest | None = None
    admin: RegisterRequest | None = None
    mapping: MappingRequest | None = None
    run_script: RunScriptRequest | None = None

    def __post_init__(self) -> None:
        for section in (self.register, self.mapping, self.run_script):
            if section is not None and not section.datastore:
                section.datastore = self.datastore
        if self.admin is not None and not self.admin.datastore:
            self.admin.datastore = f"{self.datastore}_admin"

    @classmethod
    def from_dict(cls, data: dict) -> InitRequest:
        data = snake_keys(data)
        register = data.get("register")
        if register is None and data.get("config"):
            register = {"config": data["config"], "tables": data.get("tables")}
        admin = data.get("admin")
        if admin is not None and "config" not in snake_keys(admin):
            admin = {"config": admin}
        return cls(
            datastore=data.get("datastore") or "",
            recreate=bool(data.get("recreate", False)),
            register=RegisterRequest.from_dict(register) if register else None,
            admin=RegisterRequest.from_dict(admin) if admin else None,
            mapping=MappingRequest.from_dict(data["mapping"]) if data.get("mapping") else None,
            run_script=RunScriptRequest.from_dict(data["run_script"]) if data.get("run_script") else None,
        )

    def validate(self) -> None:
        _require_datastore("Init", self.datastore)
        if self.register is None:
            raise RequestValidationError(f"Init {self.datastore}: a register section with config is required")
        for section in (self.admin, self.register, self.mapping, self.run_script):
            if section is not None:
                section.validate()


@dataclass
class RunSQLRequest(BaseRequest):
    datastore: str = ""
    expand: bool = False
    sql: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> RunSQLRequest:
        data = snake_keys(data)
        return cls(
            datastore=data.get("datastore") or "",
            expand=bool(data.get("expand", False)),
            sql=[str(s) for s in _as_list(data.get("sql"))],
        )

    def validate(self) -> None:
        _require_datastore("RunSQL", self.datastore)


def _dataset_resource(data: dict) -> DatasetResource | None:
    resource = data.get("resource") or data.get("dataset_resource")
    if resource is None:
        return None
    if isinstance(resource, DatasetResource):
        return resource
    return DatasetResource.from_dict(snake_keys(resource))


def _validate_resource(request_name: str, resource: DatasetResource | None) -> None:
    if resource is None:
        raise RequestValidationError(f"{request_name}: resource is required")
    _require_datastore(request_name, resource.datastore)
    if not resource.has_content:
        raise RequestValidationError(
            f"{request_name} {resource.datastore}: resource needs a url or inline datasets"
        )


@dataclass
class PrepareRequest(BaseRequest):
    expand: bool = False
    resource: DatasetResource | None = None

    @classmethod
    def from_dict(cls, data: dict) -> PrepareRequest:
        data = snake_keys(data)
        return cls(expand=bool(data.get("expand", False)), resource=_dataset_resource(data))

    def validate(self) -> None:
        _validate_resource("Prepare", self.resource)


@dataclass
class ExpectRequest(BaseRequest):
    expand: bool = False
    resource: DatasetResource | None = None
    check_policy: CheckPolicy = CheckPolicy.FULL_TABLE

    @classmethod
    def from_dict(cls, data: dict) -> ExpectRequest:
        data = snake_keys(data)
        return cls(
            expand=bool(data.get("expand", False)),
            resource=_dataset_resource(data),
            check_policy=CheckPolicy.parse(data.get("check_policy", CheckPolicy.FULL_TABLE)),
        )

    def validate(self) -> None:
        _validate_resource("Expect", self.resource)


@dataclass
class SequenceRequest(BaseRequest):
    datastore: str = ""
    tables: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> SequenceRequest:
        data = snake_keys(data)
        return cls(datastore=data.get("datastore") or "", tables=[str(t) for t in _as_list(data.get("tables"))])

    def validate(self) -> None:
        _require_datastore("Sequence", self.datastore)


@dataclass
class QueryRequest(BaseRequest):
    datastore: str = ""
    sql: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> QueryRequest:
        data = snake_keys(data)
        return cls(datastore=data.get("datastore") or "", sql=data.get("sql") or "")

    def validate(self) -> None:
        _require_datastore("Query", self.datastore)
        if not self.sql.strip():
            raise RequestValidationError(f"Query {self.datastore}: sql is required")


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.name
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        plain = {f.name: _plain(getattr(value, f.name)) for f in dataclasses.fields(value) if not f.name.startswith("_")}
        if isinstance(value, DatasetValidation):
            plain["passed"] = value.passed
        return plain
    if isinstance(value, dict):
        return {str(k): _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return value


@dataclass
class BaseResponse:
    status: str = STATUS_OK
    message: str = ""
    _error: Exception | None = field(default=None, repr=False, compare=False)

    @property
    def ok(self) -> bool:
        return self.status == STATUS_OK

    def set_error(self, err: Exception | str) -> None:
        self.status = STATUS_ERROR
        self.message = str(err)
        self._error = err if isinstance(err, Exception) else None

    def error(self) -> Exception | None:
        """The failure as an exception, or None for an ok response."""
        if self.ok:
            return None
        return self._error or ResponseError(self.message)

    def raise_for_status(self) -> None:
        if not self.ok:
            raise ResponseError(self.message) from self._error

    def to_dict(self) -> dict:
        return _plain(self)


@dataclass
class RegisterResponse(BaseResponse):
    pass


@dataclass
class RecreateResponse(BaseResponse):
    tables: list[str] = field(default_factory=list)


@dataclass
class MappingResponse(BaseResponse):
    tables: list[str] = field(default_factory=list)


@dataclass
class InitResponse(BaseResponse):
    tables: list[str] = field(default_factory=list)


@dataclass
class RunSQLResponse(BaseResponse):
    rows_affected: int = 0


@dataclass
class RunScriptResponse(BaseResponse):
    rows_affected: int = 0


@dataclass
class PrepareResponse(BaseResponse):
    modification: dict[str, ModificationInfo] = field(default_factory=dict)


@dataclass
class ExpectResponse(BaseResponse):
    validation: list[DatasetValidation] = field(default_factory=list)
    passed_count: int = 0
    failed_count: int = 0


@dataclass
class SequenceResponse(BaseResponse):
    sequences: dict[str, int] = field(default_factory=dict)


@dataclass
class QueryResponse(BaseResponse):
    records: list[dict[str, Any]] = field(default_factory=list)
