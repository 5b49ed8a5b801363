"""Service facade: typed requests in, responses out, one method per operation.

Usage:
    from service import Service
    svc = Service()
    svc.register({"datastore": "db1", "config": {"driver_name": "sqlite", "descriptor": "db1.db"}})
    svc.prepare({"resource": {"datastore": "db1", "url": "fixtures/", "prefix": "prepare_"}})
    print(svc.expect({"resource": {"datastore": "db1", "url": "fixtures/", "prefix": "expect_"}}).to_dict())
"""

# --- Contracts ---
from service.contracts import (
    STATUS_ERROR,
    STATUS_OK,
    BaseRequest,
    BaseResponse,
    RequestValidationError,
    ResponseError,
)

# --- Service ---
from service.service import Service
