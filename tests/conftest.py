"""Shared fixtures: an isolated Registry/Service over a file-backed SQLite datastore."""

import pytest

from registry.registry import Registry
from service.service import Service

USERS_DDL = (
    "CREATE TABLE users ("
    " id INTEGER PRIMARY KEY,"
    " name TEXT NOT NULL,"
    " email TEXT,"
    " active INTEGER NOT NULL DEFAULT 1)"
)
ORDERS_DDL = (
    "CREATE TABLE orders ("
    " order_id INTEGER NOT NULL,"
    " line_no INTEGER NOT NULL,"
    " user_id INTEGER,"
    " amount REAL,"
    " PRIMARY KEY (order_id, line_no))"
)
EVENTS_DDL = "CREATE TABLE events (kind TEXT, payload TEXT)"


def sqlite_config(path) -> dict:
    return {"driver_name": "sqlite", "descriptor": str(path)}


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "dsunit_test.db"


@pytest.fixture
def service(db_path):
    """Service with datastore ``db1`` registered and users/orders/events created."""
    svc = Service(registry=Registry(), state={})
    svc.register({"datastore": "db1", "config": sqlite_config(db_path)}).raise_for_status()
    svc.run_sql({"datastore": "db1", "sql": [USERS_DDL, ORDERS_DDL, EVENTS_DDL]}).raise_for_status()
    yield svc
    svc.close()


@pytest.fixture
def registration(service):
    return service.registry.get("db1")


def seed_users(service, count: int, active: int = 1) -> None:
    """Insert users 1..count directly, bypassing Prepare."""
    statements = [
        f"INSERT INTO users (id, name, email, active) VALUES ({i}, 'user{i}', 'user{i}@example.com', {active})"
        for i in range(1, count + 1)
    ]
    service.run_sql({"datastore": "db1", "sql": statements}).raise_for_status()


def query(service, sql: str) -> list[dict]:
    response = service.query({"datastore": "db1", "sql": sql})
    response.raise_for_status()
    return response.records


def prepare_inline(service, datasets, expand: bool = False):
    return service.prepare({"expand": expand, "resource": {"datastore": "db1", "datasets": datasets}})


def expect_inline(service, datasets, policy="full_table", expand: bool = False):
    return service.expect({
        "expand": expand,
        "check_policy": policy,
        "resource": {"datastore": "db1", "datasets": datasets},
    })
