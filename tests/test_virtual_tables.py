"""Tests for mappings (virtual tables): resolution lifecycle and transparency."""

import json

import pytest
from conftest import expect_inline, prepare_inline, query, seed_users

from mapping.virtual_tables import Mapping, MappingError, MappingState, VirtualTableResolver, derive_table
from prepare.engine import ReconciliationError

ACTIVE_USERS = {
    "name": "active_users",
    "query": "SELECT * FROM users WHERE active = 1",
    "defaults": {"active": 1},
}


@pytest.fixture
def mapped(service):
    service.mapping({"datastore": "db1", "mappings": [ACTIVE_USERS]}).raise_for_status()
    return service


class TestDeriveTable:
    @pytest.mark.parametrize("sql, table", [
        ("SELECT * FROM users WHERE active = 1", "users"),
        ("select id from [dbo].[users] u", "dbo.users"),
        ('SELECT * FROM "order items"', "order items"),
        ("SELECT n FROM (SELECT 1 AS n) t", None),
        ("SELECT 1", None),
    ])
    def test_first_from_clause(self, sql, table):
        assert derive_table(sql) == table


class TestMappingLifecycle:
    def test_resolves_once_and_derives_table(self):
        mapping = Mapping(name="m", query="SELECT * FROM users")
        assert mapping.state == MappingState.DECLARED

        assert mapping.resolve() is mapping
        assert mapping.state == MappingState.RESOLVED
        assert mapping.table == "users"

    def test_resolves_from_url(self, tmp_path):
        path = tmp_path / "active.json"
        path.write_text(json.dumps({"query": "SELECT * FROM users WHERE active = 1", "pkColumns": ["id"]}))

        mapping = Mapping(name="active", url=str(path)).resolve()

        assert mapping.table == "users"
        assert mapping.pk_columns == ["id"]

    def test_failed_resolution_stays_declared(self, tmp_path):
        mapping = Mapping(name="broken", url=str(tmp_path / "missing.json"))

        with pytest.raises(MappingError):
            mapping.resolve()
        assert mapping.state == MappingState.DECLARED

    def test_failed_resolution_fails_only_the_request(self, service, tmp_path):
        service.mapping({
            "datastore": "db1",
            "mappings": [{"name": "broken", "url": str(tmp_path / "missing.json")}],
        }).raise_for_status()

        response = prepare_inline(service, {"broken": [{"name": "x"}]})

        assert not response.ok
        assert isinstance(response.error(), ReconciliationError)
        assert isinstance(response.error().__cause__, MappingError)
        assert prepare_inline(service, {"users": [{"name": "x"}]}).ok


class TestTransparency:
    def test_resolver_targets(self, mapped, registration):
        resolver = VirtualTableResolver(registration)

        physical = resolver.resolve("users")
        virtual = resolver.resolve("active_users")

        assert (physical.table, physical.is_virtual) == ("users", False)
        assert (virtual.table, virtual.is_virtual) == ("users", True)
        assert virtual.pk_columns == ["id"]
        assert virtual.autoincrement == "id"

    def test_prepare_and_expect_through_mapping(self, mapped):
        seed_users(mapped, 1, active=0)

        response = prepare_inline(mapped, {"active_users": [{"name": "a"}, {"name": "b"}]})

        assert response.ok, response.message
        assert response.modification["active_users"].added == 2
        assert query(mapped, "SELECT id, name, active FROM users ORDER BY id") == [
            {"id": 1, "name": "user1", "active": 0},
            {"id": 2, "name": "a", "active": 1},
            {"id": 3, "name": "b", "active": 1},
        ]
        # The inactive user is outside the mapping, so the mapping is exactly a and b
        expected = [{"id": 2, "name": "a"}, {"id": 3, "name": "b"}]
        assert expect_inline(mapped, {"active_users": expected}).ok
        assert not expect_inline(mapped, {"users": expected}).ok

    def test_replace_deletes_only_mapped_rows(self, mapped):
        seed_users(mapped, 1, active=0)
        prepare_inline(mapped, {"active_users": [{"name": "a"}, {"name": "b"}]}).raise_for_status()

        response = prepare_inline(mapped, {"active_users": [{"@replace@": True}, {"name": "c"}]})

        assert response.ok, response.message
        assert response.modification["active_users"].deleted == 2
        assert [r["name"] for r in query(mapped, "SELECT name FROM users ORDER BY id")] == ["user1", "c"]

    def test_parametrized_mapping(self, service):
        seed_users(service, 3)
        service.mapping({"datastore": "db1", "mappings": [{
            "name": "some_users",
            "query": "SELECT id, name FROM users WHERE id >= ?",
            "parameters": [2],
        }]}).raise_for_status()

        response = expect_inline(service, {"some_users": [{"id": 2}, {"id": 3}]})

        assert response.ok, response.message

    def test_read_only_mapping_rejects_writes(self, service):
        seed_users(service, 2)
        service.mapping({"datastore": "db1", "mappings": [{
            "name": "user_count",
            "query": "SELECT n FROM (SELECT COUNT(*) AS n FROM users) c",
        }]}).raise_for_status()

        assert expect_inline(service, {"user_count": [{"n": 2}]}).ok
        response = prepare_inline(service, {"user_count": [{"n": 5}]})
        assert not response.ok
        assert "read-only" in response.message

    def test_read_only_mapping_failure_keeps_earlier_tallies(self, service):
        service.mapping({"datastore": "db1", "mappings": [{
            "name": "user_count",
            "query": "SELECT n FROM (SELECT COUNT(*) AS n FROM users) c",
        }]}).raise_for_status()

        response = prepare_inline(service, {"users": [{"name": "a"}], "user_count": [{"n": 5}]})

        assert not response.ok
        assert response.error().subject == "user_count"
        assert response.modification["users"].added == 1
        assert query(service, "SELECT * FROM users") == []
