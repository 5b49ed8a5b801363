"""Tests for Prepare: insert-vs-update reconciliation, tallies and key prediction."""

from conftest import prepare_inline, query, seed_users

from prepare.engine import ReconciliationError


USERS = [
    {"id": 1, "name": "Alice", "email": "alice@example.com"},
    {"id": 2, "name": "Bob"},
]


class TestPersist:
    def test_first_run_inserts_keyed_records(self, service):
        response = prepare_inline(service, {"users": USERS})

        assert response.ok, response.message
        info = response.modification["users"]
        assert info.method == "persist"
        assert (info.added, info.modified, info.deleted) == (2, 0, 0)
        rows = query(service, "SELECT id, name, email FROM users ORDER BY id")
        assert rows == [
            {"id": 1, "name": "Alice", "email": "alice@example.com"},
            {"id": 2, "name": "Bob", "email": None},
        ]

    def test_second_run_is_idempotent(self, service):
        prepare_inline(service, {"users": USERS}).raise_for_status()
        before = query(service, "SELECT * FROM users ORDER BY id")

        response = prepare_inline(service, {"users": USERS})

        assert response.ok, response.message
        info = response.modification["users"]
        assert (info.added, info.modified) == (0, 2)
        assert query(service, "SELECT * FROM users ORDER BY id") == before

    def test_update_changes_only_given_columns(self, service):
        seed_users(service, 1)

        response = prepare_inline(service, {"users": [{"id": 1, "name": "Renamed"}]})

        assert response.ok, response.message
        assert response.modification["users"].modified == 1
        row = query(service, "SELECT name, email FROM users WHERE id = 1")[0]
        assert row == {"name": "Renamed", "email": "user1@example.com"}

    def test_key_only_record_checks_existence(self, service):
        response = prepare_inline(service, {"orders": [{"order_id": 1, "line_no": 1}]})
        assert response.modification["orders"].added == 1

        response = prepare_inline(service, {"orders": [{"order_id": 1, "line_no": 1}]})
        info = response.modification["orders"]
        assert (info.added, info.modified) == (0, 0)
        assert len(query(service, "SELECT * FROM orders")) == 1


class TestLoad:
    def test_records_without_key_are_inserted(self, service):
        response = prepare_inline(service, {"users": [{"name": "Carol"}, {"name": "Dan"}]})

        assert response.ok, response.message
        info = response.modification["users"]
        assert info.method == "load"
        assert info.added == 2
        assert [r["name"] for r in query(service, "SELECT name FROM users ORDER BY id")] == ["Carol", "Dan"]

    def test_table_without_key_is_insert_only(self, service):
        records = [{"kind": "click", "payload": "a"}, {"kind": "click", "payload": "a"}]

        prepare_inline(service, {"events": records}).raise_for_status()
        response = prepare_inline(service, {"events": records})

        assert response.modification["events"].method == "load"
        assert len(query(service, "SELECT * FROM events")) == 4


class TestSequencePrediction:
    def test_predicts_next_keys_and_publishes_last(self, service):
        seed_users(service, 5)

        response = prepare_inline(
            service,
            {"users": [{"name": "u6"}, {"name": "u7"}, {"name": "u8"}]},
            expand=True,
        )

        assert response.ok, response.message
        rows = query(service, "SELECT id, name FROM users WHERE id > 5 ORDER BY id")
        assert rows == [{"id": 6, "name": "u6"}, {"id": 7, "name": "u7"}, {"id": 8, "name": "u8"}]
        assert service.state["seq"]["users"] == 8

    def test_later_records_reference_published_key(self, service):
        seed_users(service, 5)

        response = prepare_inline(
            service,
            {
                "users": [{"name": "new"}],
                "orders": [{"order_id": 1, "line_no": 1, "user_id": "$seq.users", "amount": 9.5}],
            },
            expand=True,
        )

        assert response.ok, response.message
        assert query(service, "SELECT user_id FROM orders") == [{"user_id": 6}]

    def test_explicit_key_advances_prediction(self, service):
        seed_users(service, 5)

        response = prepare_inline(service, {"users": [{"name": "a"}, {"id": 7, "name": "b"}, {"name": "c"}]})

        assert response.ok, response.message
        rows = query(service, "SELECT id, name FROM users WHERE id > 5 ORDER BY id")
        assert rows == [{"id": 6, "name": "a"}, {"id": 7, "name": "b"}, {"id": 8, "name": "c"}]
        assert service.state["seq"]["users"] == 8

    def test_explicit_key_below_prediction_is_ignored(self, service):
        seed_users(service, 5)

        response = prepare_inline(service, {"users": [{"name": "a"}, {"id": 3, "name": "b"}, {"name": "c"}]})

        assert response.ok, response.message
        assert [r["id"] for r in query(service, "SELECT id FROM users WHERE id > 5 ORDER BY id")] == [6, 7]

    def test_sequence_request_reads_current_max(self, service):
        seed_users(service, 3)

        response = service.sequence({"datastore": "db1", "tables": ["users", "orders"]})

        assert response.ok, response.message
        # orders has a composite key and no autoincrement column
        assert response.sequences == {"users": 3}

    def test_sequence_of_empty_table_is_zero(self, service):
        response = service.sequence({"datastore": "db1", "tables": ["users"]})
        assert response.sequences == {"users": 0}


class TestFailures:
    def test_partial_key_fails_and_rolls_back(self, service):
        records = [
            {"order_id": 1, "line_no": 1, "amount": 10},
            {"order_id": 2, "amount": 5},
            {"order_id": 3, "line_no": 1, "amount": 1},
        ]

        response = prepare_inline(service, {"orders": records})

        assert not response.ok
        assert "partial primary key" in response.message
        assert isinstance(response.error(), ReconciliationError)
        assert response.error().record_index == 1
        # Tallies made before the failure are reported, the writes are rolled back
        assert response.modification["orders"].added == 1
        assert query(service, "SELECT * FROM orders") == []

    def test_constraint_violation_reports_record_index(self, service):
        response = prepare_inline(service, {"users": [{"name": "ok"}, {"email": "no-name@example.com"}]})

        assert not response.ok
        error = response.error()
        assert isinstance(error, ReconciliationError)
        assert (error.subject, error.record_index) == ("users", 1)
        assert query(service, "SELECT * FROM users") == []


class TestReplace:
    def test_replace_deletes_existing_rows_first(self, service):
        seed_users(service, 3)

        response = prepare_inline(service, {"users": [{"@replace@": True}, {"name": "Zed"}]})

        assert response.ok, response.message
        info = response.modification["users"]
        assert (info.deleted, info.added) == (3, 1)
        assert query(service, "SELECT id, name FROM users") == [{"id": 1, "name": "Zed"}]

    def test_index_by_directive_overrides_key(self, service):
        seed_users(service, 2)

        response = prepare_inline(
            service,
            {"users": [{"@indexBy@": "email"}, {"email": "user2@example.com", "name": "by-email"}]},
        )

        assert response.ok, response.message
        assert response.modification["users"].modified == 1
        assert query(service, "SELECT name FROM users WHERE id = 2") == [{"name": "by-email"}]
