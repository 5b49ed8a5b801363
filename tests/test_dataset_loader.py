"""Tests for dataset resources: directories, table files, inline content."""

import json

import pytest
import requests
import yaml

from dataset.models import Dataset, DatasetResource
from dataset.resource import ResourceError, decode_text, list_table_files, load_text


@pytest.fixture
def fixture_dir(tmp_path):
    (tmp_path / "prepare_users.json").write_text(json.dumps([{"id": 1, "name": "a"}]))
    (tmp_path / "prepare_orders.yaml").write_text(yaml.safe_dump([{"order_id": 1, "line_no": 1}]))
    (tmp_path / "prepare_events.csv").write_text("kind,payload\nlogin,\n,x\n")
    (tmp_path / "expect_users.json").write_text(json.dumps([{"id": 1}]))
    (tmp_path / "prepare_notes.txt").write_text("not a dataset")
    return tmp_path


class TestListTableFiles:
    def test_prefix_selects_and_strips(self, fixture_dir):
        tables = [t for t, _ in list_table_files(str(fixture_dir), prefix="prepare_")]
        assert tables == ["events", "orders", "users"]

    def test_postfix_is_stripped(self, tmp_path):
        (tmp_path / "users_v2.json").write_text("[]")
        (tmp_path / "users.json").write_text("[]")

        assert [t for t, _ in list_table_files(str(tmp_path), postfix="_v2")] == ["users"]

    def test_missing_directory(self, tmp_path):
        with pytest.raises(ResourceError):
            list_table_files(str(tmp_path / "nowhere"))


class TestDecode:
    def test_csv_values_stay_text_and_empty_cells_are_absent(self):
        records = decode_text("id,name,email\n001,a,\n2,,b@x\n", ".csv")
        assert records == [{"id": "001", "name": "a"}, {"id": "2", "email": "b@x"}]

    def test_tsv(self):
        assert decode_text("a\tb\n1\t2\n", ".tsv") == [{"a": "1", "b": "2"}]

    def test_extensionless_content_tries_json_then_yaml(self):
        assert decode_text('{"users": []}', "") == {"users": []}
        assert decode_text("users:\n  - id: 1\n", "") == {"users": [{"id": 1}]}

    def test_invalid_json(self):
        with pytest.raises(ResourceError):
            decode_text("{not json", ".json")


class TestDatasetResource:
    def test_directory_in_file_name_order(self, fixture_dir):
        loaded = DatasetResource(datastore="db1", url=str(fixture_dir), prefix="prepare_").load()

        assert loaded.datastore == "db1"
        assert loaded.names == ["events", "orders", "users"]
        assert loaded.datasets[0].records == [{"kind": "login"}, {"payload": "x"}]

    def test_tables_fix_order_and_selection(self, fixture_dir):
        resource = DatasetResource(url=str(fixture_dir), prefix="prepare_", tables=["users", "orders"])
        assert resource.load().names == ["users", "orders"]

    def test_missing_table_is_an_error(self, fixture_dir):
        resource = DatasetResource(url=str(fixture_dir), prefix="prepare_", tables=["ghosts"])
        with pytest.raises(ResourceError, match="ghosts"):
            resource.load()

    def test_single_file_named_after_its_table(self, fixture_dir):
        resource = DatasetResource(url=str(fixture_dir / "prepare_users.json"), prefix="prepare_")
        loaded = resource.load()

        assert loaded.names == ["users"]
        assert loaded.datasets[0].records == [{"id": 1, "name": "a"}]

    def test_multi_table_yaml_file(self, tmp_path):
        path = tmp_path / "scenario.yaml"
        path.write_text(yaml.safe_dump({"users": [{"id": 1}], "orders": [{"order_id": 1}]}, sort_keys=False))

        assert DatasetResource(url=str(path)).load().names == ["users", "orders"]

    def test_file_url(self, fixture_dir):
        url = (fixture_dir / "prepare_users.json").as_uri()
        assert DatasetResource(url=url, prefix="prepare_").load().names == ["users"]

    def test_inline_object_and_entries(self):
        assert DatasetResource(datasets={"users": [{"id": 1}], "orders": []}).load().names == ["users", "orders"]

        entries = [{"table": "users", "records": [{"id": 1}]}, {"orders": [{"order_id": 2}]}]
        loaded = DatasetResource(datasets=entries).load()
        assert loaded.names == ["users", "orders"]
        assert loaded.datasets[1].records == [{"order_id": 2}]

    def test_inline_bare_list_needs_a_table(self):
        with pytest.raises(ResourceError):
            DatasetResource(datasets=[[{"id": 1}]]).load()

    def test_from_dict(self):
        resource = DatasetResource.from_dict({"datastore": "db1", "url": "x/", "prefix": "p_", "tables": ["a"]})
        assert (resource.datastore, resource.url, resource.prefix, resource.tables) == ("db1", "x/", "p_", ["a"])
        assert resource.has_content
        assert not DatasetResource(datastore="db1").has_content


class TestDirectives:
    def test_leading_directive_record_is_lifted(self):
        dataset = Dataset.from_records("users", [
            {"@indexBy@": "email", "@autoincrement@": "id", "@replace@": "true", "@exhaustive@": False},
            {"email": "a@x"},
        ])

        assert dataset.pk_columns == ["email"]
        assert dataset.autoincrement == "id"
        assert dataset.replace is True
        assert dataset.exhaustive is False
        assert dataset.records == [{"email": "a@x"}]

    def test_record_with_data_is_not_a_directive_record(self):
        dataset = Dataset.from_records("users", [{"@indexBy@": "id", "name": "x"}])
        assert dataset.pk_columns == []
        assert len(dataset.records) == 1

    def test_columns_union_in_first_seen_order(self):
        dataset = Dataset.from_records("users", [{"id": 1}, {"name": "a", "id": 2}, {"email": "e"}])
        assert dataset.columns == ["id", "name", "email"]


class TestRemote:
    def test_http_resource(self, monkeypatch):
        class FakeResponse:
            content = b'[{"id": 1}]'
            text = '[{"id": 1}]'

            def raise_for_status(self):
                pass

        monkeypatch.setattr(requests, "get", lambda url, timeout: FakeResponse())

        assert DatasetResource(url="https://example.com/fixtures/users.json").load().names == ["users"]

    def test_http_failure_is_a_resource_error(self, monkeypatch):
        def fail(url, timeout):
            raise requests.ConnectionError("refused")

        monkeypatch.setattr(requests, "get", fail)

        with pytest.raises(ResourceError, match="refused"):
            load_text("https://example.com/users.json")
