"""Tests for identifier quoting, datastore configs, and the connection helpers."""

import json
import sqlite3

import pytest

from connections import (
    ConnectionPool,
    ConnectivityError,
    DatastoreConfig,
    cursor_for,
    get_connection,
    quote_identifier,
    quote_table,
    transaction,
)


class TestQuoting:
    def test_quote_identifier_escapes_brackets(self):
        assert quote_identifier("name") == "[name]"
        assert quote_identifier("tricky]name") == "[tricky]]name]"

    @pytest.mark.parametrize("name", ["", "x" * 129])
    def test_quote_identifier_rejects(self, name):
        with pytest.raises(ValueError):
            quote_identifier(name)

    def test_quote_table_parts(self):
        assert quote_table("users") == "[users]"
        assert quote_table("mydb.dbo.users") == "[mydb].[dbo].[users]"

    def test_quote_table_rejects_four_parts(self):
        with pytest.raises(ValueError):
            quote_table("a.b.c.d")


class TestDatastoreConfig:
    def test_descriptor_placeholders(self):
        cfg = DatastoreConfig.from_dict({
            "DriverName": "pyodbc",
            "Descriptor": "SERVER=[host],[port];DATABASE=[dbname];UID=[username]",
            "Parameters": {"host": "db", "port": 1433, "dbname": "ci"},
        })

        assert cfg.database == "ci"
        assert cfg.resolved_descriptor() == "SERVER=db,1433;DATABASE=ci;UID=[username]"

    def test_credentials_secret_is_merged(self, tmp_path):
        secret = tmp_path / "secret.json"
        secret.write_text(json.dumps({"Username": "tester", "password": "pw"}))
        cfg = DatastoreConfig(
            driver_name="pyodbc",
            descriptor="UID=[username];PWD=[password]",
            credentials=str(secret),
        )

        assert cfg.resolved_descriptor() == "UID=tester;PWD=pw"

    def test_from_url(self, tmp_path):
        path = tmp_path / "db.yaml"
        path.write_text("driver_name: sqlite\ndescriptor: /tmp/x.db\n")

        cfg = DatastoreConfig.from_url(str(path))

        assert (cfg.driver_name, cfg.descriptor) == ("sqlite", "/tmp/x.db")


class TestConnections:
    def test_unknown_driver(self):
        with pytest.raises(ValueError, match="Unknown driver"):
            get_connection(DatastoreConfig(driver_name="mongo"))

    def test_unreachable_sqlite_file(self, tmp_path):
        cfg = DatastoreConfig(driver_name="sqlite", descriptor=str(tmp_path / "no" / "such" / "dir.db"))
        with pytest.raises(ConnectivityError):
            get_connection(cfg)

    def test_transaction_commits_and_rolls_back(self, tmp_path):
        conn = get_connection(DatastoreConfig(driver_name="sqlite", descriptor=str(tmp_path / "t.db")))
        try:
            with transaction(conn), cursor_for(conn) as cursor:
                cursor.execute("CREATE TABLE t (x INTEGER)")
                cursor.execute("INSERT INTO t VALUES (1)")

            with pytest.raises(sqlite3.IntegrityError):
                with transaction(conn), cursor_for(conn) as cursor:
                    cursor.execute("INSERT INTO t VALUES (2)")
                    raise sqlite3.IntegrityError("boom")

            with cursor_for(conn) as cursor:
                cursor.execute("SELECT x FROM t")
                assert cursor.fetchall() == [(1,)]
        finally:
            conn.close()

    def test_pool_reuses_and_evicts_connection(self, tmp_path):
        pool = ConnectionPool("db", DatastoreConfig(driver_name="sqlite", descriptor=str(tmp_path / "p.db")))

        with pool.acquire() as first:
            pass
        with pool.acquire() as second:
            assert second is first

        pool.close()
        assert pool._conn is None
        with pool.acquire() as third:
            assert third is not first
        pool.close()
