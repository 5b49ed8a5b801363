"""Tests for DDL generation from table descriptors."""

from dialects import get_dialect
from registry.models import TableDescriptor
from schema.table_creator import column_sql_type, create_table_ddl

ITEMS = {
    "table": "items",
    "pk_columns": ["id"],
    "autoincrement": True,
    "columns": [
        {"name": "id", "data_type": "int64"},
        {"name": "label", "data_type": "string", "nullable": False},
        {"name": "price", "dataType": "float64"},
        {"name": "created", "data_type": "DATETIME2(3)"},
    ],
}


class TestColumnTypes:
    def test_polars_names_map_per_dialect(self):
        assert column_sql_type(get_dialect("sqlite"), "int64") == "INTEGER"
        assert column_sql_type(get_dialect("pyodbc"), "int64") == "BIGINT"
        assert column_sql_type(get_dialect("pyodbc"), "String") == "NVARCHAR(MAX)"
        assert column_sql_type(get_dialect("sqlite"), "bool") == "INTEGER"

    def test_unknown_names_pass_through(self):
        assert column_sql_type(get_dialect("pyodbc"), "DATETIME2(3)") == "DATETIME2(3)"


class TestCreateTableDdl:
    def test_sqlite_autoincrement_is_inline_integer_primary_key(self):
        ddl = create_table_ddl(get_dialect("sqlite"), TableDescriptor.from_dict(ITEMS))

        assert ddl.startswith("CREATE TABLE [items] (")
        assert "[id] INTEGER PRIMARY KEY" in ddl
        assert "[label] TEXT NOT NULL" in ddl
        assert "[price] REAL NULL" in ddl
        assert "PRIMARY KEY ([" not in ddl

    def test_sql_server_identity_with_table_constraint(self):
        ddl = create_table_ddl(get_dialect("pyodbc"), TableDescriptor.from_dict(ITEMS))

        assert "[id] BIGINT IDENTITY(1,1) NOT NULL" in ddl
        assert "[created] DATETIME2(3) NULL" in ddl
        assert "PRIMARY KEY ([id])" in ddl

    def test_composite_key(self):
        descriptor = TableDescriptor.from_dict({
            "table": "dbo.lines",
            "pk_columns": ["order_id", "line_no"],
            "columns": ["order_id", "line_no", "note"],
        })

        ddl = create_table_ddl(get_dialect("pyodbc"), descriptor)

        assert ddl.startswith("CREATE TABLE [dbo].[lines] (")
        assert "[order_id] NVARCHAR(MAX) NOT NULL" in ddl
        assert "PRIMARY KEY ([order_id], [line_no])" in ddl

    def test_explicit_ddl_wins(self):
        descriptor = TableDescriptor(table="t", ddl="CREATE TABLE t (x INT)")
        assert create_table_ddl(get_dialect("sqlite"), descriptor) == "CREATE TABLE t (x INT)"

    def test_descriptor_without_schema(self):
        assert create_table_ddl(get_dialect("sqlite"), TableDescriptor(table="t")) is None
