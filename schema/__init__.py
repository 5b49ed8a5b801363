"""Schema setup: DDL from table descriptors, SQL scripts, and recreate."""

# --- DDL ---
from schema.table_creator import column_sql_type, create_table_ddl

# --- Scripts ---
from schema.scripts import run_statements, split_sql_script

# --- Recreate ---
from schema.recreate import RecreateError, recreate
