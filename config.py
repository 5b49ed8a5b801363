"""Environment variables, connection defaults, and fixture loading constants."""

import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from DSUNIT_ENV_FILE (falls back to the working directory)
load_dotenv(os.getenv("DSUNIT_ENV_FILE", ".env"))

# --- Logging ---
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# --- Datastore drivers ---
# "pyodbc" (SQL Server through ODBC) or "sqlite" (file-backed datastore).
DEFAULT_DRIVER = os.getenv("DSUNIT_DEFAULT_DRIVER", "pyodbc")

# --- ODBC Driver ---
ODBC_DRIVER = os.getenv("ODBC_DRIVER", "ODBC Driver 18 for SQL Server")

# --- SQL Server defaults for pyodbc configs without a descriptor ---
SQL_SERVER_HOST = os.getenv("SQL_SERVER_HOST", "127.0.0.1")
SQL_SERVER_PORT = int(os.getenv("SQL_SERVER_PORT", "1433"))
SQL_SERVER_USER = os.getenv("SQL_SERVER_USER", "")
SQL_SERVER_PASSWORD = os.getenv("SQL_SERVER_PASSWORD", "")

# Seconds to wait for a connection before raising ConnectivityError.
CONNECTION_TIMEOUT = int(os.getenv("DSUNIT_CONNECTION_TIMEOUT", "30"))

# ---------------------------------------------------------------------------
# Scenario state
# ---------------------------------------------------------------------------
# Predicted autoincrement keys are published as state[SEQUENCE_STATE_KEY][table]
# so fixtures can reference them as $seq.users or ${seq.users}.
SEQUENCE_STATE_KEY = os.getenv("DSUNIT_SEQUENCE_STATE_KEY", "seq")

# ---------------------------------------------------------------------------
# Dataset resources
# ---------------------------------------------------------------------------
DATASET_EXTENSIONS = (".json", ".yaml", ".yml", ".csv", ".tsv")
RESOURCE_HTTP_TIMEOUT = int(os.getenv("DSUNIT_HTTP_TIMEOUT", "30"))
RESOURCE_ENCODING = "utf-8"

# Key tuples per SELECT when Expect reads only the rows named by a dataset.
# SQL Server caps a statement at 2,100 parameters; keep chunk * key width below it.
KEY_FILTER_CHUNK_SIZE = int(os.getenv("DSUNIT_KEY_FILTER_CHUNK_SIZE", "500"))

# --- File Paths ---
BASE_DIR = Path(os.getenv("DSUNIT_BASE_DIR", "."))
