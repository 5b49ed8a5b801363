"""Expect: compare datasets against actual datastore state under a check policy."""

# --- Models ---
from expect.models import CheckPolicy, DatasetValidation, FieldMismatch, MissingRow

# --- Comparison ---
from expect.compare import ABSENT_COLUMN, compare_fields, normalize_value, values_equal

# --- Engine ---
from expect.engine import Validator, match_records
