"""Datasets: table-named record lists loaded from files, URLs or inline content.

Leading ``@directive@`` records are lifted into Dataset attributes, and
``$path`` macros are expanded against the scenario state.
"""

# --- Models ---
from dataset.models import Dataset, DatasetResource, DatastoreDatasets

# --- Resources ---
from dataset.resource import ResourceError, decode_text, list_table_files, load_structured, load_text

# --- Macros ---
from dataset.macros import MacroExpander, maybe_expand_text
