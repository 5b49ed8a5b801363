"""Registry of named datastores: config, pooled connection, table descriptors."""

# --- Models ---
from registry.models import ColumnDescriptor, Registration, TableDescriptor

# --- Registry ---
from registry.registry import Registry, UnknownDatastoreError
