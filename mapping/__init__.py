"""Mappings: named queries addressed like tables (virtual tables)."""

from mapping.virtual_tables import (
    Mapping,
    MappingError,
    MappingState,
    TableTarget,
    VirtualTableResolver,
    derive_table,
)
