"""Prepare: reconcile datasets into a datastore as inserts and key-matched updates."""

# --- Models ---
from prepare.models import METHOD_LOAD, METHOD_PERSIST, ModificationInfo

# --- Engine ---
from prepare.engine import ReconciliationError, Reconciler
