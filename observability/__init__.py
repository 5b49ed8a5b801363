"""Request tracking and context-aware logging."""

# --- Events ---
from observability.event_tracker import RequestEvent, RequestTracker

# --- Logging ---
from observability.log_handler import LogContextFilter, clear_context, set_context, setup_logging
