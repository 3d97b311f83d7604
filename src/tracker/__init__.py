"""Release readiness tracker core.

This package holds the canonical app record, the edit buffer, the debounced
sync scheduler, and the two persistence backends.

Subpackages:
    backends/: GitHub file store and Supabase table store
    sync/    : Debounced sync scheduler and the session that owns it

Core modules:
    base   : AppRecord model, error taxonomy, PersistenceBackend ABC
    buffer : EditBuffer (visible collection + pending edits)
    filters: Status filters, search, per-filter counts
    e2e    : E2E results summary from the published apps.json
"""

from src.tracker.base import (
    AppChecks,
    AppRecord,
    ConflictError,
    PersistenceBackend,
    RecordNotFoundError,
    RecordValidationError,
    ReleaseIntent,
    TransientError,
    UnsavedChangesError,
)
from src.tracker.buffer import EditBuffer

__all__ = [
    "AppChecks",
    "AppRecord",
    "ReleaseIntent",
    "EditBuffer",
    "PersistenceBackend",
    "ConflictError",
    "RecordNotFoundError",
    "RecordValidationError",
    "TransientError",
    "UnsavedChangesError",
]
