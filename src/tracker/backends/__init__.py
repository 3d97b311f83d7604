"""Persistence backends for the release tracker.

Each backend implements PersistenceBackend and adapts its own wire shape to
the canonical AppRecord:

Available backends:
    GitHubFileBackend   : apps.json in a GitHub repository (whole-file writes)
    SupabaseTableBackend: apps table in Supabase Postgres (per-row upserts)
"""

from __future__ import annotations

from typing import Callable

from src.config import Settings, get_settings
from src.services.github import GitHubContentsClient
from src.services.supabase import Database
from src.tracker.backends.github_file import GitHubFileBackend
from src.tracker.backends.supabase_table import SupabaseTableBackend
from src.tracker.base import PersistenceBackend

__all__ = [
    "GitHubFileBackend",
    "SupabaseTableBackend",
    "create_backend",
]


def _github(settings: Settings) -> PersistenceBackend:
    return GitHubFileBackend(GitHubContentsClient.from_settings(settings))


def _supabase(settings: Settings) -> PersistenceBackend:
    return SupabaseTableBackend(
        Database.from_settings(settings), table=settings.supabase_apps_table
    )


# Registry: storage_backend setting → factory
BACKEND_REGISTRY: dict[str, Callable[[Settings], PersistenceBackend]] = {
    "github": _github,
    "supabase": _supabase,
}


def create_backend(settings: Settings | None = None) -> PersistenceBackend:
    """Build the backend selected by ``storage_backend``.

    Raises:
        KeyError: If the configured backend is not registered.
    """
    s = settings or get_settings()
    if s.storage_backend not in BACKEND_REGISTRY:
        raise KeyError(
            f"No backend registered for '{s.storage_backend}'. "
            f"Available: {list(BACKEND_REGISTRY)}"
        )
    return BACKEND_REGISTRY[s.storage_backend](s)
