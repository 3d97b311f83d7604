"""Application configuration loaded from environment variables."""

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All configuration is loaded from environment variables (or .env file)."""

    # --- App ---
    app_name: str = "Releaseboard"
    app_version: str = "0.1.0"
    debug: bool = False
    log_level: str = "INFO"
    environment: str = "development"  # development | staging | production

    # --- Storage ---
    storage_backend: Literal["github", "supabase"] = "github"

    # --- GitHub (file-backed store) ---
    github_api_url: str = "https://api.github.com"
    github_repo_owner: str = "ManyConnection"
    github_repo_name: str = "app-dashboard"
    github_file_path: str = "apps.json"
    github_branch: str | None = None  # None = repository default branch
    github_token: str = ""  # server-side only, never expose to client
    github_timeout_seconds: float = 15.0

    # --- Supabase (table-backed store) ---
    supabase_db_url: str = ""  # direct postgres connection string for asyncpg
    supabase_apps_table: str = "apps"

    # --- Sync ---
    sync_quiescence_seconds: float = 2.0

    # --- E2E results ---
    e2e_results_path: str = "public/apps.json"

    # --- Rate Limiting ---
    rate_limit_per_minute: int = 120

    # --- CORS ---
    cors_origins: list[str] = ["http://localhost:3000"]

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


@lru_cache
def get_settings() -> Settings:
    return Settings()
