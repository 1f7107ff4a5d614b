"""Global configuration constants for bookmark sync."""

from __future__ import annotations

# Period between two scheduled mirror passes.
SYNC_INTERVAL_SECONDS: int = 5 * 60

# How often a long-running watch re-reads settings changed by other processes.
SETTINGS_POLL_SECONDS: float = 5.0

# Transport retry defaults; the backoff doubles after every failed attempt.
DEFAULT_MAX_RETRIES: int = 3
DEFAULT_INITIAL_BACKOFF_MS: int = 1000

# Upper bound for a single HTTP attempt (seconds).
DEFAULT_REQUEST_TIMEOUT: float = 30.0

# Fixed label list attached to every bookmark pushed from the local store.
IMPORT_TAGS: tuple[str, ...] = ("imported",)

# Environment variables consulted by the CLI (also read from a .env file).
SETTINGS_FILE_ENV: str = "BOOKMARK_SYNC_SETTINGS_FILE"
BOOKMARKS_FILE_ENV: str = "BOOKMARK_SYNC_BOOKMARKS_FILE"

DEFAULT_SETTINGS_FILE: str = "~/.config/bookmark-sync/settings.json"
