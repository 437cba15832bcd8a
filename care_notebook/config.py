"""Load environment variables. Uses python-dotenv.

Callers use the accessor functions below rather than reading `os.environ`
directly, to keep environment handling in one place.
"""

import os
from datetime import timedelta
from pathlib import Path
from zoneinfo import ZoneInfo

from dotenv import load_dotenv


def _project_root() -> Path:
    return Path(__file__).resolve().parent.parent


def load_config() -> None:
    """Load .env from project root. Already-set variables take precedence."""
    load_dotenv(_project_root() / ".env", override=False)


def get_optional(key: str, default: str = "") -> str:
    """Get optional env var; return default if missing or empty."""
    load_config()
    val = os.getenv(key, "").strip()
    return val if val else default


def get_optional_int(key: str, default: int) -> int:
    """Get optional env var as int; return default if missing or invalid."""
    raw = get_optional(key)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


# --- Public config accessors ---


def store_backend() -> str:
    """Optional: "memory" (default) or "sqlite"."""
    return get_optional("CARE_STORE", "memory").lower()


def database_path() -> str:
    """Optional: SQLite file for the sqlite backend."""
    return get_optional("CARE_DB_PATH", "care_notebook.db")


def timezone() -> ZoneInfo:
    """Optional: IANA zone used for note times and date groups. Default UTC."""
    return ZoneInfo(get_optional("CARE_TIMEZONE", "UTC"))


def edit_window() -> timedelta | None:
    """Optional: minutes a note stays editable. Default 15; 0 disables."""
    minutes = get_optional_int("CARE_EDIT_WINDOW_MINUTES", 15)
    return timedelta(minutes=minutes) if minutes > 0 else None


def log_level() -> str:
    return get_optional("CARE_LOG_LEVEL", "INFO").upper()


def log_file() -> Path | None:
    """Optional: also write logs to this file."""
    val = get_optional("CARE_LOG_FILE")
    return Path(val) if val else None
