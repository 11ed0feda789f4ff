# src/tasksync/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

- One Settings object for the whole app.
- No secrets required at import time; without TASKSYNC_API_BASE_URL the app runs offline-only.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

ENV_PREFIX = "TASKSYNC"


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


load_dotenv(override=False)


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _first_env(*names: str, default: str | None = None) -> str | None:
    for n in names:
        v = os.getenv(n)
        if v is not None and v.strip() != "":
            return v
    return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str

    # ---- Local data paths (ignored by git) ----
    data_dir: Path
    db_path: Path

    # ---- Remote authority ----
    api_base_url: str
    api_token: str | None
    request_timeout_seconds: float

    # ---- Sync tuning ----
    sync_interval_seconds: float
    probe_interval_seconds: float
    max_rejections: int
    start_online: bool

    @property
    def remote_enabled(self) -> bool:
        return bool(self.api_base_url)

    @staticmethod
    def from_env() -> "Settings":
        app_name = _first_env(_k("APP_NAME"), default="tasksync") or "tasksync"
        log_level = _env(_k("LOG_LEVEL"), "INFO").upper()

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/tasksync"))
        db_path = _env_path(_k("DB_PATH"), data_dir / "tasksync.sqlite3")

        api_base_url = (_env(_k("API_BASE_URL"), "") or "").strip().rstrip("/")
        api_token = (_first_env(_k("API_TOKEN"), default=None) or "").strip() or None
        request_timeout_seconds = _env_float(_k("REQUEST_TIMEOUT_SECONDS"), 10.0)

        sync_interval_seconds = _env_float(_k("SYNC_INTERVAL_SECONDS"), 60.0)
        probe_interval_seconds = _env_float(_k("PROBE_INTERVAL_SECONDS"), 15.0)
        max_rejections = max(1, _env_int(_k("MAX_REJECTIONS"), 5))
        start_online = _env_bool(_k("START_ONLINE"), False)

        return Settings(
            app_name=app_name,
            log_level=log_level,
            data_dir=data_dir,
            db_path=db_path,
            api_base_url=api_base_url,
            api_token=api_token,
            request_timeout_seconds=request_timeout_seconds,
            sync_interval_seconds=sync_interval_seconds,
            probe_interval_seconds=probe_interval_seconds,
            max_rejections=max_rejections,
            start_online=start_online,
        )


SETTINGS = Settings.from_env()


def get_settings() -> Settings:
    return SETTINGS
