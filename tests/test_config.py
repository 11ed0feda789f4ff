# tests/test_config.py

from __future__ import annotations

from pathlib import Path

import pytest

from tasksync.config import Settings

_VARS = (
    "APP_NAME",
    "LOG_LEVEL",
    "DATA_DIR",
    "DB_PATH",
    "API_BASE_URL",
    "API_TOKEN",
    "REQUEST_TIMEOUT_SECONDS",
    "SYNC_INTERVAL_SECONDS",
    "PROBE_INTERVAL_SECONDS",
    "MAX_REJECTIONS",
    "START_ONLINE",
)


@pytest.fixture()
def clean_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    for name in _VARS:
        monkeypatch.delenv(f"TASKSYNC_{name}", raising=False)
    return monkeypatch


def test_defaults(clean_env) -> None:
    s = Settings.from_env()
    assert s.app_name == "tasksync"
    assert s.data_dir == Path(".local/tasksync")
    assert s.db_path == Path(".local/tasksync") / "tasksync.sqlite3"
    assert s.api_base_url == ""
    assert s.remote_enabled is False
    assert s.api_token is None
    assert s.sync_interval_seconds == 60.0
    assert s.probe_interval_seconds == 15.0
    assert s.max_rejections == 5
    assert s.start_online is False


def test_overrides_and_bad_values(clean_env, tmp_path: Path) -> None:
    clean_env.setenv("TASKSYNC_DATA_DIR", str(tmp_path))
    clean_env.setenv("TASKSYNC_API_BASE_URL", "https://api.example.com/v1/")
    clean_env.setenv("TASKSYNC_API_TOKEN", "  secret  ")
    clean_env.setenv("TASKSYNC_MAX_REJECTIONS", "0")
    clean_env.setenv("TASKSYNC_SYNC_INTERVAL_SECONDS", "not-a-number")
    clean_env.setenv("TASKSYNC_START_ONLINE", "yes")
    clean_env.setenv("TASKSYNC_LOG_LEVEL", "debug")

    s = Settings.from_env()
    assert s.db_path == tmp_path / "tasksync.sqlite3"
    assert s.api_base_url == "https://api.example.com/v1"
    assert s.remote_enabled
    assert s.api_token == "secret"
    assert s.max_rejections == 1
    assert s.sync_interval_seconds == 60.0
    assert s.start_online is True
    assert s.log_level == "DEBUG"
