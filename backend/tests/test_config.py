import sys
from pathlib import Path

import pytest
from pydantic import ValidationError

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

import config  # noqa: E402


def test_relative_sqlite_path_resolves_against_project_root(tmp_path, monkeypatch):
    project_root = tmp_path / "project"
    monkeypatch.setattr(config, "_PROJECT_ROOT", project_root.resolve())

    normalized = config.Settings._normalize_database_url("sqlite+aiosqlite:///./data/leaderboard.db")

    expected = (project_root / "data" / "leaderboard.db").resolve()
    assert normalized == f"sqlite+aiosqlite:///{expected}"


def test_absolute_and_memory_urls_are_kept(tmp_path):
    absolute = f"sqlite+aiosqlite:///{tmp_path.resolve() / 'x.db'}"
    assert config.Settings._normalize_database_url(absolute) == absolute
    assert config.Settings._normalize_database_url("sqlite+aiosqlite:///:memory:") == "sqlite+aiosqlite:///:memory:"
    assert config.Settings._normalize_database_url("postgresql+asyncpg://db/x") == "postgresql+asyncpg://db/x"


def test_env_overrides_and_log_level_normalization(monkeypatch):
    monkeypatch.setenv("LEADERBOARD_TOP_N", "25")
    monkeypatch.setenv("WS_SEND_TIMEOUT_SECONDS", "0.5")
    monkeypatch.setenv("LOG_LEVEL", "debug")

    settings = config.Settings()

    assert settings.LEADERBOARD_TOP_N == 25
    assert settings.WS_SEND_TIMEOUT_SECONDS == 0.5
    assert settings.LOG_LEVEL == "DEBUG"


def test_unknown_log_level_falls_back_to_info(monkeypatch):
    monkeypatch.setenv("LOG_LEVEL", "chatty")
    assert config.Settings().LOG_LEVEL == "INFO"


def test_non_positive_top_n_rejected(monkeypatch):
    monkeypatch.setenv("LEADERBOARD_TOP_N", "0")
    with pytest.raises(ValidationError):
        config.Settings()
