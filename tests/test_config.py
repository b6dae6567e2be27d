from pathlib import Path

import pytest
from pydantic import ValidationError

from projectboard.config import Settings


def test_defaults() -> None:
    settings = Settings(_env_file=None)
    assert settings.db_path == Path(".projectboard") / "board.db"
    assert settings.log_level == "WARNING"
    assert settings.write_retry_attempts == 3


def test_environment_overrides(monkeypatch) -> None:
    monkeypatch.setenv("PROJECTBOARD_DB_PATH", "/data/board.db")
    monkeypatch.setenv("PROJECTBOARD_LOG_LEVEL", "debug")
    monkeypatch.setenv("PROJECTBOARD_LOAD_TIMEOUT_SECONDS", "2.5")

    settings = Settings(_env_file=None)

    assert settings.db_path == Path("/data/board.db")
    assert settings.log_level == "DEBUG"
    assert settings.load_timeout_seconds == 2.5


def test_invalid_values_are_rejected() -> None:
    with pytest.raises(ValidationError):
        Settings(_env_file=None, log_level="chatty")
    with pytest.raises(ValidationError):
        Settings(_env_file=None, write_retry_attempts=0)
    with pytest.raises(ValidationError):
        Settings(_env_file=None, load_timeout_seconds=0)
