"""
Unit tests for Settings.

Run: pytest tests/unit/test_config.py -v
"""

import pytest
from pydantic import ValidationError

from memocards.config import Settings, get_settings


class TestSettings:
    """Environment-driven configuration."""

    def test_defaults(self):
        settings = Settings(_env_file=None)

        assert settings.database_url == "sqlite:///~/.memocards/cards.db"
        assert settings.log_level == "WARNING"
        assert settings.log_file is None
        assert settings.session_limit == 50
        assert settings.initial_ease == 2.5
        assert settings.maximum_interval_days == 3650

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("MEMOCARDS_DATABASE_URL", "sqlite://")
        monkeypatch.setenv("MEMOCARDS_SESSION_LIMIT", "12")
        monkeypatch.setenv("MEMOCARDS_EASY_BONUS", "1.5")

        settings = Settings(_env_file=None)

        assert settings.database_url == "sqlite://"
        assert settings.session_limit == 12
        assert settings.easy_bonus == 1.5

    def test_env_file(self, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text("MEMOCARDS_LOG_LEVEL=DEBUG\nUNRELATED=1\n")

        assert Settings(_env_file=env_file).log_level == "DEBUG"

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"minimum_ease": 1.2},
            {"initial_ease": 1.4, "minimum_ease": 1.5},
            {"initial_ease": 3.2},
            {"relearning_interval_days": 3},
            {"first_interval_days": 10, "maximum_interval_days": 5, "relearning_interval_days": 1},
            {"session_limit": 0},
            {"log_level": "LOUD"},
        ],
    )
    def test_rejects_invalid(self, kwargs):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, **kwargs)

    def test_get_settings_cached(self):
        assert get_settings() is get_settings()
