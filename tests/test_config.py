"""Tests for environment-driven settings."""

from __future__ import annotations

from pathlib import Path

import pytest

from payline.config import Settings, load_dotenv_file, load_settings
from payline.errors import ConfigurationError


class TestLoadSettings:
    def test_defaults(self):
        settings = load_settings(env={})
        assert settings == Settings()
        assert settings.db_path == Path("./data/payline.duckdb")
        assert settings.max_workers == 4
        assert settings.min_match_confidence == 0.5

    def test_overrides(self, tmp_path):
        patterns = tmp_path / "patterns.json"
        patterns.write_text("[]")
        settings = load_settings(env={
            "PL_DB_PATH": str(tmp_path / "x.duckdb"),
            "PL_MAX_WORKERS": "8",
            "PL_MIN_MATCH_CONFIDENCE": "0.7",
            "PL_CURATED_PATTERNS_FILE": str(patterns),
            "PL_LOG_LEVEL": "debug",
        })
        assert settings.max_workers == 8
        assert settings.min_match_confidence == 0.7
        assert settings.curated_patterns_file == patterns
        assert settings.log_level == "DEBUG"
        assert settings.to_dict()["db_path"] == str(tmp_path / "x.duckdb")

    @pytest.mark.parametrize(
        "env, field",
        [
            ({"PL_MAX_WORKERS": "many"}, "PL_MAX_WORKERS"),
            ({"PL_MAX_WORKERS": "0"}, "PL_MAX_WORKERS"),
            ({"PL_MIN_MATCH_CONFIDENCE": "1.5"}, "PL_MIN_MATCH_CONFIDENCE"),
            ({"PL_LOG_LEVEL": "LOUD"}, "PL_LOG_LEVEL"),
            ({"PL_CURATED_PATTERNS_FILE": "/nonexistent/patterns.json"}, "PL_CURATED_PATTERNS_FILE"),
        ],
    )
    def test_invalid_values_name_the_variable(self, env, field):
        with pytest.raises(ConfigurationError) as exc:
            load_settings(env=env)
        assert exc.value.config_field == field
        assert str(exc.value).startswith(f"[{field}]")


class TestDotenv:
    def test_existing_environment_wins(self, tmp_path, monkeypatch):
        env_file = tmp_path / ".env"
        env_file.write_text('# local\nPL_MAX_WORKERS="6"\nPL_SAMPLE_PER_TYPE=10\n')
        monkeypatch.setenv("PL_SAMPLE_PER_TYPE", "12")
        # recorded for undo; the loader writes os.environ directly
        monkeypatch.setenv("PL_MAX_WORKERS", "1")
        monkeypatch.delenv("PL_MAX_WORKERS")

        load_dotenv_file(env_file)
        settings = load_settings(env_file=None)
        assert settings.max_workers == 6
        assert settings.sample_per_type == 12

    def test_missing_file_is_ignored(self, tmp_path):
        load_dotenv_file(tmp_path / "absent.env")
