"""Tests for job definitions and settings."""

from __future__ import annotations

from pathlib import Path

import pytest

from simmer.config import (
    DEFAULT_COMMAND,
    Job,
    OnChangeStrategy,
    Settings,
    load_settings,
    make_job,
)
from simmer.errors import ConfigError


class TestJob:
    """Tests for Job model."""

    def test_defaults(self) -> None:
        """Test the default job."""
        job = make_job()

        assert job.command == DEFAULT_COMMAND
        assert job.name == "cargo"
        assert job.parse_stdout and job.parse_stderr
        assert job.apply_gitignore

    def test_name_from_executable(self) -> None:
        """Test that the name defaults to the executable's base name."""
        assert make_job(command=("/usr/bin/make", "-k")).name == "make"
        assert make_job(name="lint", command=("ruff", "check")).name == "lint"

    def test_describe(self, tmp_path: Path) -> None:
        """Test the displayed command line and the resolved root."""
        job = make_job(command=("go", "vet", "./..."), cwd=tmp_path)

        assert job.describe() == "go vet ./..."
        assert job.root == tmp_path.resolve()

    def test_frozen(self) -> None:
        """Test that a job cannot be changed once built."""
        job = make_job()

        with pytest.raises(ValueError):
            job.name = "other"  # type: ignore[misc]

    @pytest.mark.parametrize(
        "fields",
        [
            {"command": ()},
            {"command": ("  ",)},
            {"kill_command": ()},
            {"parse_stdout": False, "parse_stderr": False},
        ],
    )
    def test_invalid(self, fields: dict[str, object]) -> None:
        """Test that invalid definitions are configuration errors."""
        with pytest.raises(ConfigError, match="Invalid job definition"):
            make_job(**fields)

    def test_is_pydantic_model(self) -> None:
        """Test validation of raw values."""
        job = Job.model_validate({"command": ["make"], "cwd": "."})

        assert job.command == ("make",)
        assert isinstance(job.cwd, Path)


class TestSettings:
    """Tests for Settings class."""

    def test_defaults(self) -> None:
        """Test default policy values."""
        settings = Settings()

        assert settings.debounce_window == pytest.approx(0.15)
        assert settings.grace_period == pytest.approx(0.5)
        assert settings.tick == pytest.approx(0.25)
        assert settings.on_change is OnChangeStrategy.KILL_THEN_RESTART
        assert settings.change_queue_size == 1024

    def test_merged(self) -> None:
        """Test parsing of raw values."""
        settings = Settings().merged(
            {
                "debounce_ms": "300",
                "grace_ms": "0",
                "tick_ms": "100",
                "on_change": "Wait_Then_Restart",
                "log_level": "DEBUG",
                "unknown": "ignored",
            }
        )

        assert settings.debounce_window == pytest.approx(0.3)
        assert settings.grace_period == 0
        assert settings.tick == pytest.approx(0.1)
        assert settings.on_change is OnChangeStrategy.WAIT_THEN_RESTART
        assert settings.log_level == "debug"

    @pytest.mark.parametrize(
        "values",
        [
            {"debounce_ms": "soon"},
            {"grace_ms": "-1"},
            {"tick_ms": "0"},
            {"on_change": "sometimes"},
        ],
    )
    def test_invalid(self, values: dict[str, str]) -> None:
        """Test that malformed values are configuration errors."""
        with pytest.raises(ConfigError):
            Settings().merged(values)


class TestLoadSettings:
    """Tests for load_settings function."""

    def test_missing_file(self, tmp_path: Path) -> None:
        """Test defaults when there is no settings file."""
        assert load_settings(tmp_path / "none.ini", environ={}) == Settings()

    def test_file_then_environment(self, tmp_path: Path) -> None:
        """Test that the environment overrides the settings file."""
        path = tmp_path / "settings.ini"
        path.write_text("[simmer]\ndebounce_ms = 400\ngrace_ms = 100\n")

        settings = load_settings(path, environ={"SIMMER_DEBOUNCE_MS": "50"})

        assert settings.debounce_window == pytest.approx(0.05)
        assert settings.grace_period == pytest.approx(0.1)

    def test_other_sections_ignored(self, tmp_path: Path) -> None:
        """Test that only the [simmer] section is read."""
        path = tmp_path / "settings.ini"
        path.write_text("[other]\ndebounce_ms = 400\n")

        assert load_settings(path, environ={}) == Settings()

    def test_unparsable_file(self, tmp_path: Path) -> None:
        """Test that a broken file is skipped."""
        path = tmp_path / "settings.ini"
        path.write_text("debounce_ms = 400\n")

        assert load_settings(path, environ={}) == Settings()

    def test_log_file_expanded(self, tmp_path: Path) -> None:
        """Test that log_file becomes a path."""
        settings = load_settings(tmp_path / "none.ini", environ={"SIMMER_LOG_FILE": "~/simmer.log"})

        assert settings.log_file == Path("~/simmer.log").expanduser()
