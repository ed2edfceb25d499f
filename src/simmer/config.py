"""Job definitions and runtime settings.

This module provides:
- Job: validated, immutable description of the command to run and what to watch
- OnChangeStrategy: what a file change does to an instance that is still running
- Settings: policy values (debounce window, kill grace period, refresh tick, ...)
- load_settings(): defaults < settings.ini < environment

The settings file is INI-style:

    [simmer]
    debounce_ms = 150
    grace_ms = 500
    on_change = kill_then_restart
    log_file = /tmp/simmer.log
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from configparser import ConfigParser, Error as ConfigParserError
from dataclasses import dataclass, replace
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from simmer.errors import ConfigError

__all__ = [
    "CONFIG_DIR",
    "DEFAULT_COMMAND",
    "DEFAULT_IGNORES",
    "SETTINGS_FILE",
    "Job",
    "OnChangeStrategy",
    "Settings",
    "load_settings",
    "make_job",
]

log = logging.getLogger(__name__)

# Configuration paths
CONFIG_DIR = Path.home() / ".config" / "simmer"
SETTINGS_FILE = CONFIG_DIR / "settings.ini"

DEFAULT_COMMAND = ("cargo", "check", "--color", "always")

# Always ignored: VCS metadata, build output, editor droppings
DEFAULT_IGNORES = (
    ".git/",
    ".hg/",
    ".svn/",
    "target/",
    "build/",
    "node_modules/",
    "__pycache__/",
    "*.swp",
    "*.swx",
    "*~",
    ".#*",
    "4913",
)


# =============================================================================
# Job
# =============================================================================


class Job(BaseModel):
    """The command simmer keeps re-running.

    Supplied by the configuration layer and immutable once selected.

    Attributes:
        name: Display name.
        command: Executable followed by its arguments.
        cwd: Working directory; also the watched root.
        watch: Globs selecting watched paths, relative to cwd. Empty means all.
        ignore: Extra gitignore-style globs to ignore.
        apply_gitignore: Also honor ``<cwd>/.gitignore``.
        parse_stdout: Read and parse standard output.
        parse_stderr: Read and parse standard error.
        kill_command: Optional argv used to stop the process; the pid is appended.
        env: Extra environment variables for the command.
        backtrace_env: Variable set to "1"/"0" by the backtrace toggle.
    """

    model_config = ConfigDict(frozen=True)

    name: str = ""
    command: tuple[str, ...] = Field(default=DEFAULT_COMMAND)
    cwd: Path = Field(default_factory=Path.cwd)
    watch: tuple[str, ...] = ()
    ignore: tuple[str, ...] = ()
    apply_gitignore: bool = True
    parse_stdout: bool = True
    parse_stderr: bool = True
    kill_command: tuple[str, ...] | None = None
    env: dict[str, str] = Field(default_factory=dict)
    backtrace_env: str | None = "RUST_BACKTRACE"

    @field_validator("command")
    @classmethod
    def _command_not_empty(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        if not value or not value[0].strip():
            raise ValueError("command must name an executable")
        return value

    @field_validator("kill_command")
    @classmethod
    def _kill_command_not_empty(cls, value: tuple[str, ...] | None) -> tuple[str, ...] | None:
        if value is not None and not value:
            raise ValueError("kill_command must not be empty")
        return value

    @model_validator(mode="before")
    @classmethod
    def _default_name(cls, data: object) -> object:
        if isinstance(data, dict) and not data.get("name"):
            command = data.get("command") or DEFAULT_COMMAND
            data = {**data, "name": Path(str(command[0])).name}
        return data

    @model_validator(mode="after")
    def _check_streams(self) -> Job:
        if not (self.parse_stdout or self.parse_stderr):
            raise ValueError("at least one of stdout and stderr must be parsed")
        return self

    @property
    def root(self) -> Path:
        """Resolved watched root."""
        return self.cwd.resolve()

    def describe(self) -> str:
        """Command line as typed."""
        return " ".join(self.command)


def make_job(**fields: object) -> Job:
    """Build a Job, converting validation failures to ConfigError.

    Args:
        **fields: Job fields.

    Returns:
        Validated Job.

    Raises:
        ConfigError: If the definition is invalid.
    """
    try:
        return Job(**fields)  # type: ignore[arg-type]
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'job'}: {err['msg']}" for err in e.errors()
        )
        raise ConfigError(f"Invalid job definition: {problems}") from e


# =============================================================================
# Settings
# =============================================================================


class OnChangeStrategy(str, Enum):
    """What a file change does while an instance is running."""

    KILL_THEN_RESTART = "kill_then_restart"
    WAIT_THEN_RESTART = "wait_then_restart"


@dataclass(frozen=True)
class Settings:
    """Policy values.

    Attributes:
        debounce_window: Quiet period (seconds) before a burst of changes triggers.
        grace_period: Seconds between SIGTERM and SIGKILL when cancelling.
        tick: Renderer refresh period in seconds.
        on_change: Strategy for changes arriving during a run.
        change_queue_size: Capacity of the watcher channel before it overflows.
        log_file: Where log records go in watch mode.
        log_level: Log level name.
    """

    debounce_window: float = 0.15
    grace_period: float = 0.5
    tick: float = 0.25
    on_change: OnChangeStrategy = OnChangeStrategy.KILL_THEN_RESTART
    change_queue_size: int = 1024
    log_file: Path | None = None
    log_level: str = "info"

    def merged(self, values: Mapping[str, str]) -> Settings:
        """Return a copy updated from raw string values.

        Recognized keys: debounce_ms, grace_ms, tick_ms, on_change,
        log_file, log_level. Unknown keys are ignored.

        Raises:
            ConfigError: If a value cannot be parsed.
        """
        changes: dict[str, object] = {}
        if "debounce_ms" in values:
            changes["debounce_window"] = _millis(values["debounce_ms"], "debounce_ms")
        if "grace_ms" in values:
            changes["grace_period"] = _millis(values["grace_ms"], "grace_ms")
        if "tick_ms" in values:
            tick = _millis(values["tick_ms"], "tick_ms")
            if tick <= 0:
                raise ConfigError("tick_ms must be positive")
            changes["tick"] = tick
        if "on_change" in values:
            try:
                changes["on_change"] = OnChangeStrategy(values["on_change"].strip().lower())
            except ValueError as e:
                choices = ", ".join(s.value for s in OnChangeStrategy)
                raise ConfigError(
                    f"on_change must be one of {choices}, got {values['on_change']!r}"
                ) from e
        if values.get("log_file"):
            changes["log_file"] = Path(values["log_file"]).expanduser()
        if values.get("log_level"):
            changes["log_level"] = values["log_level"].strip().lower()
        return replace(self, **changes)  # type: ignore[arg-type]


def _millis(raw: str, key: str) -> float:
    try:
        value = float(raw)
    except ValueError as e:
        raise ConfigError(f"{key} must be a number of milliseconds, got {raw!r}") from e
    if value < 0:
        raise ConfigError(f"{key} must not be negative")
    return value / 1000.0


ENV_PREFIX = "SIMMER_"
_ENV_KEYS = ("debounce_ms", "grace_ms", "tick_ms", "on_change", "log_file", "log_level")


def _read_settings_file(path: Path) -> dict[str, str]:
    if not path.exists():
        return {}
    parser = ConfigParser()
    try:
        parser.read(path, encoding="utf-8")
    except (OSError, ConfigParserError) as e:
        log.warning(f"Failed to load settings from {path}: {e}")
        return {}
    if not parser.has_section("simmer"):
        return {}
    return dict(parser.items("simmer"))


def load_settings(
    path: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> Settings:
    """Load settings: defaults, then the settings file, then the environment.

    Args:
        path: Settings file. Defaults to ~/.config/simmer/settings.ini
        environ: Environment mapping. Defaults to os.environ.

    Returns:
        Settings instance.

    Raises:
        ConfigError: If a value is malformed.
    """
    environ = os.environ if environ is None else environ
    settings = Settings().merged(_read_settings_file(path or SETTINGS_FILE))

    from_env = {
        key: environ[ENV_PREFIX + key.upper()]
        for key in _ENV_KEYS
        if environ.get(ENV_PREFIX + key.upper())
    }
    return settings.merged(from_env)
