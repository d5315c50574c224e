"""Configuration management for cccontext."""

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import cast

import yaml
from pydantic import BaseModel, ValidationError
from rich.console import Console
from rich.table import Table

from cccontext.xdg_paths import get_config_file_path, get_default_projects_dir

ENV_PROJECTS_DIR = "CLAUDE_PROJECTS_DIR"
ENV_DEBUG = "CCCONTEXT_DEBUG"
ENV_WATCHER_BACKEND = "CCCONTEXT_WATCHER_BACKEND"

_TRUTHY = ("1", "true", "yes", "on")
_FALSY = ("0", "false", "no", "off", "")


class WatcherBackend(StrEnum):
    """Filesystem notification backends."""

    WATCHDOG = "watchdog"  # native OS notifications
    POLLING = "polling"  # periodic stat snapshots


class WatcherConfig(BaseModel):
    """Settings for the session watcher."""

    backend: WatcherBackend = WatcherBackend.WATCHDOG
    poll_interval: float = 0.5  # seconds between event pumps
    file_debounce: float = 0.3  # seconds a tailed file must be quiet
    compact_size_delta: int = 5000  # bytes; larger jumps force a reparse
    compact_quiet_period: float = 60.0  # seconds; larger mtime jumps force a reparse


class AutoCompactConfig(BaseModel):
    """Heuristic constants for the auto-compact predictor."""

    base_limit: int = 200_000
    trigger_fraction: float = 0.92
    warning_factor: float = 0.8
    error_factor: float = 0.8
    base_overhead: int = 25_000
    per_message_overhead: int = 15
    per_message_cap: int = 5_000
    cache_overhead_factor: float = 0.015
    max_overhead_ratio: float = 0.2


class SessionsConfig(BaseModel):
    """Settings for the sessions manager and list view."""

    batch_delay: float = 0.1  # seconds of quiet before a batch reload
    max_workers: int = 8
    limit: int = 10
    refresh_interval: float = 1.0


@dataclass
class ConfigWarning:
    """A config validation warning."""

    file: str
    field_name: str
    message: str
    value: object = field(default=None, repr=False)


class Config(BaseModel):
    """Configuration settings for cccontext."""

    projects_dir: Path | None = None
    debug: bool = False
    context_window_override: int | None = None

    watcher: WatcherConfig = WatcherConfig()
    auto_compact: AutoCompactConfig = AutoCompactConfig()
    sessions: SessionsConfig = SessionsConfig()

    @property
    def resolved_projects_dir(self) -> Path:
        """The monitored root directory, with ~ expanded."""
        if self.projects_dir is None:
            return get_default_projects_dir()
        return self.projects_dir.expanduser().resolve()


def _read_config_file(path: Path) -> tuple[dict[str, object], list[ConfigWarning]]:
    """Read the YAML config file. A missing or empty file is an empty config."""
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return {}, []
    except (OSError, yaml.YAMLError) as e:
        return {}, [ConfigWarning(file=str(path), field_name="(file)", message=f"Cannot load config: {e}")]

    if raw is None:
        return {}, []
    if not isinstance(raw, dict):
        warning = ConfigWarning(
            file=str(path),
            field_name="(file)",
            message="Expected a mapping of settings",
            value=type(raw).__name__,
        )
        return {}, [warning]
    return cast(dict[str, object], raw), []


def _env_overrides(env: Mapping[str, str]) -> tuple[dict[str, object], list[ConfigWarning]]:
    """Translate environment variables into config overrides.

    Args:
        env: Environment mapping to read.

    Returns:
        Tuple of (override dict, list of warnings for unusable values).
    """
    overrides: dict[str, object] = {}
    warnings: list[ConfigWarning] = []

    projects_dir = env.get(ENV_PROJECTS_DIR)
    if projects_dir:
        overrides["projects_dir"] = projects_dir

    debug = env.get(ENV_DEBUG)
    if debug is not None:
        if debug.lower() in _TRUTHY:
            overrides["debug"] = True
        elif debug.lower() in _FALSY:
            overrides["debug"] = False
        else:
            warnings.append(
                ConfigWarning(file="environment", field_name=ENV_DEBUG, message="Expected a boolean", value=debug)
            )

    backend = env.get(ENV_WATCHER_BACKEND)
    if backend:
        valid = {b.value for b in WatcherBackend}
        if backend.lower() in valid:
            overrides["watcher"] = {"backend": backend.lower()}
        else:
            warnings.append(
                ConfigWarning(
                    file="environment",
                    field_name=ENV_WATCHER_BACKEND,
                    message=f"Expected one of: {', '.join(sorted(valid))}",
                    value=backend,
                )
            )

    return overrides, warnings


def _apply_overrides(file_config: dict[str, object], overrides: dict[str, object]) -> dict[str, object]:
    """Layer environment overrides on top of the file settings.

    An override for a settings section (such as watcher) replaces only the
    keys it names; any other override replaces the file's value outright.
    """
    merged = dict(file_config)
    for key, value in overrides.items():
        section = merged.get(key)
        if isinstance(value, dict) and isinstance(section, dict):
            merged[key] = {**section, **value}
        else:
            merged[key] = value
    return merged


def load_config(
    config_path: Path | None = None,
    env: Mapping[str, str] | None = None,
    strict: bool = False,
) -> tuple[Config, list[ConfigWarning]]:
    """Load configuration from YAML, then apply environment overrides.

    Environment variables are read exactly once, here. Nothing else in the
    package consults the environment.

    Args:
        config_path: Optional path to config file. Uses default if None.
        env: Environment mapping. Uses os.environ if None.
        strict: If True, do not attempt partial recovery on validation errors.

    Returns:
        Tuple of (loaded Config, list of ConfigWarnings).
    """
    warnings: list[ConfigWarning] = []

    file_config, file_warnings = _read_config_file(config_path or get_config_file_path())
    warnings.extend(file_warnings)

    env_config, env_warnings = _env_overrides(os.environ if env is None else env)
    warnings.extend(env_warnings)

    merged = _apply_overrides(file_config, env_config)

    try:
        return Config.model_validate(merged), warnings
    except ValidationError as e:
        for error in e.errors():
            field_path = ".".join(str(loc) for loc in error["loc"])
            warnings.append(
                ConfigWarning(
                    file="merged config",
                    field_name=field_path,
                    message=error["msg"],
                    value=error.get("input"),
                )
            )

        if strict:
            return Config(), warnings

        # Partial recovery: remove bad top-level keys and retry
        for error in e.errors():
            if error["loc"]:
                merged.pop(str(error["loc"][0]), None)
        try:
            return Config.model_validate(merged), warnings
        except ValidationError:
            pass

        return Config(), warnings


def display_config_warnings(warnings: list[ConfigWarning], console: Console) -> None:
    """Print config warnings as a table, one row per problem."""
    if not warnings:
        return

    table = Table(title="Config Warnings", title_style="bold yellow", border_style="yellow")
    table.add_column("Source", style="dim")
    table.add_column("Setting", style="bold")
    table.add_column("Problem", style="yellow")
    for warning in warnings:
        problem = warning.message
        if warning.value is not None:
            problem += f" (got {warning.value!r})"
        table.add_row(warning.file, warning.field_name, problem)

    console.print(table)


def save_config(config: Config, config_path: Path | None = None) -> Path:
    """Save configuration to YAML file.

    Args:
        config: The configuration to save.
        config_path: Optional path to config file. Uses default if None.

    Returns:
        The path written to.
    """
    path = config_path or get_config_file_path()
    path.parent.mkdir(parents=True, exist_ok=True)

    data = config.model_dump(mode="json")

    with path.open("w", encoding="utf-8") as f:
        yaml.dump(data, f, default_flow_style=False, sort_keys=False)
    return path
