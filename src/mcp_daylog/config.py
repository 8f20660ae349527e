"""Configuration loading for MCP Daylog.

Supports three tiers:
1. Simple config via .toml or .json - most users
2. Python config via .py - power users with lifecycle hooks
3. Full override via subclassing - rare cases
"""

from __future__ import annotations

import importlib.util
import json
import sys
from dataclasses import dataclass, field
from datetime import datetime, tzinfo
from pathlib import Path
from typing import Any, Callable, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

# Python 3.11+ has tomllib in stdlib; older interpreters use tomli
if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib


# Hook names the engine calls, with the arguments they receive
KNOWN_HOOKS = {
    "plan_completed": "(engine, date, result) after a plan is completed",
    "plan_replanned": "(engine, date, result) after a plan is rescheduled",
    "plans_swept": "(engine, date, document) after a sweep changed a document",
}


class ConfigError(ValueError):
    """Raised when a config file has invalid values."""
    pass


@dataclass
class DaylogConfig:
    """Configuration for a daylog project."""

    # Project identification
    project_name: str = "unnamed"
    project_root: Path = field(default_factory=Path.cwd)

    # Directory holding one JSON document per date (relative to project_root)
    journal_dir: str = "data/journal"

    # IANA timezone for the engine clock; None means local time
    timezone: Optional[str] = None

    # Seconds to wait for a document lock
    lock_timeout: float = 10.0

    # Hooks (populated from Python config)
    hooks: dict[str, Callable] = field(default_factory=dict)

    def get_journal_path(self) -> Path:
        return self.project_root / self.journal_dir

    def get_tzinfo(self) -> Optional[tzinfo]:
        if self.timezone is None:
            return None
        try:
            return ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError):
            raise ConfigError(f"Unknown timezone: {self.timezone!r}") from None

    def now(self) -> datetime:
        """Current time in the configured timezone (naive local time if unset)."""
        tz = self.get_tzinfo()
        if tz is None:
            return datetime.now()
        return datetime.now(tz)


def load_toml_config(path: Path) -> dict[str, Any]:
    """Load configuration from TOML file."""
    with open(path, "rb") as f:
        return tomllib.load(f)


def load_json_config(path: Path) -> dict[str, Any]:
    """Load configuration from JSON file."""
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def load_python_config(path: Path) -> tuple[dict[str, Any], dict[str, Callable]]:
    """Load configuration from Python file.

    Returns:
        Tuple of (config_dict, hooks_dict)

    Convention:
        - CONFIG dict or config dict for static configuration
        - Functions named hook_* become hooks
    """
    spec = importlib.util.spec_from_file_location("daylog_config", path)
    if spec is None or spec.loader is None:
        raise ImportError(f"Cannot load Python config from {path}")

    module = importlib.util.module_from_spec(spec)
    sys.modules["daylog_config"] = module
    spec.loader.exec_module(module)

    config_dict = {}
    if hasattr(module, "CONFIG"):
        config_dict = module.CONFIG
    elif hasattr(module, "config"):
        config_dict = module.config

    hooks = {}
    for name in dir(module):
        if name.startswith("hook_"):
            hooks[name[5:]] = getattr(module, name)

    return config_dict, hooks


def dict_to_config(data: dict[str, Any], project_root: Path) -> DaylogConfig:
    """Convert dictionary to DaylogConfig."""
    config = DaylogConfig(project_root=project_root)

    if "project" in data:
        proj = data["project"]
        if "name" in proj:
            config.project_name = proj["name"]

    if "directories" in data:
        dirs = data["directories"]
        if "journal" in dirs:
            config.journal_dir = dirs["journal"]

    if "clock" in data:
        clock = data["clock"]
        if "timezone" in clock:
            config.timezone = clock["timezone"]
            config.get_tzinfo()

    if "locking" in data:
        locking = data["locking"]
        if "timeout" in locking:
            timeout = locking["timeout"]
            if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0:
                raise ConfigError(f"locking.timeout must be a positive number, got {timeout!r}")
            config.lock_timeout = float(timeout)

    return config


def find_config_file(project_root: Path) -> Optional[Path]:
    """Find configuration file in project root.

    Search order:
    1. daylog_config.py (most flexible)
    2. daylog_config.toml
    3. daylog_config.json
    4. .daylog.toml
    5. .daylog.json
    """
    candidates = [
        "daylog_config.py",
        "daylog_config.toml",
        "daylog_config.json",
        ".daylog.toml",
        ".daylog.json",
    ]

    for name in candidates:
        path = project_root / name
        if path.exists():
            return path

    return None


def load_config(project_root: Path, config_path: Optional[Path] = None) -> DaylogConfig:
    """Load project configuration.

    Args:
        project_root: Root directory of the project
        config_path: Optional explicit path to config file

    Returns:
        DaylogConfig instance
    """
    if config_path is None:
        config_path = find_config_file(project_root)

    if config_path is None:
        return DaylogConfig(project_root=project_root)

    suffix = config_path.suffix.lower()

    if suffix == ".py":
        config_dict, hooks = load_python_config(config_path)
        config = dict_to_config(config_dict, project_root)
        unknown = sorted(set(hooks) - set(KNOWN_HOOKS))
        if unknown:
            raise ConfigError(f"Unknown hooks: {unknown}. Known hooks: {sorted(KNOWN_HOOKS)}")
        config.hooks = hooks
        return config

    elif suffix == ".toml":
        return dict_to_config(load_toml_config(config_path), project_root)

    elif suffix == ".json":
        return dict_to_config(load_json_config(config_path), project_root)

    else:
        raise ValueError(f"Unsupported config file type: {suffix}")
