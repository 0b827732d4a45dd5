"""Configuration loading for ykgpg.

Values are resolved per field in this order: command-line flags, ``YKGPG_*``
environment variables, the YAML config file, then built-in defaults.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigError
from .types import Result

DEFAULT_KEYSERVER = "hkps://keys.openpgp.org"
DEFAULT_BACKUP_DIR = str(Path.home() / ".gnupg" / "backups")
CONFIG_DIR = Path.home() / ".config" / "ykgpg"
CONFIG_FILE_NAME = "config.yaml"
ENV_PREFIX = "YKGPG_"

REQUIRED_FIELDS = (
    "primary_key_id",
    "primary_key_fingerprint",
    "user_name",
    "user_email",
)

_TRUE_STRINGS = ("1", "true", "yes", "y", "on")


@dataclass
class Config:
    primary_key_id: str = ""
    primary_key_fingerprint: str = ""
    user_name: str = ""
    user_email: str = ""
    keyserver: str = DEFAULT_KEYSERVER
    master_key_path: str = ""
    backup_dir: str = DEFAULT_BACKUP_DIR
    no_color: bool = False
    # Where each value came from: "flag", "env", "file" or "default"
    sources: dict[str, str] = field(default_factory=dict, compare=False, repr=False)
    config_file: Path | None = field(default=None, compare=False, repr=False)

    @property
    def backup_path(self) -> Path:
        return Path(self.backup_dir).expanduser()

    @property
    def master_key_file(self) -> Path | None:
        return Path(self.master_key_path).expanduser() if self.master_key_path else None

    def validate(self) -> Result[Config]:
        for name in REQUIRED_FIELDS:
            if not getattr(self, name):
                return Result.err(
                    ConfigError(f"{name} is required", config_path=self.config_file)
                )
        return Result.ok(self)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "primary_key_id": self.primary_key_id,
            "primary_key_fingerprint": self.primary_key_fingerprint,
            "user_name": self.user_name,
            "user_email": self.user_email,
            "keyserver": self.keyserver,
            "backup_dir": self.backup_dir,
            "no_color": self.no_color,
        }
        if self.master_key_path:
            data["master_key_path"] = self.master_key_path
        return data


CONFIG_KEYS = tuple(f.name for f in fields(Config) if f.name not in ("sources", "config_file"))


def default_config_paths() -> list[Path]:
    return [CONFIG_DIR / CONFIG_FILE_NAME, Path.cwd() / CONFIG_FILE_NAME]


def find_config_file(search_paths: list[Path] | None = None) -> Path | None:
    for candidate in search_paths if search_paths is not None else default_config_paths():
        if candidate.is_file():
            return candidate
    return None


def _coerce(name: str, value: Any) -> Any:
    if name == "no_color":
        if isinstance(value, str):
            return value.strip().lower() in _TRUE_STRINGS
        return bool(value)
    return "" if value is None else str(value)


def read_config_file(path: Path) -> Result[dict[str, Any]]:
    try:
        loaded = yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as e:
        return Result.err(
            ConfigError(f"failed to read config file: {e}", config_path=path, cause=e)
        )
    except yaml.YAMLError as e:
        return Result.err(
            ConfigError(f"failed to parse config file: {e}", config_path=path, cause=e)
        )

    if loaded is None:
        return Result.ok({})
    if not isinstance(loaded, dict):
        return Result.err(
            ConfigError("config file must contain a mapping of settings", config_path=path)
        )
    return Result.ok({k: v for k, v in loaded.items() if k in CONFIG_KEYS})


def load_config(
    config_file: Path | None = None,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, Any] | None = None,
    search_paths: list[Path] | None = None,
) -> Result[Config]:
    """Resolve the effective configuration.

    A missing config file is not an error; an unreadable or malformed one is.
    ``overrides`` holds command-line values, where None means "not given".
    """
    env = os.environ if env is None else env
    overrides = overrides or {}

    path = config_file.expanduser() if config_file else find_config_file(search_paths)
    file_values: dict[str, Any] = {}
    if path is not None:
        if not path.is_file():
            return Result.err(ConfigError(f"config file not found: {path}", config_path=path))
        read = read_config_file(path)
        if read.is_err():
            return Result.err(read.unwrap_err())
        file_values = read.unwrap()

    cfg = Config(config_file=path)
    for name in CONFIG_KEYS:
        env_name = ENV_PREFIX + name.upper()
        if overrides.get(name) not in (None, ""):
            value, source = overrides[name], "flag"
        elif env.get(env_name):
            value, source = env[env_name], "env"
        elif name in file_values and file_values[name] is not None:
            value, source = file_values[name], "file"
        else:
            cfg.sources[name] = "default"
            continue
        setattr(cfg, name, _coerce(name, value))
        cfg.sources[name] = source

    return Result.ok(cfg)


def write_config(config: Config, path: Path | None = None) -> Result[Path]:
    target = path or CONFIG_DIR / CONFIG_FILE_NAME
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(
            yaml.safe_dump(config.to_dict(), default_flow_style=False, sort_keys=False),
            encoding="utf-8",
        )
    except OSError as e:
        return Result.err(
            ConfigError(f"failed to write config file: {e}", config_path=target, cause=e)
        )
    return Result.ok(target)
