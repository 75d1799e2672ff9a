"""Reading and writing plugaudit.yaml, plus command-line overrides."""

import os
from pathlib import Path
from typing import Any, Optional, Union

import yaml
from pydantic import ValidationError

from plugaudit.config.schema import PlugauditConfig

DEFAULT_CONFIG_PATH = Path.home() / ".plugaudit" / "plugaudit.yaml"
CONFIG_ENV_VAR = "PLUGAUDIT_CONFIG"


class ConfigError(Exception):
    """Configuration loading or validation error."""


def resolve_config_path(path: Optional[Union[str, Path]] = None) -> Path:
    """Pick the config file: explicit path, then $PLUGAUDIT_CONFIG, then the default."""
    if path is None:
        path = os.environ.get(CONFIG_ENV_VAR) or DEFAULT_CONFIG_PATH
    return Path(path).expanduser()


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    except OSError as e:
        raise ConfigError(f"Failed to read config from {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping, got {type(data).__name__}")
    return data


def load_config(path: Optional[Union[str, Path]] = None) -> PlugauditConfig:
    """Load and validate the configuration.

    A missing file is not an error: every setting has a default.

    Args:
        path: Config file. If None, see :func:`resolve_config_path`.

    Returns:
        Validated configuration object

    Raises:
        ConfigError: If the file exists but cannot be read or validated
    """
    path = resolve_config_path(path)
    if not path.exists():
        return PlugauditConfig()

    data = _read_yaml(path)
    try:
        return PlugauditConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Configuration validation failed for {path}: {e}") from e


def save_config(config: PlugauditConfig, path: Optional[Union[str, Path]] = None) -> Path:
    """Write ``config`` as YAML and return the path written."""
    path = resolve_config_path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(config.model_dump(mode="json"), f, default_flow_style=False, sort_keys=False)
    return path


def apply_overrides(
    config: PlugauditConfig,
    vault: Optional[str] = None,
    token: Optional[str] = None,
    workers: Optional[int] = None,
    debug: bool = False,
) -> PlugauditConfig:
    """Return a copy of ``config`` with command-line values layered on top.

    Command-line values win over the file. ``None`` leaves the file value untouched.
    """
    updated = config.model_copy(deep=True)
    if vault is not None:
        updated.paths.vault = vault
    if token:
        updated.github.token = token
    if workers is not None:
        if workers < 1:
            raise ConfigError(f"--workers must be at least 1, got {workers}")
        updated.network.max_workers = workers
    if debug:
        updated.debug = True
    return updated
