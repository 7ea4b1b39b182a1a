"""Configuration loader and validator."""

import copy
import logging
from pathlib import Path
from typing import Any, Optional

import yaml

from tourneyflow.formats import parse_best_of
from tourneyflow.paths import get_default_db_path
from tourneyflow.standings import REMAINDER_POLICIES

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

DEFAULT_CONFIG: dict[str, Any] = {
    "database": {"path": None},  # None -> <data dir>/tourneyflow.sqlite
    "random_seed": None,
    "group_best_of": "Bo3",
    "bracket_best_of": "Bo3",
    "advancement": {"remainder_policy": "drop"},
    "notifications": {"max_workers": 4},
    "logging": {"level": "INFO"},
}


class ConfigError(Exception):
    """Configuration validation error."""

    pass


def load_config(path: str) -> dict[str, Any]:
    """Load configuration from YAML file.

    Args:
        path: Path to YAML config file

    Returns:
        Dictionary with configuration values

    Raises:
        ConfigError: If file not found or invalid YAML
    """
    config_file = Path(path)

    if not config_file.exists():
        raise ConfigError(f"Config file not found: {path}")

    try:
        with open(config_file, "r", encoding="utf-8") as f:
            config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in config file: {e}")

    if config is None:
        raise ConfigError("Config file is empty")
    if not isinstance(config, dict):
        raise ConfigError("Config file must contain a mapping at the top level")

    return config


def _section(config: dict[str, Any], name: str) -> dict[str, Any]:
    section = config.get(name, {})
    if section is None:
        return {}
    if not isinstance(section, dict):
        raise ConfigError(f"{name} must be a dictionary")
    return section


def validate_config(config: dict[str, Any]) -> dict[str, Any]:
    """Validate configuration values.

    Missing keys take their value from DEFAULT_CONFIG.

    Args:
        config: Configuration dictionary

    Returns:
        Validated and normalized configuration

    Raises:
        ConfigError: If validation fails
    """
    validated = copy.deepcopy(DEFAULT_CONFIG)

    # Database path (optional)
    db_path = _section(config, "database").get("path")
    if db_path is not None and not isinstance(db_path, str):
        raise ConfigError("database.path must be a string")
    validated["database"]["path"] = db_path or str(get_default_db_path())

    # Random seed (optional, None = different draw every run)
    seed = config.get("random_seed")
    if seed is not None and (not isinstance(seed, int) or isinstance(seed, bool)):
        raise ConfigError("random_seed must be an integer")
    validated["random_seed"] = seed

    # Match formats per stage
    for key in ("group_best_of", "bracket_best_of"):
        value = config.get(key, DEFAULT_CONFIG[key])
        try:
            validated[key] = parse_best_of(value).value
        except ValueError as e:
            raise ConfigError(f"{key}: {e}")

    # Teams left over when the bracket size is not a multiple of the group count
    policy = _section(config, "advancement").get("remainder_policy", "drop")
    if policy not in REMAINDER_POLICIES:
        raise ConfigError(
            f"advancement.remainder_policy must be one of {', '.join(REMAINDER_POLICIES)}, got '{policy}'"
        )
    validated["advancement"]["remainder_policy"] = policy

    workers = _section(config, "notifications").get("max_workers", 4)
    if not isinstance(workers, int) or isinstance(workers, bool) or workers < 1:
        raise ConfigError("notifications.max_workers must be a positive integer")
    validated["notifications"]["max_workers"] = workers

    level = str(_section(config, "logging").get("level", "INFO")).upper()
    if level not in LOG_LEVELS:
        raise ConfigError(f"logging.level must be one of {', '.join(LOG_LEVELS)}, got '{level}'")
    validated["logging"]["level"] = level

    return validated


def load_and_validate_config(path: Optional[str] = None) -> dict[str, Any]:
    """Load and validate configuration in one step.

    Args:
        path: Path to YAML config file; None returns the validated defaults

    Returns:
        Validated configuration dictionary

    Raises:
        ConfigError: If loading or validation fails
    """
    if path is None:
        return validate_config({})
    config = load_config(path)
    return validate_config(config)


def configure_logging(config: dict[str, Any]) -> None:
    """Set up root logging from the validated ``logging`` section."""
    logging.basicConfig(
        level=getattr(logging, config["logging"]["level"]),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
