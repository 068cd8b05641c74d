#!/usr/bin/env python3
"""
Configuration loading for the UA Privilege Scanner.

Values come from a YAML file merged over DEFAULT_CONFIG. The file is looked
up in this order: explicit path, ``$UA_SCANNER_CONFIG``, ``ua_scanner.yaml``
in the working directory.
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from scanners.errors import ConfigError
from utils.network import DEFAULT_PREFIX_LENGTH, validate_prefix_length

logger = logging.getLogger("UAScanner.config")

CONFIG_ENV_VAR = "UA_SCANNER_CONFIG"
DEFAULT_CONFIG_FILE = "ua_scanner.yaml"

DEFAULT_CONFIG: Dict[str, Any] = {
    "prefix_length": DEFAULT_PREFIX_LENGTH,
    "timeout": 5.0,
    "workers": 10,
    "port": 4840,
    "credentials_file": None,
    "request_delay": 0.0,
    "deadline": None,
    "output_dir": "reports",
}


def find_config_file(path=None) -> Optional[Path]:
    """Return the configuration file to use, or None when there is none."""
    if path:
        return Path(path)
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path)
    default = Path(DEFAULT_CONFIG_FILE)
    return default if default.is_file() else None


def load_config(path=None) -> Dict[str, Any]:
    """
    Load and validate the configuration.

    Args:
        path (str | Path | None): Explicit configuration file

    Returns:
        dict: DEFAULT_CONFIG updated with the file's values

    Raises:
        ConfigError: on unreadable files, unknown keys or invalid values
    """
    config = dict(DEFAULT_CONFIG)
    config_file = find_config_file(path)
    if config_file is None:
        return config

    try:
        with open(config_file, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except OSError as e:
        raise ConfigError(f"Cannot read configuration file {config_file}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in configuration file {config_file}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Configuration file {config_file} must contain a mapping")

    unknown = sorted(set(data) - set(DEFAULT_CONFIG))
    if unknown:
        raise ConfigError(f"Unknown configuration key(s) in {config_file}: {', '.join(unknown)}")

    config.update(data)
    logger.debug(f"Loaded configuration from {config_file}")
    return validate_config(config)


def validate_config(config):
    """Check value types and ranges; returns *config* unchanged."""
    try:
        validate_prefix_length(config["prefix_length"])
    except ValueError as e:
        raise ConfigError(str(e)) from e

    for key in ("timeout", "request_delay"):
        if not isinstance(config[key], (int, float)) or config[key] < 0:
            raise ConfigError(f"'{key}' must be a non-negative number")
    if not config["timeout"]:
        raise ConfigError("'timeout' must be greater than zero")

    for key in ("workers", "port"):
        if not isinstance(config[key], int) or config[key] < 1:
            raise ConfigError(f"'{key}' must be a positive integer")

    if config["deadline"] is not None and (
            not isinstance(config["deadline"], (int, float)) or config["deadline"] <= 0):
        raise ConfigError("'deadline' must be a positive number of seconds")

    return config
