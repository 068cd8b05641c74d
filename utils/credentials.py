#!/usr/bin/env python3
"""
Common default credentials tried against OPC UA endpoints.

The built-in list can be replaced with a file: YAML (a list of
``{username, password}`` mappings) or plain text (``username:password`` per
line, ``#`` starts a comment).
"""

from pathlib import Path
from typing import List

import yaml

from scanners.errors import ConfigError
from scanners.ledger import Credential

# Order matters: the probe stops at the first accepted pair
COMMON_CREDENTIALS = [
    Credential("admin", "admin"),
    Credential("admin", "password"),
    Credential("admin", "1234"),
    Credential("user", "user"),
    Credential("user", "password"),
    Credential("opcua", "opcua"),
    Credential("operator", "operator"),
    Credential("guest", "guest"),
    Credential("root", "root"),
    Credential("administrator", "administrator"),
]


def load_credentials(path=None) -> List[Credential]:
    """
    Load an ordered credential list.

    Args:
        path (str | Path | None): Credential file; None returns the built-in list

    Returns:
        list: Credential tuples in file order

    Raises:
        ConfigError: if the file is missing or malformed
    """
    if path is None:
        return list(COMMON_CREDENTIALS)

    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read credential file {path}: {e}") from e

    if path.suffix.lower() in (".yaml", ".yml"):
        return _parse_yaml(text, path)
    return _parse_text(text, path)


def _parse_yaml(text, path):
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in credential file {path}: {e}") from e

    if data is None:
        return []
    if isinstance(data, dict):
        data = data.get("credentials", [])
    if not isinstance(data, list):
        raise ConfigError(f"Credential file {path} must contain a list")

    credentials = []
    for index, entry in enumerate(data, start=1):
        if not isinstance(entry, dict) or "username" not in entry:
            raise ConfigError(f"Credential #{index} in {path} needs a 'username' key")
        credentials.append(Credential(str(entry["username"]), str(entry.get("password") or "")))
    return credentials


def _parse_text(text, path):
    credentials = []
    for lineno, line in enumerate(text.splitlines(), start=1):
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        if ":" not in line:
            raise ConfigError(f"{path}:{lineno}: expected 'username:password'")
        username, password = line.split(":", 1)
        credentials.append(Credential(username, password))
    return credentials


def mask_password(password):
    """Return *password* with all but the first character hidden."""
    if not password:
        return ""
    return password[0] + "*" * (len(password) - 1)
