#!/usr/bin/env python3
"""
Exceptions raised by the UA Privilege Scanner.

Per-target network failures never surface as exceptions; they are recorded in
the privilege ledger. Only the errors below escape a component.
"""


class ScanAbortedError(Exception):
    """Unrecoverable condition that stops the scan after the current phase."""


class KeyMaterialError(ScanAbortedError):
    """The client key pair or self-signed certificate could not be produced."""


class ConfigError(ValueError):
    """Invalid configuration value or unreadable configuration/credential file."""
