"""Support utilities for the UA Privilege Scanner."""
