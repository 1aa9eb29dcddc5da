"""Configuration read from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass

__all__ = ["EnvVar", "DEFAULT_MIGRATION_DIR", "env_or", "env_list"]

DEFAULT_MIGRATION_DIR = "."

_DEFAULTS = (
    ("GOOSE_DRIVER", ""),
    ("GOOSE_DBSTRING", ""),
    ("GOOSE_MIGRATION_DIR", DEFAULT_MIGRATION_DIR),
    ("NO_COLOR", "false"),
)


@dataclass(frozen=True)
class EnvVar:
    """An environment variable name and its value."""

    name: str
    value: str


def env_or(key: str, default: str) -> str:
    """Return the variable ``key`` if it is set and not empty, else ``default``."""
    return os.environ.get(key) or default


def env_list() -> list[EnvVar]:
    """Return the configuration variables with their current values."""
    return [EnvVar(name=name, value=env_or(name, default)) for name, default in _DEFAULTS]