"""Environment loading for the auto-migrate hook.

Loads .env files in precedence order (later overrides earlier):
1. ~/.mgdb_migrator/.env - User settings (connection strings)
2. .env - Local project overrides

Recognized variables:
    MIGRATE_VERSION          "latest" or the version to migrate to
    MIGRATE_RERUN            "true" to re-run the up() of MIGRATE_VERSION
    MIGRATE_APP              "package.module:attribute" naming a Migrator
    MIGRATE_DB_URL           MongoDB connection string
    MIGRATE_DB_NAME          Database name, if not in the url
    MIGRATE_COLLECTION       Control collection name
    MIGRATE_TIMEOUT          Per-step timeout in seconds
    MIGRATE_VERSION_SCHEME   "semver" or "integer"

Usage:
    from mgdb_migrator.core._env import load_environment, read_settings
    load_environment()
    settings = read_settings()
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv

from mgdb_migrator.core.errors import ConfigurationError

USER_ENV_FILE = Path.home() / ".mgdb_migrator" / ".env"


def load_environment(extra_paths: Optional[list[Path]] = None) -> list[Path]:
    """Load .env files into os.environ.

    Args:
        extra_paths: Additional files loaded after the defaults

    Returns:
        The files that existed and were loaded
    """
    env_paths = [
        USER_ENV_FILE,       # User settings
        Path.cwd() / ".env",  # Local overrides
    ]
    env_paths.extend(extra_paths or [])

    loaded = []
    for env_path in env_paths:
        if env_path.exists():
            load_dotenv(env_path, override=True)
            loaded.append(env_path)
    return loaded


@dataclass(frozen=True)
class AutoMigrateSettings:
    """Settings for a single environment-driven migration."""

    version: Optional[str] = None
    rerun: bool = False
    app: Optional[str] = None
    db_url: Optional[str] = None
    db_name: Optional[str] = None
    collection_name: Optional[str] = None
    timeout: Optional[float] = None
    version_scheme: Optional[str] = None


def _flag(value: Optional[str]) -> bool:
    return (value or "").strip().lower() == "true"


def read_settings(env: Optional[Mapping[str, str]] = None) -> AutoMigrateSettings:
    """Build AutoMigrateSettings from env (defaults to os.environ).

    Raises:
        ConfigurationError: If MIGRATE_TIMEOUT is not a number
    """
    env = os.environ if env is None else env

    timeout = env.get("MIGRATE_TIMEOUT") or None
    if timeout is not None:
        try:
            timeout = float(timeout)
        except ValueError:
            raise ConfigurationError(
                f"MIGRATE_TIMEOUT must be a number of seconds, got {timeout!r}"
            ) from None

    return AutoMigrateSettings(
        version=env.get("MIGRATE_VERSION") or None,
        rerun=_flag(env.get("MIGRATE_RERUN")),
        app=env.get("MIGRATE_APP") or None,
        db_url=env.get("MIGRATE_DB_URL") or None,
        db_name=env.get("MIGRATE_DB_NAME") or None,
        collection_name=env.get("MIGRATE_COLLECTION") or None,
        timeout=timeout,
        version_scheme=env.get("MIGRATE_VERSION_SCHEME") or None,
    )
