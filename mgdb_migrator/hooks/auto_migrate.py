#!/usr/bin/env python3
"""Auto-migrate hook: run one migration from environment settings.

Meant to be called at process start so that every deployment brings the
database to the version it expects. Settings come from the environment
(and .env files), see mgdb_migrator.core._env.

USAGE:
    # Migrate the Migrator defined in myapp.migrations to the latest version
    MIGRATE_APP=myapp.migrations:migrator MIGRATE_VERSION=latest mgdb-migrate

    # Flags override the environment
    mgdb-migrate --app myapp.migrations:migrator --target 3 --rerun

    # Or import as module
    from mgdb_migrator.hooks.auto_migrate import run_auto_migrate
    result = await run_auto_migrate()
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import importlib
import json
import logging
import sys
from typing import Any, Mapping, Optional

from rich.console import Console
from rich.panel import Panel
from rich.text import Text

from mgdb_migrator.core._env import AutoMigrateSettings, load_environment, read_settings
from mgdb_migrator.core.db.mongo_client import ConnectionSettings
from mgdb_migrator.core.errors import ConfigurationError, MigrationError
from mgdb_migrator.migrations.migration_manager import Migrator

logger = logging.getLogger(__name__)

console = Console()


def load_migrator(target: str) -> Migrator:
    """Import "package.module:attribute" and return the Migrator it names.

    Raises:
        ConfigurationError: If the target is malformed or not a Migrator
    """
    module_name, _, attr = target.partition(":")
    if not module_name or not attr:
        raise ConfigurationError(
            f"Migrator target must look like 'package.module:attribute', got {target!r}"
        )

    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigurationError(f"Cannot import {module_name}: {e}") from e

    migrator = getattr(module, attr, None)
    if not isinstance(migrator, Migrator):
        raise ConfigurationError(f"{target} is not a Migrator instance")
    return migrator


def _overrides(settings: AutoMigrateSettings) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    if settings.db_url:
        overrides["db"] = ConnectionSettings(settings.db_url, settings.db_name)
    if settings.collection_name:
        overrides["collection_name"] = settings.collection_name
    if settings.timeout is not None:
        overrides["timeout"] = settings.timeout
    if settings.version_scheme:
        overrides["version_scheme"] = settings.version_scheme
    return overrides


async def run_auto_migrate(
    env: Optional[Mapping[str, str]] = None,
    migrator: Optional[Migrator] = None,
    **settings_overrides: Any,
) -> dict[str, Any]:
    """Run a single migration driven by environment settings.

    Args:
        env: Environment mapping; defaults to os.environ
        migrator: Migrator to use instead of importing MIGRATE_APP
        **settings_overrides: AutoMigrateSettings fields taking precedence

    Returns:
        dict with keys: success, skipped, version, message, error
    """
    result: dict[str, Any] = {
        "success": False,
        "skipped": False,
        "version": None,
        "message": "",
        "error": None,
    }

    try:
        settings = read_settings(env)
        if settings_overrides:
            settings = dataclasses.replace(settings, **settings_overrides)

        if not settings.version:
            result["success"] = True
            result["skipped"] = True
            result["message"] = "MIGRATE_VERSION not set, nothing to do"
            return result

        if migrator is None:
            if not settings.app:
                raise ConfigurationError("MIGRATE_APP is required to locate the Migrator")
            migrator = load_migrator(settings.app)

        overrides = _overrides(settings)
        if overrides or not migrator.configured:
            await migrator.configure(**overrides)

        try:
            await migrator.migrate_to(settings.version, rerun=settings.rerun)
            result["version"] = await migrator.get_version()
        finally:
            if "db" in overrides:
                await migrator.close()

        result["success"] = True
        result["message"] = f"Database at version {result['version']}"

    except MigrationError as e:
        logger.error("Auto-migrate failed: %s", e)
        result["error"] = str(e)
        result["message"] = type(e).__name__

    return result


def print_result(result: dict[str, Any]) -> None:
    """Print a formatted migration status."""
    if result["success"]:
        status = "[yellow]Skipped[/yellow]" if result["skipped"] else "[green]OK[/green]"
    else:
        status = "[red]Failed[/red]"

    panel = Panel(
        Text.from_markup(
            f"""[bold]Migration Status[/bold]

  Status:   {status}
  Version:  {result['version'] if result['version'] is not None else 'unknown'}
  Message:  {result['message'] or 'none'}
  Error:    {result['error'] or 'none'}""",
            justify="left",
        ),
        title="mgdb-migrate",
        border_style="green" if result["success"] else "red",
    )
    console.print(panel)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Migrate a MongoDB database to a target version"
    )
    parser.add_argument(
        "--app", help="Migrator to run, as package.module:attribute (MIGRATE_APP)"
    )
    parser.add_argument(
        "--target", "--version", dest="target",
        help="'latest' or the version to migrate to (MIGRATE_VERSION)"
    )
    parser.add_argument(
        "--rerun", action="store_true", help="Re-run the up() of the target version"
    )
    parser.add_argument(
        "--silent", "-s", action="store_true", help="Print nothing, only set the exit code"
    )
    parser.add_argument(
        "--json", action="store_true", help="Print the result as JSON"
    )
    return parser


async def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point. Returns the process exit code."""
    args = build_parser().parse_args(argv)
    load_environment()

    overrides: dict[str, Any] = {}
    if args.app:
        overrides["app"] = args.app
    if args.target:
        overrides["version"] = args.target
    if args.rerun:
        overrides["rerun"] = True

    result = await run_auto_migrate(**overrides)

    if args.json:
        print(json.dumps(result, indent=2, default=str))
    elif not args.silent:
        print_result(result)

    return 0 if result["success"] else 1


def cli() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
