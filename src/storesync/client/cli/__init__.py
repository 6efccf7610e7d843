"""Command-line interface for storesync.

This module provides the main CLI entry point and assembles all commands.

Commands:
- configure: Store backend URL, token and tenant
- tables: List the synchronized tables
- sync: Run one full sync into the local store
- watch: Keep the local store in sync until interrupted
"""

from __future__ import annotations

import logging

import click

from storesync.client.cli.config import (
    get_config_dir,
    get_config_file,
    get_store_file,
    load_config,
    save_config,
)
from storesync.client.cli.sync import configure, sync, tables, watch


@click.group()
@click.version_option(package_name="storesync")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
def cli(verbose: bool) -> None:
    """storesync - Local-first store synchronization."""
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    storesync_logger = logging.getLogger("storesync")
    for existing in storesync_logger.handlers[:]:
        storesync_logger.removeHandler(existing)
    storesync_logger.addHandler(handler)
    storesync_logger.setLevel(logging.DEBUG if verbose else logging.WARNING)
    storesync_logger.propagate = False


cli.add_command(configure)
cli.add_command(tables)
cli.add_command(sync)
cli.add_command(watch)


def main() -> None:
    """Entry point for the CLI."""
    cli()


__all__ = [
    "cli",
    "main",
    "get_config_dir",
    "get_config_file",
    "get_store_file",
    "load_config",
    "save_config",
]
