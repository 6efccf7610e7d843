"""Sync commands for the storesync CLI.

Commands:
- configure: Store backend URL, token and tenant
- tables: List the synchronized tables
- sync: Run one full sync into the local JSON store
- watch: Keep the local store in sync until interrupted
"""

from __future__ import annotations

import asyncio
import sys
from typing import Any

import click

from storesync.client.cli.config import get_store_file, load_config, save_config
from storesync.core.tables import ALL_TABLES


def _require_backend(config: dict[str, Any]) -> None:
    """Exit unless the backend and tenant are configured and online."""
    if not config.get("server_url") or not config.get("token"):
        click.echo("Error: No backend configured. Run 'storesync configure' first.", err=True)
        sys.exit(1)
    if not config.get("tenant_id"):
        click.echo("Error: No tenant configured. Run 'storesync configure --tenant'.", err=True)
        sys.exit(1)
    if config.get("offline_mode"):
        click.echo("Offline mode is enabled, nothing to sync.", err=True)
        sys.exit(1)


@click.command()
@click.option("--server-url", default=None, help="Backend URL (e.g., https://api.example.com).")
@click.option("--token", default=None, help="API token for the backend.")
@click.option("--tenant", default=None, help="Business (tenant) identifier.")
@click.option(
    "--offline/--online",
    default=None,
    help="Disable or enable synchronization.",
)
def configure(
    server_url: str | None,
    token: str | None,
    tenant: str | None,
    offline: bool | None,
) -> None:
    """Update the stored backend configuration."""
    config = load_config()
    if server_url is not None:
        config["server_url"] = server_url.rstrip("/")
    if token is not None:
        config["token"] = token
    if tenant is not None:
        config["tenant_id"] = tenant
    if offline is not None:
        config["offline_mode"] = offline
    save_config(config)

    click.echo(f"Server:  {config.get('server_url', '-')}")
    click.echo(f"Tenant:  {config.get('tenant_id', '-')}")
    click.echo(f"Offline: {'yes' if config.get('offline_mode') else 'no'}")


@click.command()
def tables() -> None:
    """List the synchronized tables."""
    for spec in ALL_TABLES:
        flags = []
        if spec.push_on_create:
            flags.append("push-on-create")
        if not spec.diffable:
            flags.append("singleton")
        suffix = f" ({', '.join(flags)})" if flags else ""
        click.echo(f"{spec.group.value:<9} {spec.table:<20} -> {spec.collection}{suffix}")


@click.command()
def sync() -> None:
    """Run one full sync into the local store.

    Pulls every table. If the backend has no products but the local store
    does, the local records are pushed instead.
    """
    from storesync.client.api import HTTPGateway
    from storesync.client.store import JsonFileStore
    from storesync.client.sync import ReconciliationEngine
    from storesync.core.config import BackendConfig

    config = load_config()
    _require_backend(config)

    backend = BackendConfig(server_url=config["server_url"], token=config["token"])
    store = JsonFileStore(get_store_file())

    async def run_once() -> Any:
        async with HTTPGateway(backend) as gateway:
            engine = ReconciliationEngine(gateway, store, config["tenant_id"])
            result = await engine.full_sync()
            await engine.wait_idle()
            return result

    click.echo(f"Syncing with {config['server_url']}...")
    result = asyncio.run(run_once())
    if result is None:
        click.echo(click.style("Sync failed, local data unchanged.", fg="red"), err=True)
        sys.exit(1)

    for collection, count in sorted(result.counts.items()):
        click.echo(f"  {collection:<20} {count}")
    if result.bootstrapped:
        click.echo("Backend was empty: local products were pushed.")
    click.echo(f"\nSync complete: {len(result.tables)} tables.")


@click.command()
def watch() -> None:
    """Keep the local store in sync until Ctrl+C.

    Listens for realtime change notifications and falls back to polling.
    """
    from storesync.client.api import HTTPGateway
    from storesync.client.session import SessionContext, SyncSession
    from storesync.client.store import JsonFileStore
    from storesync.client.sync import WebSocketChangeFeed
    from storesync.core.config import BackendConfig

    config = load_config()
    _require_backend(config)

    backend = BackendConfig(server_url=config["server_url"], token=config["token"])
    store = JsonFileStore(get_store_file())

    async def run_forever() -> None:
        async with HTTPGateway(backend) as gateway:
            session = SyncSession(gateway, store, feed=WebSocketChangeFeed(backend))
            try:
                if not await session.start(SessionContext(tenant_id=config["tenant_id"])):
                    click.echo("Error: Could not start sync session.", err=True)
                    return
                click.echo(f"Status: {session.status.value}")
                click.echo("\nWatching for changes... (Ctrl+C to stop)\n")
                await asyncio.Event().wait()
            finally:
                await session.stop()

    try:
        asyncio.run(run_forever())
    except KeyboardInterrupt:
        click.echo("\nStopping...")
