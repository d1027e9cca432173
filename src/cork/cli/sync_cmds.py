"""CLI commands for the sync server and remote status."""

from __future__ import annotations

import asyncio
from pathlib import Path

import click

from cork.cli.main import cli


@cli.group()
def sync() -> None:
    """Remote sync: run a server, check or follow the connection."""


@sync.command("serve")
@click.option("--host", default=None, help="Bind address (default: 127.0.0.1).")
@click.option("--port", type=int, default=None, help="Listen port (default: 9810).")
def sync_serve(host: str | None, port: int | None) -> None:
    """Run the remote store server.  Other cellars sync through it."""
    from cork.cli.helpers import require_root
    from cork.sync.server import CorkSyncServer

    cork_dir = require_root(False)
    server = CorkSyncServer(cork_dir, host=host, port=port)

    try:
        asyncio.run(server.serve_forever())
    except KeyboardInterrupt:
        click.echo("\ncork sync: stopped.")


async def _status(cork_dir: Path, config: dict) -> dict:
    from cork.cli.helpers import open_session

    async with open_session(cork_dir, config) as session:
        manager = session.manager
        return {
            "identity": session.identity,
            "remote_url": config["remote"]["url"],
            "policy": manager.policy,
            "status": manager.status,
            "cache_path": str(manager.cache.path),
            "wines": len(manager.wines),
            "archived": len(manager.archive),
        }


@sync.command("status")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON.")
def sync_status(as_json: bool) -> None:
    """Connect once and report the sync state."""
    from cork.cli.helpers import json_envelope, load_project_config, require_root
    from cork.manager import STATUS_LABELS

    cork_dir = require_root(as_json)
    config = load_project_config(cork_dir)
    data = asyncio.run(_status(cork_dir, config))

    if as_json:
        click.echo(json_envelope(True, data=data))
        return

    click.echo(f"Identity: {data['identity'] or 'not signed in'}")
    click.echo(f"Remote: {data['remote_url'] or 'not configured'}")
    click.echo(f"Policy: {data['policy']}")
    click.echo(f"Status: {STATUS_LABELS.get(data['status'], data['status'])}")
    click.echo(f"Cache: {data['cache_path']}")
    click.echo(f"Records: {data['wines']} wine(s), {data['archived']} archived")


async def _watch(cork_dir: Path, config: dict) -> None:
    from cork.cli.helpers import open_session

    async with open_session(cork_dir, config) as session:
        manager = session.manager

        def _print_change(collection) -> None:  # noqa: ANN001
            click.echo(
                f"cork sync: {len(collection.wines)} wine(s), "
                f"{len(collection.archive)} archived [{manager.status}]"
            )

        manager.add_listener(_print_change)
        click.echo(f"cork sync: following {session.identity}'s cellar (Ctrl-C to stop)")
        await asyncio.Future()  # Run until interrupted


@sync.command("watch")
def sync_watch() -> None:
    """Follow remote changes into the local cache until interrupted."""
    from cork.cli.helpers import load_project_config, output_error, require_root
    from cork.session import read_identity

    cork_dir = require_root(False)
    config = load_project_config(cork_dir)
    if not config["remote"]["url"]:
        output_error(
            "No remote configured. Set one with 'cork config set remote.url ws://...'.",
            "NO_REMOTE",
            False,
        )
    if read_identity(cork_dir) is None:
        output_error("Not signed in. Run 'cork login IDENTITY' first.", "NOT_SIGNED_IN", False)

    try:
        asyncio.run(_watch(cork_dir, config))
    except KeyboardInterrupt:
        click.echo("\ncork sync: stopped.")
