"""Identity commands: login, logout, whoami."""

from __future__ import annotations

import asyncio
from pathlib import Path

import click

from cork.cli.helpers import (
    json_envelope,
    load_project_config,
    open_session,
    output_error,
    require_root,
)
from cork.cli.main import cli
from cork.core.ids import validate_identity
from cork.manager import STATUS_LABELS
from cork.session import read_identity


async def _switch(cork_dir: Path, identity: str | None) -> dict:
    """Sign in as *identity* (or out, for ``None``) through a live session."""
    config = load_project_config(cork_dir)
    timeout = float(config["remote"]["timeout_seconds"])
    async with open_session(cork_dir, config) as session:
        if identity is None:
            await session.provider.sign_out()
        else:
            await session.provider.sign_in(identity)
            if session.manager.remote_enabled:
                await session.manager.wait_until_synced(timeout)
        manager = session.manager
        return {
            "identity": session.identity,
            "status": manager.status,
            "wines": len(manager.wines),
            "archived": len(manager.archive),
        }


@cli.command()
@click.argument("identity")
@click.option("--json", "output_json", is_flag=True, help="Output structured JSON.")
def login(identity: str, output_json: bool) -> None:
    """Sign in and sync IDENTITY's cellar."""
    is_json = output_json
    cork_dir = require_root(is_json)
    if not validate_identity(identity):
        output_error(
            f"Invalid identity: '{identity}'. Use letters, digits and . _ @ - only.",
            "INVALID_IDENTITY",
            is_json,
        )

    data = asyncio.run(_switch(cork_dir, identity))

    if is_json:
        click.echo(json_envelope(True, data=data))
        return
    click.echo(f"Signed in as {identity}")
    click.echo(f"{data['wines']} wine(s), {data['archived']} archived")
    click.echo(f"Sync: {STATUS_LABELS.get(data['status'], data['status'])}")


@cli.command()
@click.option("--json", "output_json", is_flag=True, help="Output structured JSON.")
def logout(output_json: bool) -> None:
    """Sign out.  The signed-in cellar is no longer shown."""
    is_json = output_json
    cork_dir = require_root(is_json)
    previous = read_identity(cork_dir)
    if previous is None:
        output_error("Not signed in.", "NOT_SIGNED_IN", is_json)

    data = asyncio.run(_switch(cork_dir, None))
    data["previous"] = previous

    if is_json:
        click.echo(json_envelope(True, data=data))
        return
    click.echo(f"Signed out {previous}")


@cli.command()
@click.option("--json", "output_json", is_flag=True, help="Output structured JSON.")
def whoami(output_json: bool) -> None:
    """Show the signed-in identity."""
    is_json = output_json
    cork_dir = require_root(is_json)
    identity = read_identity(cork_dir)

    if is_json:
        click.echo(json_envelope(True, data={"identity": identity}))
        return
    click.echo(identity or "Not signed in (local cellar).")
