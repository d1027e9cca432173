"""CLI entry point and commands."""

from __future__ import annotations

import logging
import os
from pathlib import Path

import click

from cork.core.config import default_config, serialize_config
from cork.storage.fs import CORK_DIR, atomic_write, ensure_cork_dirs

LOG_LEVEL_ENV = "CORK_LOG_LEVEL"


def _configure_logging(verbose: bool) -> None:
    if verbose:
        level = logging.DEBUG
    else:
        name = os.environ.get(LOG_LEVEL_ENV, "WARNING").upper()
        level = logging.getLevelName(name)
        if not isinstance(level, int):
            level = logging.WARNING
    logging.basicConfig(level=level, format="%(levelname)s: %(message)s")


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Log debug output to stderr.")
def cli(verbose: bool) -> None:
    """Cork: a wine cellar that works offline and syncs when it can."""
    _configure_logging(verbose)


@cli.command()
@click.option(
    "--path",
    "target_path",
    type=click.Path(exists=True, file_okay=False, resolve_path=True),
    default=".",
    help="Directory to create the cellar in (defaults to current directory).",
)
@click.option(
    "--remote-url",
    default=None,
    help="Sync server URL (e.g., ws://127.0.0.1:9810). Saved to config.",
)
def init(target_path: str, remote_url: str | None) -> None:
    """Initialize a new cellar."""
    root = Path(target_path)
    cork_dir = root / CORK_DIR

    # Idempotency: an existing .cork/ directory is left untouched
    if cork_dir.is_dir():
        click.echo(f"Cellar already initialized in {CORK_DIR}/")
        return

    if cork_dir.exists():
        raise click.ClickException(
            f"Cannot initialize: '{CORK_DIR}' exists but is not a directory. "
            "Remove it and try again."
        )

    if remote_url and not remote_url.startswith(("ws://", "wss://")):
        raise click.ClickException(
            f"Invalid remote URL: '{remote_url}'. Expected ws://host:port or wss://host:port."
        )

    try:
        ensure_cork_dirs(root)
        config: dict = dict(default_config())
        if remote_url:
            config["remote"]["url"] = remote_url
        atomic_write(cork_dir / "config.json", serialize_config(config))
    except PermissionError:
        raise click.ClickException(f"Permission denied: cannot create {CORK_DIR}/ in {root}")
    except OSError as e:
        raise click.ClickException(f"Failed to initialize cellar: {e}")

    click.echo(f"Cellar initialized in {CORK_DIR}/")
    if remote_url:
        click.echo(f"Remote: {remote_url}")


# ---------------------------------------------------------------------------
# Register command modules (must be after cli group is defined)
# ---------------------------------------------------------------------------
from cork.cli import wine_cmds as _wine_cmds  # noqa: E402, F401
from cork.cli import archive_cmds as _archive_cmds  # noqa: E402, F401
from cork.cli import scan_cmd as _scan_cmd  # noqa: E402, F401
from cork.cli import session_cmds as _session_cmds  # noqa: E402, F401
from cork.cli import sync_cmds as _sync_cmds  # noqa: E402, F401
from cork.cli import config_cmds as _config_cmds  # noqa: E402, F401

if __name__ == "__main__":
    cli()
