"""Shared CLI helpers, decorators, and output utilities."""

from __future__ import annotations

import asyncio
import contextlib
import json
from collections.abc import AsyncIterator, Awaitable, Callable, Iterator
from pathlib import Path
from typing import NamedTuple, NoReturn

import click

from cork.core.collection import Collection
from cork.core.config import load_config, serialize_config
from cork.core.errors import (
    ArchiveRecordNotFoundError,
    CorkError,
    RemoteError,
    ValidationError,
    WineNotFoundError,
)
from cork.manager import STATUS_ERROR, STATUS_LABELS, CollectionManager
from cork.session import CellarSession, FileIdentityProvider, read_identity
from cork.storage.cache import SAVED_WITHOUT_IMAGES, LocalCacheStore
from cork.storage.fs import CORK_DIR, CorkRootError, atomic_write, find_root

# Records can be referenced by the tail of their ULID, as shown by ``cork list``.
SHORT_ID_LENGTH = 6
MIN_SUFFIX_LENGTH = 4


# ---------------------------------------------------------------------------
# Root & config
# ---------------------------------------------------------------------------


def require_root(is_json: bool = False) -> Path:
    """Find .cork/ directory or exit with error."""
    try:
        root = find_root()
    except CorkRootError as e:
        output_error(str(e), "NOT_INITIALIZED", is_json)
    if root is None:
        output_error(
            "Not a cork cellar (no .cork/ found). Run 'cork init' first.",
            "NOT_INITIALIZED",
            is_json,
        )
    return root / CORK_DIR


def load_project_config(cork_dir: Path) -> dict:
    """Load config.json from the cork directory, filling in defaults."""
    config_path = cork_dir / "config.json"
    if not config_path.exists():
        return load_config("{}")
    return load_config(config_path.read_text())


def save_project_config(cork_dir: Path, config: dict) -> None:
    atomic_write(cork_dir / "config.json", serialize_config(config))


# ---------------------------------------------------------------------------
# Output helpers
# ---------------------------------------------------------------------------


def json_envelope(ok: bool, *, data: object = None, error: object = None) -> str:
    """Build a structured JSON output envelope."""
    result: dict = {"ok": ok}
    if data is not None:
        result["data"] = data
    if error is not None:
        result["error"] = error
    return json.dumps(result, sort_keys=True, indent=2, ensure_ascii=False) + "\n"


def json_error_obj(code: str, message: str) -> dict:
    """Build an error object for the JSON envelope."""
    return {"code": code, "message": message}


def output_error(message: str, code: str, is_json: bool, exit_code: int = 1) -> NoReturn:
    """Print error and exit. JSON errors go to stdout; human errors to stderr."""
    if is_json:
        click.echo(json_envelope(False, error=json_error_obj(code, message)))
    else:
        click.echo(f"Error: {message}", err=True)
    raise SystemExit(exit_code)


def output_result(
    *,
    data: object,
    human_message: str,
    quiet_value: str,
    is_json: bool,
    is_quiet: bool,
) -> None:
    """Print success result in the appropriate format."""
    if is_json:
        click.echo(json_envelope(True, data=data))
    elif is_quiet:
        click.echo(quiet_value)
    else:
        click.echo(human_message)


def short_id(record_id: str) -> str:
    return record_id[-SHORT_ID_LENGTH:]


# ---------------------------------------------------------------------------
# Click decorator
# ---------------------------------------------------------------------------


def common_options(f):  # noqa: ANN001, ANN201
    """Decorator adding the ``--json`` and ``--quiet`` output flags."""
    f = click.option("--quiet", is_flag=True, help="Print only the record ID.")(f)
    f = click.option("--json", "output_json", is_flag=True, help="Output structured JSON.")(f)
    return f


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------


@contextlib.contextmanager
def handle_errors(is_json: bool) -> Iterator[None]:
    """Translate cork exceptions into CLI errors with stable codes."""
    try:
        yield
    except (WineNotFoundError, ArchiveRecordNotFoundError) as e:
        output_error(str(e), "NOT_FOUND", is_json)
    except ValidationError as e:
        output_error(str(e), "VALIDATION_ERROR", is_json)
    except RemoteError as e:
        output_error(str(e), "REMOTE_ERROR", is_json)
    except CorkError as e:
        output_error(str(e), "ERROR", is_json)


# ---------------------------------------------------------------------------
# Reading the cellar
# ---------------------------------------------------------------------------


def read_collection(cork_dir: Path, config: dict | None = None) -> Collection:
    """Load the signed-in identity's cached collection without connecting."""
    config = config or load_project_config(cork_dir)
    store = LocalCacheStore(
        cork_dir / "cache",
        read_identity(cork_dir),
        quota_bytes=config["cache"]["quota_bytes"],
    )
    return store.load()


def resolve_record_id(records: list[dict], raw_id: str, is_json: bool, *, kind: str = "Wine") -> str:
    """Resolve a full ID or a unique ID suffix to a full record ID."""
    ids = [r["id"] for r in records]
    if raw_id in ids:
        return raw_id
    needle = raw_id.strip().upper()
    if len(needle) >= MIN_SUFFIX_LENGTH:
        matches = [i for i in ids if i.upper().endswith(needle)]
        if len(matches) == 1:
            return matches[0]
        if len(matches) > 1:
            output_error(
                f"ID '{raw_id}' is ambiguous ({len(matches)} matches). Use more characters.",
                "AMBIGUOUS_ID",
                is_json,
            )
    output_error(f"{kind} {raw_id} not found.", "NOT_FOUND", is_json)


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


class Outcome(NamedTuple):
    value: object
    status: str
    saved: str | None


@contextlib.asynccontextmanager
async def open_session(
    cork_dir: Path,
    config: dict | None = None,
    *,
    connect: bool = True,
) -> AsyncIterator[CellarSession]:
    """Start a :class:`CellarSession` for the signed-in identity.

    Connects to ``remote.url`` when one is configured and somebody is
    signed in, then waits for the connect-time reconciliation before
    handing the session over.
    """
    from cork.sync.client import WebSocketRemote

    config = config or load_project_config(cork_dir)
    remote = config["remote"]
    timeout = float(remote.get("timeout_seconds") or 10.0)

    channel_factory = None
    if connect and remote.get("url"):

        async def channel_factory() -> WebSocketRemote:
            channel = WebSocketRemote(remote["url"], timeout=timeout)
            await channel.connect()
            return channel

    session = CellarSession(
        cork_dir / "cache",
        FileIdentityProvider(cork_dir),
        channel_factory=channel_factory,
        quota_bytes=config["cache"]["quota_bytes"],
        policy=remote["policy"],
        grace_seconds=float(remote["grace_seconds"]),
    )
    await session.start()
    if session.manager.remote_enabled:
        await session.manager.wait_until_synced(timeout)
    try:
        yield session
    finally:
        await session.close()


def with_manager(
    cork_dir: Path,
    action: Callable[[CollectionManager], Awaitable[object]],
    *,
    config: dict | None = None,
) -> Outcome:
    """Run ``await action(manager)`` inside a fresh session."""

    async def _run() -> Outcome:
        async with open_session(cork_dir, config) as session:
            manager = session.manager
            value = await action(manager)
            return Outcome(value, manager.status, manager.last_save_result)

    return asyncio.run(_run())


def echo_outcome_notices(outcome: Outcome, is_json: bool) -> None:
    """Passive status lines for degraded sync or cache writes (stderr only)."""
    if is_json:
        return
    if outcome.status == STATUS_ERROR:
        click.echo(f"Sync: {STATUS_LABELS[STATUS_ERROR]}", err=True)
    if outcome.saved == SAVED_WITHOUT_IMAGES:
        click.echo("Cache full: saved locally without photos.", err=True)
