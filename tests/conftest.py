"""Shared test fixtures."""

from __future__ import annotations

import itertools
import json
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from click.testing import CliRunner


@pytest.fixture()
def cork_root(tmp_path: Path) -> Path:
    """Return a temporary directory suitable for initializing .cork/ in."""
    return tmp_path


@pytest.fixture()
def initialized_root(cork_root: Path) -> Path:
    """Return a temporary directory with .cork/ already initialized."""
    from cork.core.config import default_config, serialize_config
    from cork.storage.fs import CORK_DIR, atomic_write, ensure_cork_dirs

    ensure_cork_dirs(cork_root)
    atomic_write(cork_root / CORK_DIR / "config.json", serialize_config(default_config()))
    return cork_root


@pytest.fixture()
def cork_dir(initialized_root: Path) -> Path:
    return initialized_root / ".cork"


@pytest.fixture()
def cli_runner() -> CliRunner:
    """Return a Click CliRunner for invoking CLI commands."""
    return CliRunner()


@pytest.fixture()
def cli_env(initialized_root: Path) -> dict[str, str]:
    """Return env dict with CORK_ROOT pointing to initialized_root."""
    return {"CORK_ROOT": str(initialized_root), "OPENAI_API_KEY": "", "GOOGLE_API_KEY": ""}


@pytest.fixture()
def invoke(cli_runner: CliRunner, cli_env: dict[str, str]):
    """Return a helper that invokes CLI commands with the right environment.

    Usage::

        result = invoke("add", "Tignanello", "--producer", "Antinori")
    """
    from cork.cli.main import cli

    def _invoke(*args: str, **kwargs):
        return cli_runner.invoke(cli, list(args), env=cli_env, **kwargs)

    return _invoke


@pytest.fixture()
def invoke_json(invoke):
    """Like invoke, but appends --json and parses the response.

    Returns (parsed_dict, exit_code) tuple.
    """

    def _invoke_json(*args: str) -> tuple[dict, int]:
        result = invoke(*args, "--json")
        parsed = json.loads(result.output)
        return parsed, result.exit_code

    return _invoke_json


@pytest.fixture()
def add_wine(invoke_json):
    """Factory fixture: add a wine through the CLI and return its record.

    Usage::

        wine = add_wine("Tignanello", "--producer", "Antinori")
    """

    def _add(name: str = "Test wine", *extra_args: str) -> dict:
        parsed, code = invoke_json("add", name, *extra_args)
        assert code == 0, f"add failed: {parsed}"
        return parsed["data"]

    return _add


@pytest.fixture()
def clock():
    """Deterministic, strictly increasing RFC 3339 timestamps."""
    start = datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)
    ticks = itertools.count()

    def _now() -> str:
        moment = start + timedelta(seconds=next(ticks))
        return moment.strftime("%Y-%m-%dT%H:%M:%S.%fZ")

    return _now


@pytest.fixture()
def cache_dir(tmp_path: Path) -> Path:
    path = tmp_path / ".cork" / "cache"
    path.mkdir(parents=True)
    return path


@pytest.fixture()
def make_manager(cache_dir: Path, clock):
    """Factory fixture: a CollectionManager over a fresh per-identity cache."""
    from cork.manager import CollectionManager
    from cork.storage.cache import LocalCacheStore

    def _make(identity: str | None = None, **kwargs):
        kwargs.setdefault("clock", clock)
        kwargs.setdefault("grace_seconds", 0.1)
        manager = CollectionManager(LocalCacheStore(cache_dir, identity), **kwargs)
        manager.load()
        return manager

    return _make
