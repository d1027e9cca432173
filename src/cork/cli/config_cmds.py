"""Config commands: get and set dotted keys in config.json."""

from __future__ import annotations

import json

import click

from cork.cli.helpers import (
    json_envelope,
    load_project_config,
    output_error,
    require_root,
    save_project_config,
)
from cork.cli.main import cli
from cork.core.config import get_value, parse_config_value, set_value, validate_config


@cli.group("config")
def config_group() -> None:
    """Read and change cellar settings."""


@config_group.command("get")
@click.argument("key")
@click.option("--json", "output_json", is_flag=True, help="Output structured JSON.")
def config_get(key: str, output_json: bool) -> None:
    """Print the value of KEY (e.g. remote.policy)."""
    is_json = output_json
    cork_dir = require_root(is_json)
    config = load_project_config(cork_dir)
    try:
        value = get_value(config, key)
    except KeyError:
        output_error(f"Unknown config key: '{key}'.", "UNKNOWN_KEY", is_json)

    if is_json:
        click.echo(json_envelope(True, data={"key": key, "value": value}))
    elif isinstance(value, (dict, list)) or value is None:
        click.echo(json.dumps(value, sort_keys=True, indent=2))
    else:
        click.echo(value)


@config_group.command("set")
@click.argument("key")
@click.argument("value")
@click.option("--json", "output_json", is_flag=True, help="Output structured JSON.")
def config_set(key: str, value: str, output_json: bool) -> None:
    """Set KEY to VALUE.  VALUE is parsed as JSON when it can be."""
    is_json = output_json
    cork_dir = require_root(is_json)
    config = load_project_config(cork_dir)
    parsed = parse_config_value(value)
    try:
        updated = set_value(config, key, parsed)
    except KeyError:
        output_error(f"Unknown config key: '{key}'.", "UNKNOWN_KEY", is_json)

    problems = validate_config(updated)
    if problems:
        output_error("; ".join(problems), "INVALID_CONFIG", is_json)

    save_project_config(cork_dir, updated)
    if is_json:
        click.echo(json_envelope(True, data={"key": key, "value": parsed}))
    else:
        click.echo(f"{key} = {json.dumps(parsed, ensure_ascii=False)}")
