"""Cellar commands: add, list, show, edit, qty, delete, stats."""

from __future__ import annotations

from pathlib import Path

import click

from cork.cli.helpers import (
    common_options,
    echo_outcome_notices,
    handle_errors,
    json_envelope,
    load_project_config,
    output_error,
    output_result,
    read_collection,
    require_root,
    resolve_record_id,
    short_id,
    with_manager,
)
from cork.cli.main import cli
from cork.core.records import CHARACTERISTICS, WINE_TYPES, compact_wine, display_name
from cork.core.search import collection_stats, filter_wines, total_bottles
from cork.services.images import encode_image_file

_SCALE = click.IntRange(1, 5)


def wine_field_options(f):  # noqa: ANN001, ANN201
    """Decorator adding one option per editable wine field (all default to unset)."""
    options = [
        click.option("--producer", default=None, help="Producer or estate."),
        click.option("--type", "wine_type", type=click.Choice(WINE_TYPES), default=None),
        click.option("--year", type=int, default=None, help="Vintage."),
        click.option("--region", default=None),
        click.option("--grape", default=None, help="Grape variety or blend."),
        click.option("--boldness", type=_SCALE, default=None, help="1-5."),
        click.option("--tannins", type=_SCALE, default=None, help="1-5."),
        click.option("--acidity", type=_SCALE, default=None, help="1-5."),
        click.option("--price", type=click.FloatRange(min=0), default=None),
        click.option("--quantity", type=click.IntRange(min=1), default=None, help="Bottles."),
        click.option("--store", default=None, help="Where it was bought."),
        click.option("--notes", default=None),
        click.option(
            "--image",
            "image_path",
            type=click.Path(exists=True, dir_okay=False, path_type=Path),
            default=None,
            help="Photo of the bottle or label.",
        ),
    ]
    for option in reversed(options):
        f = option(f)
    return f


def _collect_fields(is_json: bool, **values: object) -> dict:
    """Map CLI option values to record fields, leaving out unset ones."""
    fields = {key: value for key, value in values.items() if value is not None}
    if "wine_type" in fields:
        fields["type"] = fields.pop("wine_type")
    image_path = fields.pop("image_path", None)
    if image_path is not None:
        try:
            fields["image"] = encode_image_file(image_path)
        except (OSError, ValueError) as e:
            output_error(str(e), "VALIDATION_ERROR", is_json)
    for key in ("producer", "region", "grape", "store", "notes"):
        if key in fields:
            fields[key] = fields[key].strip() or None
    return fields


def _wine_line(wine: dict) -> str:
    year = f" ({wine['year']})" if wine.get("year") else ""
    return (
        f"  {short_id(wine['id'])}  {wine.get('quantity', 1):>3d}x  "
        f"{wine.get('type', ''):<9s} {display_name(wine)}{year}"
    )


def _describe(wine: dict) -> list[str]:
    lines = [f"{display_name(wine)}  [{wine['id']}]"]
    detail = [
        ("Type", wine.get("type")),
        ("Year", wine.get("year")),
        ("Region", wine.get("region")),
        ("Grape", wine.get("grape")),
        ("Price", f"{wine['price']:.2f}" if wine.get("price") is not None else None),
        ("Quantity", wine.get("quantity")),
        ("Store", wine.get("store")),
        ("Notes", wine.get("notes")),
        ("Photo", "yes" if wine.get("image") else None),
        ("Added", wine.get("added_at")),
    ]
    for label, value in detail:
        if value is not None:
            lines.append(f"  {label + ':':<10s}{value}")
    profile = "  ".join(f"{c} {wine.get(c, 3)}/5" for c in CHARACTERISTICS)
    lines.append(f"  {'Profile:':<10s}{profile}")
    return lines


# ---------------------------------------------------------------------------
# add
# ---------------------------------------------------------------------------


@cli.command()
@click.argument("name")
@wine_field_options
@common_options
def add(name: str, output_json: bool, quiet: bool, **values: object) -> None:
    """Add a wine to the cellar."""
    is_json = output_json
    cork_dir = require_root(is_json)
    fields = _collect_fields(is_json, **values)
    fields["name"] = name.strip()

    with handle_errors(is_json):
        outcome = with_manager(cork_dir, lambda m: m.add_wine(fields))

    wine = outcome.value
    output_result(
        data=compact_wine(wine),
        human_message=(
            f"Added {display_name(wine)} ({wine['quantity']} bottle(s)) "
            f"[{short_id(wine['id'])}]"
        ),
        quiet_value=wine["id"],
        is_json=is_json,
        is_quiet=quiet,
    )
    echo_outcome_notices(outcome, is_json)


# ---------------------------------------------------------------------------
# list / show / stats (read the local cache, never connect)
# ---------------------------------------------------------------------------


@cli.command("list")
@click.option("--search", "query", default=None, help="Filter by name, producer, region or grape.")
@click.option("--json", "output_json", is_flag=True, help="Output structured JSON.")
def list_cmd(query: str | None, output_json: bool) -> None:
    """List wines in the cellar, newest first."""
    is_json = output_json
    cork_dir = require_root(is_json)
    collection = read_collection(cork_dir)
    wines = filter_wines(collection.wines, query)

    if is_json:
        click.echo(json_envelope(True, data=[compact_wine(w) for w in wines]))
        return

    if not wines:
        if query:
            click.echo("No wines match.")
        else:
            click.echo("Your cellar is empty. Add a wine with 'cork add'.")
        return
    for wine in wines:
        click.echo(_wine_line(wine))
    summary = f"{len(wines)} wine(s), {total_bottles(wines)} bottle(s)"
    if query:
        summary += f" matching '{query}' (of {len(collection.wines)})"
    click.echo(summary)


@cli.command()
@click.argument("wine_id")
@click.option("--json", "output_json", is_flag=True, help="Output structured JSON.")
def show(wine_id: str, output_json: bool) -> None:
    """Show one wine in full."""
    is_json = output_json
    cork_dir = require_root(is_json)
    collection = read_collection(cork_dir)
    resolved = resolve_record_id(collection.wines, wine_id, is_json)
    wine = collection.find_wine(resolved)

    if is_json:
        click.echo(json_envelope(True, data=wine))
        return
    for line in _describe(wine):
        click.echo(line)


@cli.command()
@click.option("--json", "output_json", is_flag=True, help="Output structured JSON.")
def stats(output_json: bool) -> None:
    """Bottle counts and archive ratings."""
    is_json = output_json
    cork_dir = require_root(is_json)
    summary = collection_stats(read_collection(cork_dir))

    if is_json:
        click.echo(json_envelope(True, data=summary))
        return

    click.echo(f"Wines: {summary['wines']} ({summary['total_bottles']} bottles)")
    for wine_type, count in summary["bottles_by_type"].items():
        if count:
            click.echo(f"  {wine_type:<10s} {count:>4d}")
    click.echo(f"Archived: {summary['archived']}")
    if summary["average_rating"] is not None:
        click.echo(f"  Average rating: {summary['average_rating']}/5")
    rebuy = summary["rebuy"]
    if any(rebuy.values()):
        click.echo(
            f"  Rebuy: {rebuy['yes']} yes, {rebuy['maybe']} maybe, {rebuy['no']} no"
        )


# ---------------------------------------------------------------------------
# edit / qty / delete
# ---------------------------------------------------------------------------


@cli.command()
@click.argument("wine_id")
@click.option("--name", default=None)
@wine_field_options
@click.option("--clear-image", is_flag=True, help="Remove the stored photo.")
@common_options
def edit(
    wine_id: str,
    name: str | None,
    clear_image: bool,
    output_json: bool,
    quiet: bool,
    **values: object,
) -> None:
    """Edit a wine.  Only the given fields change."""
    is_json = output_json
    cork_dir = require_root(is_json)
    config = load_project_config(cork_dir)
    resolved = resolve_record_id(read_collection(cork_dir, config).wines, wine_id, is_json)

    changes = _collect_fields(is_json, **values)
    if name is not None:
        changes["name"] = name.strip()
    if clear_image:
        changes["image"] = None
    if not changes:
        output_error(
            "Nothing to change. Pass at least one field option.", "VALIDATION_ERROR", is_json
        )

    async def _edit(manager):  # noqa: ANN001, ANN202
        fields = {**manager.get_wine(resolved), **changes}
        return await manager.update_wine(resolved, fields)

    with handle_errors(is_json):
        outcome = with_manager(cork_dir, _edit, config=config)

    wine = outcome.value
    output_result(
        data=compact_wine(wine),
        human_message=f"Updated {display_name(wine)} [{short_id(wine['id'])}]",
        quiet_value=wine["id"],
        is_json=is_json,
        is_quiet=quiet,
    )
    echo_outcome_notices(outcome, is_json)


@cli.command(context_settings={"ignore_unknown_options": True})
@click.argument("wine_id")
@click.argument("delta", type=int)
@common_options
def qty(wine_id: str, delta: int, output_json: bool, quiet: bool) -> None:
    """Change the bottle count by DELTA (e.g. +1 or -1).

    The count never drops below one; archive or delete the wine instead.
    """
    is_json = output_json
    cork_dir = require_root(is_json)
    config = load_project_config(cork_dir)
    resolved = resolve_record_id(read_collection(cork_dir, config).wines, wine_id, is_json)

    with handle_errors(is_json):
        outcome = with_manager(
            cork_dir, lambda m: m.adjust_quantity(resolved, delta), config=config
        )

    wine = outcome.value
    output_result(
        data=compact_wine(wine),
        human_message=f"{display_name(wine)}: {wine['quantity']} bottle(s)",
        quiet_value=str(wine["quantity"]),
        is_json=is_json,
        is_quiet=quiet,
    )
    echo_outcome_notices(outcome, is_json)


@cli.command()
@click.argument("wine_id")
@common_options
def delete(wine_id: str, output_json: bool, quiet: bool) -> None:
    """Delete a wine without archiving it."""
    is_json = output_json
    cork_dir = require_root(is_json)
    config = load_project_config(cork_dir)
    collection = read_collection(cork_dir, config)
    resolved = resolve_record_id(collection.wines, wine_id, is_json)
    label = display_name(collection.find_wine(resolved))

    with handle_errors(is_json):
        outcome = with_manager(cork_dir, lambda m: m.delete_wine(resolved), config=config)

    output_result(
        data={"id": resolved, "remote_confirmed": outcome.value},
        human_message=f"Deleted {label}",
        quiet_value=resolved,
        is_json=is_json,
        is_quiet=quiet,
    )
    echo_outcome_notices(outcome, is_json)
