"""Archive commands: archive, archived, restore, purge."""

from __future__ import annotations

import click

from cork.cli.helpers import (
    common_options,
    echo_outcome_notices,
    handle_errors,
    json_envelope,
    load_project_config,
    output_result,
    read_collection,
    require_root,
    resolve_record_id,
    short_id,
    with_manager,
)
from cork.cli.main import cli
from cork.core.records import REBUY_OPTIONS, WINE_TYPES, compact_wine, display_name
from cork.core.search import filter_archive


def _stars(rating: int) -> str:
    return "*" * rating + "." * (5 - rating)


def _archive_line(record: dict) -> str:
    rebuy = record.get("rebuy") or "-"
    return (
        f"  {short_id(record['id'])}  {_stars(record.get('rating') or 0)}  "
        f"rebuy:{rebuy:<5s}  {display_name(record)}"
    )


@cli.command()
@click.argument("wine_id")
@click.option("--rating", type=click.IntRange(0, 5), default=0, help="0 (unrated) to 5.")
@click.option("--rebuy", type=click.Choice(REBUY_OPTIONS), default=None, help="Buy it again?")
@click.option("--notes", "archive_notes", default=None, help="Tasting notes for the archive.")
@common_options
def archive(
    wine_id: str,
    rating: int,
    rebuy: str | None,
    archive_notes: str | None,
    output_json: bool,
    quiet: bool,
) -> None:
    """Move a finished wine to the archive."""
    is_json = output_json
    cork_dir = require_root(is_json)
    config = load_project_config(cork_dir)
    resolved = resolve_record_id(read_collection(cork_dir, config).wines, wine_id, is_json)

    with handle_errors(is_json):
        outcome = with_manager(
            cork_dir,
            lambda m: m.archive_wine(
                resolved, rating=rating, rebuy=rebuy, archive_notes=archive_notes
            ),
            config=config,
        )

    record = outcome.value
    output_result(
        data=compact_wine(record),
        human_message=f"Archived {display_name(record)} ({_stars(record['rating'])})",
        quiet_value=record["id"],
        is_json=is_json,
        is_quiet=quiet,
    )
    echo_outcome_notices(outcome, is_json)


@cli.command()
@click.option(
    "--search", "query", default=None, help="Filter by name, producer, region, grape or store."
)
@click.option("--type", "wine_type", type=click.Choice(WINE_TYPES), default=None)
@click.option("--rebuy", type=click.Choice(REBUY_OPTIONS), default=None)
@click.option("--json", "output_json", is_flag=True, help="Output structured JSON.")
def archived(
    query: str | None,
    wine_type: str | None,
    rebuy: str | None,
    output_json: bool,
) -> None:
    """List archived wines, most recently archived first."""
    is_json = output_json
    cork_dir = require_root(is_json)
    collection = read_collection(cork_dir)
    records = filter_archive(collection.archive, query, wine_type, rebuy)

    if is_json:
        click.echo(json_envelope(True, data=[compact_wine(r) for r in records]))
        return

    if not records:
        click.echo("No archived wines match." if collection.archive else "The archive is empty.")
        return
    for record in records:
        click.echo(_archive_line(record))
    click.echo(f"{len(records)} of {len(collection.archive)} archived wine(s)")


@cli.command()
@click.argument("archive_id")
@common_options
def restore(archive_id: str, output_json: bool, quiet: bool) -> None:
    """Put an archived wine back in the cellar (one bottle, new ID)."""
    is_json = output_json
    cork_dir = require_root(is_json)
    config = load_project_config(cork_dir)
    resolved = resolve_record_id(
        read_collection(cork_dir, config).archive, archive_id, is_json, kind="Archived wine"
    )

    with handle_errors(is_json):
        outcome = with_manager(cork_dir, lambda m: m.restore_wine(resolved), config=config)

    wine = outcome.value
    output_result(
        data=compact_wine(wine),
        human_message=f"Restored {display_name(wine)} [{short_id(wine['id'])}]",
        quiet_value=wine["id"],
        is_json=is_json,
        is_quiet=quiet,
    )
    echo_outcome_notices(outcome, is_json)


@cli.command()
@click.argument("archive_id")
@common_options
def purge(archive_id: str, output_json: bool, quiet: bool) -> None:
    """Permanently delete a wine from the archive."""
    is_json = output_json
    cork_dir = require_root(is_json)
    config = load_project_config(cork_dir)
    collection = read_collection(cork_dir, config)
    resolved = resolve_record_id(collection.archive, archive_id, is_json, kind="Archived wine")
    label = display_name(collection.find_archived(resolved))

    with handle_errors(is_json):
        outcome = with_manager(cork_dir, lambda m: m.delete_archived(resolved), config=config)

    output_result(
        data={"id": resolved, "remote_confirmed": outcome.value},
        human_message=f"Purged {label} from the archive",
        quiet_value=resolved,
        is_json=is_json,
        is_quiet=quiet,
    )
    echo_outcome_notices(outcome, is_json)
