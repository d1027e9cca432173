"""Label scanning: recognize a photo, find a product image, optionally add."""

from __future__ import annotations

import asyncio
from pathlib import Path

import click

from cork.cli.helpers import (
    echo_outcome_notices,
    handle_errors,
    json_envelope,
    load_project_config,
    output_error,
    require_root,
    short_id,
    with_manager,
)
from cork.cli.main import cli
from cork.core.records import compact_wine, display_name
from cork.services.images import encode_image_file, find_product_image, make_image_search
from cork.services.vision import make_recognizer, recognize_label


async def _scan(config: dict, label_image: str, want_photo: bool) -> tuple[dict, str, bool, bool]:
    outcome = await recognize_label(make_recognizer(config), label_image)
    fields = dict(outcome.fields)
    product_photo = None
    if want_photo and not outcome.demo:
        product_photo = await find_product_image(
            make_image_search(config),
            fields,
            timeout=float(config["image_search"]["attempt_timeout_seconds"]),
        )
    # The label photo itself is kept when no product photo turns up.
    fields["image"] = product_photo or label_image
    return fields, outcome.notice, outcome.demo, product_photo is not None


@cli.command()
@click.argument("image", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--add", "add_to_cellar", is_flag=True, help="Add the recognized wine to the cellar.")
@click.option("--no-photo", is_flag=True, help="Skip the product photo lookup.")
@click.option("--json", "output_json", is_flag=True, help="Output structured JSON.")
def scan(image: Path, add_to_cellar: bool, no_photo: bool, output_json: bool) -> None:
    """Recognize a wine from a label photo."""
    is_json = output_json
    cork_dir = require_root(is_json)
    config = load_project_config(cork_dir)

    try:
        label_image = encode_image_file(image)
    except (OSError, ValueError) as e:
        output_error(str(e), "VALIDATION_ERROR", is_json)

    fields, notice, demo, found_photo = asyncio.run(_scan(config, label_image, not no_photo))

    added = None
    outcome = None
    if add_to_cellar:
        with handle_errors(is_json):
            outcome = with_manager(cork_dir, lambda m: m.add_wine(fields), config=config)
        added = outcome.value

    if is_json:
        data = {
            "fields": compact_wine(fields),
            "notice": notice,
            "demo": demo,
            "product_photo": found_photo,
            "added": compact_wine(added) if added else None,
        }
        click.echo(json_envelope(True, data=data))
        return

    click.echo(notice, err=True)
    click.echo(display_name(fields))
    for key in ("type", "year", "region", "grape", "price", "notes"):
        if fields.get(key) is not None:
            click.echo(f"  {key + ':':<8s}{fields[key]}")
    click.echo(f"  photo:  {'product photo' if found_photo else 'label photo'}")
    if added:
        click.echo(f"Added to cellar [{short_id(added['id'])}]")
        echo_outcome_notices(outcome, is_json)
