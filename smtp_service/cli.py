import json

import click
from flask.cli import with_appcontext

from smtp_service.errors import ServiceError
from smtp_service.storage import get_storage, normalize_id


@click.group()
def storage():
    """Storage backend ops."""


@storage.command("info")
@with_appcontext
def storage_info():
    s = get_storage()
    click.echo(f"backend={s.backend} degraded={str(s.degraded).lower()}")
    click.echo(f"log_file={s.config.log_file}")
    click.echo(f"templates_dir={s.config.templates_dir}")


@click.group()
def logs():
    """Event log queries."""


@logs.command("query")
@click.option("--status", help="Comma separated, e.g. success,failed")
@click.option("--to", "to_", help="Substring of the recipient")
@click.option("--from", "from_", help="Substring of the sender")
@click.option("--contains", help="Substring of subject or response")
@click.option("--start", help="ISO 8601 lower bound (inclusive)")
@click.option("--end", help="ISO 8601 upper bound (inclusive)")
@click.option("--limit", type=int, default=100, show_default=True)
@click.option("--offset", type=int, default=0, show_default=True)
@with_appcontext
def logs_query(status, to_, from_, contains, start, end, limit, offset):
    params = {
        "status": status,
        "to": to_,
        "from": from_,
        "contains": contains,
        "start": start,
        "end": end,
        "limit": limit,
        "offset": offset,
    }
    try:
        page = get_storage().logs.query(params)
    except ServiceError as e:
        raise click.ClickException(str(e))
    click.echo(json.dumps(page, indent=2, ensure_ascii=False))


@click.group()
def templates():
    """Template store ops."""


@templates.command("list")
@with_appcontext
def templates_list():
    items = get_storage().templates.list()
    if not items:
        click.echo("No templates")
        return
    for t in items:
        click.echo(f"{t['id']}\t{t['name']}\t{t['updatedAt']}")


@templates.command("import")
@click.argument("paths", nargs=-1, required=True, type=click.Path(exists=True, dir_okay=False))
@with_appcontext
def templates_import(paths):
    store = get_storage().templates
    existing = {t["id"] for t in store.list()}
    created = skipped = 0
    for path in paths:
        with open(path, "r", encoding="utf-8") as fh:
            try:
                data = json.load(fh)
            except ValueError as e:
                raise click.ClickException(f"{path}: invalid JSON ({e})")
        if not isinstance(data, dict):
            raise click.ClickException(f"{path}: expected a JSON object")

        tid = normalize_id(data["id"]) if data.get("id") else None
        if tid and tid in existing:
            click.echo(f"skip {tid} (exists)")
            skipped += 1
            continue
        try:
            tpl = store.create(data)
        except ServiceError as e:
            raise click.ClickException(f"{path}: {e}")
        existing.add(tpl["id"])
        created += 1
        click.echo(f"created {tpl['id']}")

    click.echo(f"Import complete: created={created} skipped={skipped}")


def register_cli(app):
    app.cli.add_command(storage)
    app.cli.add_command(logs)
    app.cli.add_command(templates)
