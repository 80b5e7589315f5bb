"""Scaffolding: new resource YAML plus its migration."""

import re

import click
import yaml

from lumina.cli.common import fail, load_project_registry, migrations_path, project_config
from lumina.migrations.generator import generate_migration
from lumina.migrations.types import CreateTable
from lumina.persistence.schema import build_metadata
from lumina.registry.types import FIELD_TYPES

NAME_PATTERN = re.compile(r"^[a-z][a-z0-9_]*$")


def parse_field(option: str) -> dict:
    """``title:string`` -> ``{"name": "title", "type": "string"}``; type defaults to string."""
    name, _, field_type = option.partition(":")
    name, field_type = name.strip(), (field_type.strip() or "string")
    if not NAME_PATTERN.match(name):
        raise click.BadParameter(f"invalid field name '{name}'", param_hint="--field")
    if field_type not in FIELD_TYPES:
        raise click.BadParameter(
            f"unknown type '{field_type}' (expected one of: {', '.join(sorted(FIELD_TYPES))})",
            param_hint="--field",
        )
    return {"name": name, "type": field_type}


def resource_document(name: str, fields: list[dict], owner: str | None, soft_deletes: bool) -> dict:
    names = [f["name"] for f in fields]
    document: dict = {"resource": name, "table": name, "fields": fields}
    if soft_deletes:
        document["soft_deletes"] = True
    if owner:
        document["owner"] = owner
        first = owner.split(".")[0]
        document["relations"] = {first: {"type": "belongs_to", "resource": f"{first}s", "foreign_key": f"{first}_id"}}
    document["query"] = {
        "filters": names,
        "sorts": names + ["created_at"],
        "default_sort": "-created_at",
        "fields": ["id"] + names,
    }
    document["validation"] = {
        "rules": {f["name"]: _base_rule(f["type"]) for f in fields},
        "store": {"*": {names[0]: "required"}} if names else None,
    }
    if document["validation"]["store"] is None:
        del document["validation"]["store"]
    return document


def _base_rule(field_type: str) -> str:
    return {
        "integer": "nullable|integer",
        "float": "nullable|numeric",
        "boolean": "nullable|boolean",
        "date": "nullable|date",
        "datetime": "nullable|date",
        "json": "nullable|json",
        "uuid": "nullable|uuid",
        "text": "nullable|string",
    }.get(field_type, "nullable|string|max:255")


@click.group()
def generate():
    """Scaffolding commands."""
    pass


@generate.command("resource")
@click.argument("name")
@click.option("--field", "-f", "field_options", multiple=True, help="Field as name:type (repeatable).")
@click.option(
    "--owner", default=None,
    help="Owner path; its first segment becomes a belongs_to relation to the plural resource (blog -> blogs).",
)
@click.option("--soft-deletes", is_flag=True, default=False, help="Add deleted_at and the trash actions.")
@click.option("--no-migration", is_flag=True, default=False, help="Only write the YAML file.")
def generate_resource(name: str, field_options: tuple[str, ...], owner: str | None, soft_deletes: bool, no_migration: bool):
    """Create resources/NAME.yaml and a migration creating its table."""
    if not NAME_PATTERN.match(name):
        fail(f"Error: invalid resource name '{name}'")
    config = project_config()
    fields = [parse_field(option) for option in field_options]
    if owner:
        fk = f"{owner.split('.')[0]}_id"
        if fk not in {f["name"] for f in fields}:
            fields.insert(0, {"name": fk, "type": "integer", "nullable": False})

    config.resources_path.mkdir(parents=True, exist_ok=True)
    target = config.resources_path / f"{name}.yaml"
    if target.exists():
        fail(f"Error: {target} already exists")

    target.write_text(yaml.safe_dump(
        resource_document(name, fields, owner, soft_deletes), sort_keys=False
    ))
    click.echo(f"Created {target}")

    if no_migration:
        return

    try:
        registry = load_project_registry(config)
    except SystemExit:
        target.unlink()
        click.echo(f"Removed {target}", err=True)
        raise
    _, _, tables = build_metadata(registry)
    filepath = generate_migration(
        ops=[CreateTable(table=tables[name])],
        message=f"create {name} table",
        output_dir=migrations_path(config),
    )
    click.echo(f"Generated {filepath}")
