"""Postman export command."""

import json
from pathlib import Path

import click

from lumina.cli.common import load_project_registry, project_config
from lumina.postman import PostmanExporter


@click.group()
def postman():
    """Postman collection commands."""
    pass


@postman.command()
@click.option("--output", "-o", type=click.Path(path_type=Path), default=None,
              help="Write to this file instead of stdout.")
@click.option("--base-url", default="http://localhost:8000", show_default=True)
@click.option("--name", default="Lumina API", show_default=True, help="Collection name.")
def export(output: Path | None, base_url: str, name: str):
    """Export every enabled route as a Postman Collection v2.1."""
    config = project_config()
    collection = PostmanExporter(load_project_registry(config), config).export(base_url=base_url, name=name)
    content = json.dumps(collection, indent=2)
    if output is None:
        click.echo(content)
        return
    output.write_text(content)
    click.echo(f"Wrote {output}")
