"""Resource CLI commands: validate and list."""

import click

from lumina.cli.common import fail, load_project_registry, project_config
from lumina.registry.validator import validate_resources_dir


@click.group()
def resources():
    """Resource configuration commands."""
    pass


@resources.command()
@click.option("--strict", is_flag=True, default=False, help="Treat warnings as errors.")
def validate(strict: bool):
    """Validate resource YAML files (JSON Schema, then registry load)."""
    config = project_config()
    if not config.resources_path.exists():
        fail(f"Error: Resources directory not found at {config.resources_path}")

    issues = validate_resources_dir(config.resources_path, strict=strict)
    errors = [i for i in issues if i.severity == "error"]
    warnings = [i for i in issues if i.severity == "warning"]
    for issue in issues:
        click.echo(click.style(str(issue), fg="red" if issue.severity == "error" else "yellow"))

    if errors:
        fail(
            f"\n{len(errors)} schema error(s) found"
            + (f", {len(warnings)} warning(s)" if warnings else "")
        )
    if warnings:
        click.echo(click.style(f"{len(warnings)} warning(s) found.", fg="yellow"))

    registry = load_project_registry(config)
    click.echo(f"\nLoaded {len(registry)} resources:")
    for descriptor in sorted(registry, key=lambda d: d.slug):
        click.echo(f"  ✓ {descriptor.slug} ({len(descriptor.fields)} fields, tenancy: {descriptor.tenancy_mode})")
    click.echo(click.style("\nAll resources are valid.", fg="green", bold=True))


@resources.command("list")
def list_resources():
    """List registered resources with their table and actions."""
    registry = load_project_registry(project_config())
    if not len(registry):
        click.echo("No resources found.")
        return
    for descriptor in sorted(registry, key=lambda d: d.slug):
        click.echo(
            f"{descriptor.slug}\ttable={descriptor.table}\ttenancy={descriptor.tenancy_mode}"
            f"\tactions={','.join(descriptor.actions)}"
        )
