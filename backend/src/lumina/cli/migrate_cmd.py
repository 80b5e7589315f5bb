"""Migrate CLI commands: init, apply, rollback, stamp, status."""

from pathlib import Path

import click
from alembic.util import CommandError
from sqlalchemy.exc import SQLAlchemyError

from lumina.cli.common import fail, load_project_registry, migrations_path, project_config
from lumina.migrations.generator import generate_migration
from lumina.migrations.runner import (
    apply_migrations,
    get_migration_status,
    rollback_migration,
    stamp_migration,
)
from lumina.migrations.types import create_ops
from lumina.persistence.schema import build_metadata

MIGRATION_ERRORS = (CommandError, SQLAlchemyError, OSError)


def _has_migrations(path: Path) -> bool:
    versions = path / "versions"
    return versions.exists() and any(versions.glob("*.py"))


@click.group()
def migrate():
    """Migration commands."""
    pass


@migrate.command()
@click.option("--message", "-m", default="initial schema", help="Description for the baseline migration.")
@click.option("--stamp", "stamp_db", is_flag=True, default=False,
              help="Mark the baseline as applied (tables already created by the app).")
def init(message: str, stamp_db: bool):
    """Generate a baseline migration creating every table.

    Covers the system tables and one table per resource. Use --stamp on a
    database whose tables were created at application startup.
    """
    config = project_config()
    path = migrations_path(config)
    if _has_migrations(path):
        fail("Error: Migrations already exist. 'migrate init' is only for first-time bootstrap.")

    metadata, _, _ = build_metadata(load_project_registry(config))
    ops = create_ops(metadata)
    click.echo(f"Creating baseline migration with {len(ops)} table(s):")
    for op in ops:
        click.echo(f"  + {op.describe()}")

    filepath = generate_migration(ops=ops, message=message, output_dir=path)
    click.echo(f"\nGenerated: {filepath}")

    if stamp_db:
        stamp_migration(config.database.sqlalchemy_url, path, revision="head")
        click.echo("Database stamped at head (no SQL executed).")


@migrate.command()
@click.option("--to", "target", default=None, help="Apply up to a specific revision.")
def apply(target: str | None):
    """Apply pending migrations."""
    config = project_config()
    path = migrations_path(config)
    if not _has_migrations(path):
        click.echo("No migrations found. Run 'lumina migrate init' or 'lumina generate resource' first.")
        return

    if config.database.is_sqlite and config.database.sqlite_path not in (None, ":memory:"):
        Path(config.database.sqlite_path).parent.mkdir(parents=True, exist_ok=True)

    click.echo(f"Applying migrations to: {config.database.url}")
    try:
        apply_migrations(config.database.sqlalchemy_url, path, target=target)
    except MIGRATION_ERRORS as e:
        fail(f"Error applying migrations: {e}")
    click.echo("Migrations applied successfully.")
    _print_status(config.database.sqlalchemy_url, path)


@migrate.command()
@click.option("--steps", default=1, show_default=True, help="Number of migrations to roll back.")
def rollback(steps: int):
    """Roll back applied migrations."""
    config = project_config()
    path = migrations_path(config)
    click.echo(f"Rolling back {steps} migration(s) on: {config.database.url}")
    try:
        rollback_migration(config.database.sqlalchemy_url, path, steps=steps)
    except MIGRATION_ERRORS as e:
        fail(f"Error rolling back: {e}")
    click.echo("Rollback successful.")
    _print_status(config.database.sqlalchemy_url, path)


@migrate.command()
def status():
    """Show migration status (applied and pending)."""
    config = project_config()
    path = migrations_path(config)
    if not _has_migrations(path):
        click.echo("No migrations found.")
        return
    _print_status(config.database.sqlalchemy_url, path)


def _print_status(database_url: str, path: Path) -> None:
    try:
        infos = get_migration_status(database_url, path)
    except MIGRATION_ERRORS as e:
        click.echo(f"Could not read migration status: {e}", err=True)
        return

    applied_count = sum(1 for i in infos if i.is_applied)
    click.echo(f"\nMigration status ({applied_count} applied, {len(infos) - applied_count} pending):")
    for info in infos:
        marker = "[x]" if info.is_applied else "[ ]"
        click.echo(f"  {marker} {info.revision}: {info.description}")
