"""Alembic environment for Lumina projects.

Copied into the project's migrations directory by runner.py and
configured programmatically (no alembic.ini). When the runner passes the
resources directory, the schema built from the resource registry becomes
Alembic's target metadata.
"""

from pathlib import Path

from alembic import context
from sqlalchemy import create_engine, pool


def target_metadata():
    resources_path = context.config.get_main_option("lumina.resources_path")
    if not resources_path:
        return None

    from lumina.persistence.schema import build_metadata
    from lumina.registry.loader import load_registry

    organization_key = context.config.get_main_option("lumina.organization_key") or "organization_id"
    metadata, _, _ = build_metadata(load_registry(Path(resources_path), organization_key=organization_key))
    return metadata


def run_offline():
    """Emit SQL instead of executing it."""
    context.configure(
        url=context.config.get_main_option("sqlalchemy.url"),
        target_metadata=target_metadata(),
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def run_online():
    engine = create_engine(context.config.get_main_option("sqlalchemy.url"), poolclass=pool.NullPool)
    with engine.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata(),
            # SQLite cannot ALTER most constraints in place
            render_as_batch=connection.dialect.name == "sqlite",
        )
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_offline()
else:
    run_online()
