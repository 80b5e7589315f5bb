"""Alembic migration runner.

Wraps Alembic's programmatic API to apply, roll back and inspect
migrations without a static alembic.ini file.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import sqlalchemy as sa
from alembic import command
from alembic.config import Config
from alembic.script import ScriptDirectory
from sqlalchemy.exc import SQLAlchemyError


@dataclass
class MigrationInfo:
    """Info about a single migration."""

    revision: str
    description: str
    is_applied: bool


_SCRIPT_MAKO_TEMPLATE = '''\
"""${message}"""

revision = ${repr(up_revision)}
down_revision = ${repr(down_revision)}

from alembic import op
import sqlalchemy as sa

def upgrade():
    ${upgrades if upgrades else "pass"}

def downgrade():
    ${downgrades if downgrades else "pass"}
'''


def ensure_structure(migrations_dir: Path) -> None:
    """Create ``env.py``, ``script.py.mako`` and ``versions/`` when missing."""
    (migrations_dir / "versions").mkdir(parents=True, exist_ok=True)

    env_target = migrations_dir / "env.py"
    if not env_target.exists():
        env_target.write_text((Path(__file__).parent / "env.py").read_text())

    mako_target = migrations_dir / "script.py.mako"
    if not mako_target.exists():
        mako_target.write_text(_SCRIPT_MAKO_TEMPLATE)


def make_config(
    database_url: str,
    migrations_dir: Path,
    resources_path: Path | None = None,
    organization_key: str = "organization_id",
) -> Config:
    """Build an Alembic Config in code."""
    ensure_structure(migrations_dir)
    cfg = Config()
    cfg.set_main_option("sqlalchemy.url", database_url)
    cfg.set_main_option("script_location", str(migrations_dir))
    if resources_path is not None:
        cfg.set_main_option("lumina.resources_path", str(resources_path))
        cfg.set_main_option("lumina.organization_key", organization_key)
    return cfg


def apply_migrations(database_url: str, migrations_dir: Path, target: str | None = None) -> None:
    """Apply pending migrations up to *target* (default: head)."""
    command.upgrade(make_config(database_url, migrations_dir), target or "head")


def rollback_migration(database_url: str, migrations_dir: Path, steps: int = 1) -> None:
    """Roll back the last *steps* applied migrations."""
    command.downgrade(make_config(database_url, migrations_dir), f"-{steps}")


def stamp_migration(database_url: str, migrations_dir: Path, revision: str = "head") -> None:
    """Mark *revision* as applied without running SQL.

    Used to adopt migrations on a database whose tables were created at
    application startup.
    """
    command.stamp(make_config(database_url, migrations_dir), revision)


def current_heads(database_url: str) -> set[str]:
    """Revisions recorded in ``alembic_version`` (empty before the first apply)."""
    engine = sa.create_engine(database_url)
    try:
        with engine.connect() as conn:
            if not sa.inspect(conn).has_table("alembic_version"):
                return set()
            rows = conn.execute(sa.text("SELECT version_num FROM alembic_version"))
            return {row[0] for row in rows}
    except SQLAlchemyError:
        return set()
    finally:
        engine.dispose()


def get_migration_status(database_url: str, migrations_dir: Path) -> list[MigrationInfo]:
    """Every known migration, oldest first, with its applied flag."""
    script = ScriptDirectory.from_config(make_config(database_url, migrations_dir))

    # alembic_version only stores heads; everything below a head is applied
    applied: set[str] = set()
    for head in current_heads(database_url):
        for rev in script.iterate_revisions(head, "base"):
            applied.add(rev.revision)

    migrations = [
        MigrationInfo(revision=rev.revision, description=rev.doc or "", is_applied=rev.revision in applied)
        for rev in script.walk_revisions()
    ]
    migrations.reverse()
    return migrations
