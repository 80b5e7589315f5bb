"""Alembic migrations generated from resource tables."""

from lumina.migrations.generator import generate_migration
from lumina.migrations.runner import (
    MigrationInfo,
    apply_migrations,
    get_migration_status,
    rollback_migration,
    stamp_migration,
)
from lumina.migrations.types import CreateTable, MigrationOp, create_ops

__all__ = [
    "CreateTable",
    "MigrationInfo",
    "MigrationOp",
    "apply_migrations",
    "create_ops",
    "generate_migration",
    "get_migration_status",
    "rollback_migration",
    "stamp_migration",
]
