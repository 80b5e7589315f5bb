"""Migration operation types.

Each operation knows how to render itself as Alembic op.* Python code
for both upgrade and downgrade directions. Operations are built from the
same SQLAlchemy tables the application creates at startup, so migrated
and auto-created schemas match.
"""

from __future__ import annotations

from dataclasses import dataclass

import sqlalchemy as sa


def render_type(column_type: sa.types.TypeEngine) -> str:
    """SQLAlchemy type expression for migration code, e.g. ``sa.String(length=255)``."""
    return f"sa.{column_type!r}"


def render_column(column: sa.Column) -> str:
    args = [repr(column.name), render_type(column.type)]
    for fk in column.foreign_keys:
        args.append(f"sa.ForeignKey({fk.target_fullname!r})")
    if column.primary_key:
        args.append("primary_key=True")
    else:
        args.append(f"nullable={column.nullable}")
    if column.unique:
        args.append("unique=True")
    return f"sa.Column({', '.join(args)})"


@dataclass
class MigrationOp:
    """Base class for migration operations."""

    destructive: bool = False

    def render_upgrade(self) -> list[str]:
        raise NotImplementedError

    def render_downgrade(self) -> list[str]:
        raise NotImplementedError

    def describe(self) -> str:
        raise NotImplementedError


@dataclass
class CreateTable(MigrationOp):
    """CREATE TABLE (plus its indexes) for one table."""

    table: sa.Table | None = None

    def render_upgrade(self) -> list[str]:
        lines = ["    op.create_table(", f"        '{self.table.name}',"]
        for column in self.table.columns:
            lines.append(f"        {render_column(column)},")
        lines.append("    )")
        for index in sorted(self.table.indexes, key=lambda i: i.name or ""):
            columns = ", ".join(repr(c.name) for c in index.columns)
            lines.append(
                f"    op.create_index('{index.name}', '{self.table.name}', [{columns}], unique={index.unique})"
            )
        return lines

    def render_downgrade(self) -> list[str]:
        return [f"    op.drop_table('{self.table.name}')"]

    def describe(self) -> str:
        return f"Create table '{self.table.name}' ({len(self.table.columns)} columns)"


def create_ops(metadata: sa.MetaData, only: list[str] | None = None) -> list[CreateTable]:
    """CreateTable ops in dependency order (referenced tables first)."""
    return [
        CreateTable(table=table)
        for table in metadata.sorted_tables
        if only is None or table.name in only
    ]
