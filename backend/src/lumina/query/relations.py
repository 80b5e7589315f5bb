"""Relation graph: join conditions and EXISTS subqueries along relation paths."""

from collections.abc import Callable, Sequence

import sqlalchemy as sa

from lumina.registry.loader import ResourceRegistry
from lumina.registry.types import ModelDescriptor, RelationDefinition

LeafClause = Callable[[ModelDescriptor, sa.FromClause], sa.ColumnElement]


class RelationGraph:
    """Static relation graph over the registry and its tables."""

    def __init__(self, registry: ResourceRegistry, tables: dict[str, sa.Table]):
        self.registry = registry
        self.tables = tables

    def target(self, relation: RelationDefinition) -> ModelDescriptor:
        return self.registry.resolve(relation.resource)

    @staticmethod
    def join_condition(
        parent: ModelDescriptor,
        parent_table: sa.FromClause,
        relation: RelationDefinition,
        related: ModelDescriptor,
        related_table: sa.FromClause,
    ) -> sa.ColumnElement:
        if relation.is_belongs_to:
            return related_table.c[related.primary_key] == parent_table.c[relation.foreign_key]
        return related_table.c[relation.foreign_key] == parent_table.c[parent.primary_key]

    def exists_along(
        self,
        descriptor: ModelDescriptor,
        table: sa.FromClause,
        segments: Sequence[str],
        leaf: LeafClause,
    ) -> sa.ColumnElement:
        """Correlated EXISTS walking *segments* from *table*.

        Each hop uses a fresh alias so paths may revisit a table. Trashed
        rows of soft-deleting resources never satisfy the walk.
        """
        relation = descriptor.relations[segments[0]]
        related = self.target(relation)
        alias = self.tables[related.slug].alias()
        clauses = [self.join_condition(descriptor, table, relation, related, alias)]
        if related.soft_deletes:
            clauses.append(alias.c.deleted_at.is_(None))
        if len(segments) > 1:
            clauses.append(self.exists_along(related, alias, segments[1:], leaf))
        else:
            clauses.append(leaf(related, alias))
        return sa.exists().where(*clauses)

    def related_subquery(
        self,
        descriptor: ModelDescriptor,
        table: sa.FromClause,
        relation_name: str,
        extra: Callable[[ModelDescriptor, sa.FromClause], list] | None = None,
    ) -> tuple[ModelDescriptor, sa.FromClause, list]:
        """Alias and correlated WHERE clauses for one relation hop."""
        relation = descriptor.relations[relation_name]
        related = self.target(relation)
        alias = self.tables[related.slug].alias()
        clauses = [self.join_condition(descriptor, table, relation, related, alias)]
        if related.soft_deletes:
            clauses.append(alias.c.deleted_at.is_(None))
        if extra is not None:
            clauses.extend(extra(related, alias))
        return related, alias, clauses
