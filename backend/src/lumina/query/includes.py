"""Eager-load included relations onto fetched rows.

One query per relation hop, batched over all parent rows.
"""

from typing import Any

import sqlalchemy as sa
from sqlalchemy.engine import Connection

from lumina.query.compiler import ScopeFn
from lumina.query.relations import RelationGraph
from lumina.registry.types import ModelDescriptor

IncludeTree = dict[str, "IncludeTree"]


def include_tree(paths: list[str]) -> IncludeTree:
    """Turn ``["comments", "comments.post", "blog"]`` into a nested dict."""
    tree: IncludeTree = {}
    for path in paths:
        node = tree
        for segment in path.split("."):
            node = node.setdefault(segment, {})
    return tree


class IncludeLoader:
    def __init__(self, graph: RelationGraph):
        self.graph = graph

    def load(
        self,
        conn: Connection,
        descriptor: ModelDescriptor,
        rows: list[dict[str, Any]],
        tree: IncludeTree,
        scope: ScopeFn | None = None,
    ) -> None:
        """Attach related rows in place under each relation name."""
        if not rows:
            return
        for name, subtree in tree.items():
            relation = descriptor.relations[name]
            related = self.graph.target(relation)
            table = self.graph.tables[related.slug]

            clauses = []
            if related.soft_deletes:
                clauses.append(table.c.deleted_at.is_(None))
            if scope is not None:
                scoped = scope(related, table)
                if scoped is not None:
                    clauses.append(scoped)

            if relation.is_belongs_to:
                keys = {row.get(relation.foreign_key) for row in rows} - {None}
                loaded = self._fetch(conn, table, table.c[related.primary_key], keys, clauses)
                by_key = {r[related.primary_key]: r for r in loaded}
                for row in rows:
                    row[name] = by_key.get(row.get(relation.foreign_key))
            else:
                keys = {row[descriptor.primary_key] for row in rows}
                loaded = self._fetch(conn, table, table.c[relation.foreign_key], keys, clauses)
                grouped: dict[Any, list[dict[str, Any]]] = {}
                for r in loaded:
                    grouped.setdefault(r[relation.foreign_key], []).append(r)
                for row in rows:
                    children = grouped.get(row[descriptor.primary_key], [])
                    if relation.is_many:
                        row[name] = children
                    else:
                        row[name] = children[0] if children else None

            if subtree:
                self.load(conn, related, loaded, subtree, scope)

    @staticmethod
    def _fetch(conn: Connection, table: sa.Table, column, keys: set, clauses: list) -> list[dict]:
        if not keys:
            return []
        stmt = (
            sa.select(table)
            .where(column.in_(sorted(keys, key=str)), *clauses)
            .order_by(*table.primary_key.columns)
        )
        return [dict(r) for r in conn.execute(stmt).mappings()]
