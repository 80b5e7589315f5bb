"""Compile query directives into a scoped, ordered, paginated SELECT.

Every query dimension is checked against the descriptor's allow-lists.
Anything not allow-listed is dropped silently so the query surface cannot
be used to probe the schema. Includes are the exception: an allow-listed
include the caller may not view aborts the request.
"""

import math
from collections.abc import Callable
from dataclasses import dataclass, field

import sqlalchemy as sa

from lumina.persistence.types import coerce_value
from lumina.query.directives import QueryDirectives
from lumina.query.relations import RelationGraph
from lumina.registry.types import ModelDescriptor, SortField

# Pseudo-include suffixes: `commentsCount` -> `comments_count`
AGGREGATE_SUFFIXES = ("Count", "Exists")

ScopeFn = Callable[[ModelDescriptor, sa.FromClause], sa.ColumnElement | None]
IncludeGuard = Callable[[ModelDescriptor, str], None]


@dataclass(frozen=True)
class Aggregate:
    relation: str
    kind: str  # "count" or "exists"

    @property
    def label(self) -> str:
        return f"{self.relation}_{self.kind}"


@dataclass
class CompiledQuery:
    descriptor: ModelDescriptor
    statement: sa.Select
    count_statement: sa.Select | None = None
    page: int = 1
    per_page: int | None = None
    includes: list[str] = field(default_factory=list)
    aggregates: list[Aggregate] = field(default_factory=list)
    fields: dict[str, frozenset[str]] = field(default_factory=dict)

    @property
    def paginated(self) -> bool:
        return self.per_page is not None


@dataclass
class Page:
    """One page of serialized records plus pagination metadata."""

    records: list[dict]
    total: int
    page: int = 1
    per_page: int | None = None

    @property
    def last_page(self) -> int:
        if not self.per_page:
            return 1
        return max(1, math.ceil(self.total / self.per_page))

    def headers(self) -> dict[str, str]:
        per_page = self.per_page or max(self.total, 1)
        return {
            "X-Current-Page": str(self.page),
            "X-Last-Page": str(self.last_page),
            "X-Per-Page": str(per_page),
            "X-Total": str(self.total),
        }


def is_allowed_include(path: str, allowed: frozenset[str]) -> bool:
    """An include is allowed when listed, or a leading segment run of a listed path."""
    if path in allowed:
        return True
    prefix = path + "."
    return any(entry.startswith(prefix) for entry in allowed)


class QueryCompiler:
    """Turns QueryDirectives into SQLAlchemy statements for one resource."""

    def __init__(self, graph: RelationGraph, max_per_page: int = 100):
        self.graph = graph
        self.max_per_page = max_per_page

    def compile(
        self,
        descriptor: ModelDescriptor,
        directives: QueryDirectives,
        *,
        scope: ScopeFn | None = None,
        trashed: str = "without",
        include_guard: IncludeGuard | None = None,
        key=None,
    ) -> CompiledQuery:
        """Compile a list query, or a single-row query when *key* is given."""
        table = self.graph.tables[descriptor.slug]
        where: list[sa.ColumnElement] = []

        if scope is not None:
            clause = scope(descriptor, table)
            if clause is not None:
                where.append(clause)
        if descriptor.soft_deletes and trashed != "with":
            column = table.c.deleted_at
            where.append(column.is_not(None) if trashed == "only" else column.is_(None))

        includes, aggregates = self.resolve_includes(descriptor, directives.includes, include_guard)
        fields = self.select_fields(descriptor, includes, directives.fields)

        columns: list = [table]
        for aggregate in aggregates:
            columns.append(self._aggregate_column(descriptor, table, aggregate, scope))

        if key is not None:
            where.append(table.c[descriptor.primary_key] == key)
            statement = sa.select(*columns).where(*where)
            return CompiledQuery(descriptor, statement, includes=includes,
                                 aggregates=aggregates, fields=fields)

        where.extend(self.filter_clauses(descriptor, table, directives.filters))
        search = self.search_clause(descriptor, table, directives.search)
        if search is not None:
            where.append(search)

        statement = sa.select(*columns).where(*where).order_by(
            *self.order_by(descriptor, table, directives.sort)
        )
        compiled = CompiledQuery(descriptor, statement, includes=includes,
                                 aggregates=aggregates, fields=fields)

        pagination = descriptor.query.pagination
        if pagination.enabled:
            per_page = min(directives.per_page or pagination.per_page, self.max_per_page)
            page = directives.page or 1
            compiled.statement = statement.limit(per_page).offset((page - 1) * per_page)
            compiled.count_statement = sa.select(sa.func.count()).select_from(table).where(*where)
            compiled.page = page
            compiled.per_page = per_page
        return compiled

    # ------------------------------------------------------------------
    # Dimensions
    # ------------------------------------------------------------------

    def filter_clauses(
        self, descriptor: ModelDescriptor, table: sa.FromClause, filters: dict[str, list[str]]
    ) -> list[sa.ColumnElement]:
        """Values of one field are OR'd, distinct fields AND'd."""
        clauses = []
        for name, values in filters.items():
            if name not in descriptor.query.filters or not values:
                continue
            field_def = descriptor.get_field(name)
            coerced = [coerce_value(field_def.type, v) for v in values]
            column = table.c[name]
            if len(coerced) == 1:
                clauses.append(column == coerced[0])
            else:
                clauses.append(column.in_(coerced))
        return clauses

    def search_clause(
        self, descriptor: ModelDescriptor, table: sa.FromClause, term: str | None
    ) -> sa.ColumnElement | None:
        """Case-insensitive substring match OR'd across the search fields."""
        if not term or not descriptor.query.search:
            return None
        needle = term.lower()

        def matches(column) -> sa.ColumnElement:
            return sa.func.lower(sa.cast(column, sa.String)).contains(needle, autoescape=True)

        clauses = []
        for path in descriptor.query.search:
            *relations, column_name = path.split(".")
            if not relations:
                clauses.append(matches(table.c[column_name]))
                continue
            clauses.append(self.graph.exists_along(
                descriptor, table, relations,
                lambda related, alias, name=column_name: matches(alias.c[name]),
            ))
        return sa.or_(*clauses)

    def order_by(
        self, descriptor: ModelDescriptor, table: sa.FromClause, requested: list[SortField]
    ) -> list:
        sorts = [s for s in requested if s.field in descriptor.query.sorts]
        if not sorts:
            sorts = list(descriptor.query.default_sort)
        clauses = [
            table.c[s.field].desc() if s.descending else table.c[s.field].asc()
            for s in sorts
        ]
        if descriptor.primary_key not in {s.field for s in sorts}:
            clauses.append(table.c[descriptor.primary_key].asc())
        return clauses

    def resolve_includes(
        self,
        descriptor: ModelDescriptor,
        requested: list[str],
        guard: IncludeGuard | None,
    ) -> tuple[list[str], list[Aggregate]]:
        """Filter includes through the allow-list and authorize each hop.

        Raises:
            Forbidden: (from *guard*) when any included resource may not be listed
        """
        allowed = descriptor.query.includes
        includes: list[str] = []
        aggregates: list[Aggregate] = []
        for path in dict.fromkeys(requested):
            aggregate = self._parse_aggregate(path)
            if aggregate is not None:
                if aggregate.relation in descriptor.relations and is_allowed_include(
                    aggregate.relation, allowed
                ):
                    if guard is not None:
                        guard(self.graph.registry.relation_target(descriptor, aggregate.relation),
                              aggregate.relation)
                    aggregates.append(aggregate)
                continue
            if not is_allowed_include(path, allowed):
                continue
            if guard is not None:
                current = descriptor
                segments = path.split(".")
                for i, segment in enumerate(segments):
                    current = self.graph.registry.relation_target(current, segment)
                    guard(current, ".".join(segments[: i + 1]))
            includes.append(path)
        return includes, aggregates

    def select_fields(
        self,
        descriptor: ModelDescriptor,
        includes: list[str],
        requested: dict[str, list[str]],
    ) -> dict[str, frozenset[str]]:
        """Resolve ``fields[table]`` selections for the root and included resources.

        Only allow-listed fields can be selected; the primary key is always
        kept. A selection with no allowed fields leaves the resource unrestricted.
        """
        if not requested:
            return {}
        involved = {descriptor.slug: descriptor}
        for path in includes:
            current = descriptor
            for segment in path.split("."):
                current = self.graph.registry.relation_target(current, segment)
                involved[current.slug] = current

        selected: dict[str, frozenset[str]] = {}
        for target in involved.values():
            names = requested.get(target.table) or requested.get(target.slug)
            if not names:
                continue
            chosen = {n for n in names if n in target.query.fields}
            if chosen:
                selected[target.slug] = frozenset(chosen | {target.primary_key})
        return selected

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _parse_aggregate(path: str) -> Aggregate | None:
        if "." in path:
            return None
        for suffix in AGGREGATE_SUFFIXES:
            if path.endswith(suffix) and len(path) > len(suffix):
                return Aggregate(relation=path[: -len(suffix)], kind=suffix.lower())
        return None

    def _aggregate_column(
        self,
        descriptor: ModelDescriptor,
        table: sa.FromClause,
        aggregate: Aggregate,
        scope: ScopeFn | None,
    ):
        def scoped(related: ModelDescriptor, alias: sa.FromClause) -> list:
            clause = scope(related, alias) if scope is not None else None
            return [clause] if clause is not None else []

        _, alias, clauses = self.graph.related_subquery(
            descriptor, table, aggregate.relation, scoped
        )
        if aggregate.kind == "count":
            subquery = sa.select(sa.func.count()).select_from(alias).where(*clauses)
            return subquery.scalar_subquery().label(aggregate.label)
        return sa.exists().where(*clauses).label(aggregate.label)
