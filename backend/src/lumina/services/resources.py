"""The request pipeline for resource actions.

Every action runs the same gate before touching data:

    descriptor -> action available -> authentication -> organization
    -> resource middleware -> policy

Rows are always looked up inside the organization scope, so a row that
belongs to another organization is simply not found.
"""

from collections.abc import Collection
from datetime import UTC, datetime
from typing import Any

import sqlalchemy as sa
from sqlalchemy.engine import Connection

from lumina.audit.recorder import AuditRecorder
from lumina.auth.policies import Authorizer
from lumina.errors import AuditWriteDegraded, Forbidden, RecordNotFound, Unauthenticated, UnknownResource
from lumina.persistence.database import Database
from lumina.persistence.types import coerce_value
from lumina.query.compiler import Page, QueryCompiler
from lumina.query.directives import QueryDirectives
from lumina.query.includes import IncludeLoader, include_tree
from lumina.query.relations import RelationGraph
from lumina.query.serializer import RecordSerializer
from lumina.registry.loader import ResourceRegistry
from lumina.registry.types import ModelDescriptor
from lumina.services.context import RequestContext
from lumina.services.middleware import run_middleware
from lumina.tenancy.resolver import TenantResolver
from lumina.tenancy.scope import TenantContext, TenantScope
from lumina.validation.checks import RecordLookup
from lumina.validation.engine import ValidationEngine

# Columns the engine manages; never taken from a payload
MANAGED_COLUMNS = frozenset({"created_at", "updated_at", "deleted_at"})


def utcnow() -> str:
    return datetime.now(UTC).isoformat()


class ConnectionLookup:
    """Binds ``exists``/``unique`` lookups to the request's connection."""

    def __init__(self, db: Database, conn: Connection):
        self.db = db
        self.conn = conn

    def value_exists(self, table, column, value, *, ignore=None) -> bool:
        return self.db.value_exists(self.conn, table, column, value, ignore=ignore)


class ResourceService:
    """Runs resource actions: list, show, create, update, delete and the soft-delete lifecycle."""

    def __init__(
        self,
        *,
        registry: ResourceRegistry,
        db: Database,
        resolver: TenantResolver,
        authorizer: Authorizer,
        engine: ValidationEngine,
        recorder: AuditRecorder,
        hidden: frozenset[str],
        max_per_page: int = 100,
    ):
        self.registry = registry
        self.db = db
        self.resolver = resolver
        self.authorizer = authorizer
        self.engine = engine
        self.recorder = recorder
        self.hidden = hidden
        self.max_per_page = max_per_page
        self.graph = RelationGraph(registry, db.tables)
        self.compiler = QueryCompiler(self.graph, max_per_page=max_per_page)
        self.includes = IncludeLoader(self.graph)

    # ------------------------------------------------------------------
    # Gate
    # ------------------------------------------------------------------

    def descriptor(self, slug: str, action: str) -> ModelDescriptor:
        """Resolve a slug and make sure it offers *action*.

        Raises:
            UnknownResource: Unknown slug, or the action is excluded
        """
        descriptor = self.registry.resolve(slug)
        if not descriptor.supports(action):
            raise UnknownResource(f"Action '{action}' is not available for '{slug}'")
        return descriptor

    def tenant(self, conn: Connection, ctx: RequestContext) -> TenantContext:
        if ctx.tenant is None:
            ctx.tenant = self.resolver.resolve(conn, ctx.organization, ctx.user)
        return ctx.tenant

    def scope(self, ctx: RequestContext) -> TenantScope:
        return TenantScope(self.graph, ctx.tenant or TenantContext())

    def gate(self, conn: Connection, ctx: RequestContext, descriptor: ModelDescriptor, action: str) -> None:
        """Authentication, organization, middleware and policy, in that order.

        Raises:
            Unauthenticated, TenantNotFound, Forbidden (or any middleware error)
        """
        if ctx.user is None and action not in descriptor.public_actions:
            raise Unauthenticated()
        tenant = self.tenant(conn, ctx)
        run_middleware(descriptor.middleware_for(action), ctx, descriptor, action)
        self.authorizer.authorize(ctx.user, action, descriptor, tenant.organization, tenant.role)

    def authorize_entity(
        self, ctx: RequestContext, descriptor: ModelDescriptor, action: str, entity: dict[str, Any]
    ) -> None:
        tenant = ctx.tenant or TenantContext()
        self.authorizer.authorize(
            ctx.user, action, descriptor, tenant.organization, tenant.role, entity=entity
        )

    def include_guard(self, ctx: RequestContext):
        """Included resources must be listable by the caller."""

        def guard(target: ModelDescriptor, path: str) -> None:
            tenant = ctx.tenant or TenantContext()
            allowed, _ = self.authorizer.check(
                ctx.user, "index", target, tenant.organization, tenant.role
            )
            if not allowed:
                raise Forbidden(f"You are not authorized to include '{path}'.", relation=path)

        return guard

    def serializer(self, ctx: RequestContext) -> RecordSerializer:
        def hidden_for(descriptor: ModelDescriptor) -> set[str]:
            return (
                set(self.hidden)
                | set(descriptor.hidden)
                | self.authorizer.hidden_columns(descriptor, ctx.user)
            )

        return RecordSerializer(self.registry, hidden_for)

    def find_in_scope(
        self,
        conn: Connection,
        ctx: RequestContext,
        descriptor: ModelDescriptor,
        id: Any,
        trashed: str = "without",
    ) -> dict[str, Any]:
        """Load one row inside the organization scope.

        Raises:
            RecordNotFound: Missing, trashed (unless asked for) or out of scope
        """
        key = self.db.coerce_key(descriptor, id)
        table = self.db.table(descriptor)
        scoped = self.scope(ctx).clause(descriptor, table)
        row = self.db.find(
            conn, descriptor, key, where=[scoped] if scoped is not None else None, trashed=trashed
        )
        if row is None:
            raise RecordNotFound()
        return row

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def index(self, ctx: RequestContext, slug: str, directives: QueryDirectives) -> Page:
        return self._list(ctx, slug, directives, "index", "without")

    def trashed(self, ctx: RequestContext, slug: str, directives: QueryDirectives) -> Page:
        return self._list(ctx, slug, directives, "trashed", "only")

    def _list(
        self, ctx: RequestContext, slug: str, directives: QueryDirectives, action: str, trashed: str
    ) -> Page:
        descriptor = self.descriptor(slug, action)
        with self.db.connection() as conn:
            self.gate(conn, ctx, descriptor, action)
            scope = self.scope(ctx)
            compiled = self.compiler.compile(
                descriptor,
                directives,
                scope=scope,
                trashed=trashed,
                include_guard=self.include_guard(ctx),
            )
            rows = self.db.fetch_all(conn, compiled.statement)
            if compiled.paginated:
                total = self.db.scalar(conn, compiled.count_statement)
            else:
                total = len(rows)
            tree = include_tree(compiled.includes)
            self.includes.load(conn, descriptor, rows, tree, scope)

        serializer = self.serializer(ctx)
        records = [
            serializer.serialize(
                descriptor, row, tree=tree, fields=compiled.fields, aggregates=compiled.aggregates
            )
            for row in rows
        ]
        return Page(records=records, total=total, page=compiled.page, per_page=compiled.per_page)

    def show(self, ctx: RequestContext, slug: str, id: Any, directives: QueryDirectives) -> dict[str, Any]:
        descriptor = self.descriptor(slug, "show")
        with self.db.connection() as conn:
            self.gate(conn, ctx, descriptor, "show")
            scope = self.scope(ctx)
            compiled = self.compiler.compile(
                descriptor,
                directives,
                scope=scope,
                include_guard=self.include_guard(ctx),
                key=self.db.coerce_key(descriptor, id),
            )
            rows = self.db.fetch_all(conn, compiled.statement)
            if not rows:
                raise RecordNotFound()
            self.authorize_entity(ctx, descriptor, "show", rows[0])
            tree = include_tree(compiled.includes)
            self.includes.load(conn, descriptor, rows, tree, scope)

        return self.serializer(ctx).serialize(
            descriptor, rows[0], tree=tree, fields=compiled.fields, aggregates=compiled.aggregates
        )

    def audit_history(
        self, ctx: RequestContext, slug: str, id: Any, page: int | None, per_page: int | None
    ) -> Page:
        """Audit entries for one row, newest first."""
        descriptor = self.descriptor(slug, "show")
        if not descriptor.audit.enabled:
            raise UnknownResource(f"Resource '{slug}' is not audited")
        with self.db.connection() as conn:
            self.gate(conn, ctx, descriptor, "show")
            entity = self.find_in_scope(conn, ctx, descriptor, id, trashed="with")
            self.authorize_entity(ctx, descriptor, "show", entity)
            key = entity[descriptor.primary_key]

            per_page = min(max(per_page or descriptor.query.pagination.per_page, 1), self.max_per_page)
            page = max(page or 1, 1)
            statement = self.recorder.history_statement(descriptor, key)
            total = self.db.scalar(
                conn, sa.select(sa.func.count()).select_from(statement.order_by(None).subquery())
            )
            rows = self.db.fetch_all(conn, statement.limit(per_page).offset((page - 1) * per_page))
        return Page(records=rows, total=total, page=page, per_page=per_page)

    # ------------------------------------------------------------------
    # Writes: validation
    # ------------------------------------------------------------------

    def writable(self, descriptor: ModelDescriptor, data: dict[str, Any]) -> dict[str, Any]:
        """Keep validated fields that are real columns, coerced to their types."""
        values = {}
        for name, value in data.items():
            field_def = descriptor.get_field(name)
            if field_def is None or field_def.primary_key or name in MANAGED_COLUMNS:
                continue
            values[name] = coerce_value(field_def.type, value)
        return values

    @staticmethod
    def owner_foreign_key(descriptor: ModelDescriptor) -> str | None:
        if descriptor.tenancy_mode != "owner":
            return None
        return descriptor.relations[descriptor.owner_path[0]].foreign_key

    def prepare_store(
        self,
        conn: Connection,
        ctx: RequestContext,
        descriptor: ModelDescriptor,
        payload: dict[str, Any],
        deferred: Collection[str] = (),
        lookup: RecordLookup | None = None,
    ) -> dict[str, Any]:
        """Validate a create payload and attach ownership.

        Deferred fields (unresolved batch references) are only checked for
        presence and left out of the result. *lookup* replaces the
        connection lookup for ``exists``/``unique``.

        Raises:
            Forbidden: No rule contract for the caller's role
            ValidationFailed: Rule failures or a parent outside the organization
        """
        tenant = ctx.tenant or TenantContext()
        data = self.engine.validate(
            descriptor,
            "store",
            tenant.role_slug,
            payload,
            lookup=lookup or ConnectionLookup(self.db, conn),
            deferred=deferred,
        )
        values = self.writable(descriptor, {k: v for k, v in data.items() if k not in deferred})
        if self.owner_foreign_key(descriptor) not in deferred:
            self.scope(ctx).populate(conn, descriptor, values)
        return values

    def prepare_update(
        self,
        conn: Connection,
        ctx: RequestContext,
        descriptor: ModelDescriptor,
        entity: dict[str, Any] | None,
        payload: dict[str, Any],
        deferred: Collection[str] = (),
        lookup: RecordLookup | None = None,
    ) -> dict[str, Any]:
        """Validate an update payload; rows cannot move between organizations."""
        tenant = ctx.tenant or TenantContext()
        ignore = (descriptor.primary_key, entity[descriptor.primary_key]) if entity else None
        data = self.engine.validate(
            descriptor,
            "update",
            tenant.role_slug,
            payload,
            lookup=lookup or ConnectionLookup(self.db, conn),
            ignore=ignore,
            deferred=deferred,
        )
        values = self.writable(descriptor, {k: v for k, v in data.items() if k not in deferred})
        if tenant.organization is not None:
            if descriptor.tenancy_mode == "direct":
                values.pop(descriptor.organization_key, None)
            owner_fk = self.owner_foreign_key(descriptor)
            if owner_fk in values and owner_fk not in deferred:
                self.scope(ctx).check_parent(conn, descriptor, descriptor.owner_path[0], values[owner_fk])
        return values

    # ------------------------------------------------------------------
    # Writes: mutations (no authorization or validation here)
    # ------------------------------------------------------------------

    def perform_store(
        self, conn: Connection, ctx: RequestContext, descriptor: ModelDescriptor, values: dict[str, Any]
    ) -> dict[str, Any]:
        values = dict(values)
        if descriptor.timestamps:
            now = utcnow()
            values["created_at"] = now
            values["updated_at"] = now
        key = self.db.insert(conn, descriptor, values)
        row = self.db.find(conn, descriptor, key, trashed="with")
        self._audit(conn, ctx, descriptor, "created", key, None, row)
        return row

    def perform_update(
        self,
        conn: Connection,
        ctx: RequestContext,
        descriptor: ModelDescriptor,
        entity: dict[str, Any],
        values: dict[str, Any],
    ) -> dict[str, Any]:
        key = entity[descriptor.primary_key]
        changes = {k: v for k, v in values.items() if entity.get(k) != v}
        if not changes:
            return entity
        if descriptor.timestamps:
            changes["updated_at"] = utcnow()
        self.db.update(conn, descriptor, key, changes)
        row = self.db.find(conn, descriptor, key, trashed="with")
        self._audit(conn, ctx, descriptor, "updated", key, entity, row)
        return row

    def perform_destroy(
        self, conn: Connection, ctx: RequestContext, descriptor: ModelDescriptor, entity: dict[str, Any]
    ) -> dict[str, Any]:
        """Soft delete when the resource supports it, otherwise delete for good."""
        key = entity[descriptor.primary_key]
        if not descriptor.soft_deletes:
            self.db.delete(conn, descriptor, key)
            self._audit(conn, ctx, descriptor, "force_deleted", key, entity, None)
            return entity
        self.db.update(conn, descriptor, key, {"deleted_at": utcnow()})
        row = self.db.find(conn, descriptor, key, trashed="with")
        self._audit(conn, ctx, descriptor, "deleted", key, entity, None)
        return row

    def perform_restore(
        self, conn: Connection, ctx: RequestContext, descriptor: ModelDescriptor, entity: dict[str, Any]
    ) -> dict[str, Any]:
        key = entity[descriptor.primary_key]
        self.db.update(conn, descriptor, key, {"deleted_at": None})
        row = self.db.find(conn, descriptor, key, trashed="with")
        self._audit(conn, ctx, descriptor, "restored", key, None, row)
        return row

    def perform_force_delete(
        self, conn: Connection, ctx: RequestContext, descriptor: ModelDescriptor, entity: dict[str, Any]
    ) -> dict[str, Any]:
        key = entity[descriptor.primary_key]
        self.db.delete(conn, descriptor, key)
        self._audit(conn, ctx, descriptor, "force_deleted", key, entity, None)
        return entity

    def _audit(
        self,
        conn: Connection,
        ctx: RequestContext,
        descriptor: ModelDescriptor,
        action: str,
        key: Any,
        old: dict[str, Any] | None,
        new: dict[str, Any] | None,
    ) -> None:
        try:
            self.recorder.record(conn, descriptor, action, key, old, new, ctx.audit_context())
        except AuditWriteDegraded:
            ctx.audit_degraded = True

    # ------------------------------------------------------------------
    # Writes: actions
    # ------------------------------------------------------------------

    def store(self, ctx: RequestContext, slug: str, payload: dict[str, Any]) -> dict[str, Any]:
        descriptor = self.descriptor(slug, "store")
        with self.db.transaction() as conn:
            self.gate(conn, ctx, descriptor, "store")
            values = self.prepare_store(conn, ctx, descriptor, payload)
            row = self.perform_store(conn, ctx, descriptor, values)
        return self.serializer(ctx).serialize(descriptor, row)

    def update(self, ctx: RequestContext, slug: str, id: Any, payload: dict[str, Any]) -> dict[str, Any]:
        descriptor = self.descriptor(slug, "update")
        with self.db.transaction() as conn:
            self.gate(conn, ctx, descriptor, "update")
            entity = self.find_in_scope(conn, ctx, descriptor, id)
            self.authorize_entity(ctx, descriptor, "update", entity)
            values = self.prepare_update(conn, ctx, descriptor, entity, payload)
            row = self.perform_update(conn, ctx, descriptor, entity, values)
        return self.serializer(ctx).serialize(descriptor, row)

    def destroy(self, ctx: RequestContext, slug: str, id: Any) -> dict[str, Any]:
        descriptor = self.descriptor(slug, "destroy")
        with self.db.transaction() as conn:
            self.gate(conn, ctx, descriptor, "destroy")
            entity = self.find_in_scope(conn, ctx, descriptor, id)
            self.authorize_entity(ctx, descriptor, "destroy", entity)
            row = self.perform_destroy(conn, ctx, descriptor, entity)
        return self.serializer(ctx).serialize(descriptor, row)

    def restore(self, ctx: RequestContext, slug: str, id: Any) -> dict[str, Any]:
        descriptor = self.descriptor(slug, "restore")
        with self.db.transaction() as conn:
            self.gate(conn, ctx, descriptor, "restore")
            entity = self.find_in_scope(conn, ctx, descriptor, id, trashed="only")
            self.authorize_entity(ctx, descriptor, "restore", entity)
            row = self.perform_restore(conn, ctx, descriptor, entity)
        return self.serializer(ctx).serialize(descriptor, row)

    def force_delete(self, ctx: RequestContext, slug: str, id: Any) -> None:
        descriptor = self.descriptor(slug, "forceDelete")
        with self.db.transaction() as conn:
            self.gate(conn, ctx, descriptor, "forceDelete")
            entity = self.find_in_scope(conn, ctx, descriptor, id, trashed="with")
            self.authorize_entity(ctx, descriptor, "forceDelete", entity)
            self.perform_force_delete(conn, ctx, descriptor, entity)
