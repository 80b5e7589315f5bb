"""Organization scoping for resource queries and writes."""

from dataclasses import dataclass
from typing import Any

import sqlalchemy as sa
from sqlalchemy.engine import Connection

from lumina.auth.permissions import Role
from lumina.errors import ValidationFailed
from lumina.query.relations import RelationGraph
from lumina.registry.types import ModelDescriptor


@dataclass
class TenantContext:
    """The active organization and the caller's role within it.

    ``organization`` is None when tenancy is disabled; ``role`` is None for
    unauthenticated callers.
    """

    organization: dict[str, Any] | None = None
    role: Role | None = None

    @property
    def organization_id(self) -> int | None:
        return self.organization["id"] if self.organization else None

    @property
    def role_slug(self) -> str | None:
        return self.role.slug if self.role else None


class TenantScope:
    """Builds WHERE clauses restricting rows to the active organization."""

    def __init__(self, graph: RelationGraph, tenant: TenantContext):
        self.graph = graph
        self.tenant = tenant

    def clause(self, descriptor: ModelDescriptor, table: sa.FromClause) -> sa.ColumnElement | None:
        """Scope clause for *table*, or None when the resource is not scoped.

        Directly owned resources compare their organization column; indirectly
        owned ones get a correlated EXISTS along the owner path.
        """
        org_id = self.tenant.organization_id
        if org_id is None:
            return None
        if descriptor.tenancy_mode == "direct":
            return table.c[descriptor.organization_key] == org_id
        if descriptor.tenancy_mode == "owner":
            return self.graph.exists_along(
                descriptor,
                table,
                descriptor.owner_path,
                lambda owner, alias: alias.c[owner.organization_key] == org_id,
            )
        return None

    __call__ = clause

    def populate(self, conn: Connection, descriptor: ModelDescriptor, data: dict[str, Any]) -> None:
        """Fill in / verify ownership of a row about to be created.

        Directly owned rows get the organization id. Indirectly owned rows
        must point their first owner hop at a parent inside the scope.

        Raises:
            ValidationFailed: The parent reference is outside the organization
        """
        org_id = self.tenant.organization_id
        if org_id is None:
            return
        if descriptor.tenancy_mode == "direct":
            data[descriptor.organization_key] = org_id
        elif descriptor.tenancy_mode == "owner":
            relation = descriptor.relations[descriptor.owner_path[0]]
            self.check_parent(conn, descriptor, relation.name, data.get(relation.foreign_key))

    def check_parent(self, conn: Connection, descriptor: ModelDescriptor, relation_name: str, value: Any) -> None:
        relation = descriptor.relations[relation_name]
        if value is None:
            raise ValidationFailed({
                relation.foreign_key: [f"The {relation.foreign_key.replace('_', ' ')} field is required."]
            })
        parent = self.graph.target(relation)
        table = self.graph.tables[parent.slug]
        clauses = [table.c[parent.primary_key] == value]
        scoped = self.clause(parent, table)
        if scoped is not None:
            clauses.append(scoped)
        if parent.soft_deletes:
            clauses.append(table.c.deleted_at.is_(None))
        found = conn.execute(sa.select(sa.literal(1)).select_from(table).where(*clauses)).first()
        if found is None:
            raise ValidationFailed({
                relation.foreign_key: [f"The selected {relation.foreign_key.replace('_', ' ')} is invalid."]
            })
