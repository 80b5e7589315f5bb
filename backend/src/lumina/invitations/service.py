"""Organization invitations.

Members holding ``invitations.*`` permissions invite people by email; the
invitee accepts with the emailed token and receives the invited role in
that organization.
"""

import logging
import secrets
from datetime import UTC, datetime, timedelta
from typing import Any

import sqlalchemy as sa

from lumina.auth.accounts import AccountStore, utcnow
from lumina.auth.types import AuthUser
from lumina.errors import Forbidden, RecordNotFound, Unauthenticated, ValidationFailed
from lumina.mailer import Mailer
from lumina.persistence.database import Database
from lumina.services.context import RequestContext
from lumina.services.resources import ConnectionLookup
from lumina.tenancy.resolver import TenantResolver
from lumina.tenancy.scope import TenantContext
from lumina.validation.engine import ValidationEngine

logger = logging.getLogger(__name__)

INVITATION_TTL = timedelta(days=7)

INVITATION_RULES = {
    "email": "required|email|max:255",
    "role": "required|string|exists:roles,slug",
}


class InvitationService:
    def __init__(
        self,
        db: Database,
        accounts: AccountStore,
        resolver: TenantResolver,
        engine: ValidationEngine,
        mailer: Mailer,
    ):
        self.db = db
        self.accounts = accounts
        self.resolver = resolver
        self.engine = engine
        self.mailer = mailer

    @property
    def table(self) -> sa.Table:
        return self.db.system.invitations

    def _tenant(self, conn, ctx: RequestContext, action: str) -> TenantContext:
        if ctx.user is None:
            raise Unauthenticated()
        tenant = self.resolver.resolve(conn, ctx.organization, ctx.user)
        ctx.tenant = tenant
        if tenant.role is None or not tenant.role.permission_set.allows("invitations", action):
            raise Forbidden()
        return tenant

    @staticmethod
    def to_dict(row: dict[str, Any], role_slug: str | None = None) -> dict[str, Any]:
        """Public shape of an invitation; the token only travels by mail."""
        data = {k: v for k, v in row.items() if k != "token"}
        if role_slug is not None:
            data["role"] = role_slug
        return data

    def create(self, ctx: RequestContext, payload: dict[str, Any]) -> dict[str, Any]:
        """Invite an email address to the active organization.

        Raises:
            Unauthenticated, TenantNotFound, Forbidden
            ValidationFailed: Bad email or unknown role
        """
        with self.db.transaction() as conn:
            tenant = self._tenant(conn, ctx, "store")
            result = self.engine.check(
                INVITATION_RULES, payload, lookup=ConnectionLookup(self.db, conn)
            )
            if not result.valid:
                raise ValidationFailed(result.errors)

            email = result.data["email"].strip().lower()
            role = self.accounts.find_role(conn, result.data["role"])
            organization = tenant.organization
            now = datetime.now(UTC)
            token = secrets.token_urlsafe(32)
            inserted = conn.execute(self.table.insert().values(
                organization_id=organization["id"],
                email=email,
                role_id=role.id,
                token=token,
                invited_by=ctx.user.id,
                expires_at=(now + INVITATION_TTL).isoformat(),
                created_at=now.isoformat(),
            ))
            row = self._find(conn, self.table.c.id == inserted.inserted_primary_key[0])

        logger.info("Invited %s to organization %s", email, organization["id"])
        self.mailer.send_invitation(email, organization["name"], token)
        return self.to_dict(row, role.slug)

    def pending(self, ctx: RequestContext) -> list[dict[str, Any]]:
        roles = self.db.system.roles
        with self.db.connection() as conn:
            tenant = self._tenant(conn, ctx, "index")
            rows = conn.execute(
                sa.select(self.table, roles.c.slug.label("role"))
                .join(roles, roles.c.id == self.table.c.role_id)
                .where(
                    self.table.c.organization_id == tenant.organization_id,
                    self.table.c.accepted_at.is_(None),
                    self.table.c.expires_at > utcnow(),
                )
                .order_by(self.table.c.id)
            ).mappings()
            return [self.to_dict(dict(r)) for r in rows]

    def cancel(self, ctx: RequestContext, invitation_id: Any) -> None:
        """Remove a pending invitation of the active organization.

        Raises:
            RecordNotFound: Unknown, accepted, or from another organization
        """
        try:
            invitation_id = int(invitation_id)
        except (TypeError, ValueError):
            raise RecordNotFound()
        with self.db.transaction() as conn:
            tenant = self._tenant(conn, ctx, "destroy")
            deleted = conn.execute(
                self.table.delete().where(
                    self.table.c.id == invitation_id,
                    self.table.c.organization_id == tenant.organization_id,
                    self.table.c.accepted_at.is_(None),
                )
            )
            if deleted.rowcount == 0:
                raise RecordNotFound()

    def accept(self, user: AuthUser | None, token: str) -> dict[str, Any]:
        """Join the inviting organization with the invited role.

        Raises:
            Unauthenticated: No caller
            RecordNotFound: Unknown, expired or already accepted token
            Forbidden: The invitation was issued to another email address
        """
        if user is None:
            raise Unauthenticated()
        with self.db.transaction() as conn:
            invitation = self._find(conn, self.table.c.token == token)
            if (
                invitation is None
                or invitation["accepted_at"] is not None
                or invitation["expires_at"] <= utcnow()
            ):
                raise RecordNotFound("Invitation not found")
            if invitation["email"] != user.email.strip().lower():
                raise Forbidden("This invitation was issued to a different email address.")

            organization_id = invitation["organization_id"]
            if self.accounts.role_for(conn, user.id, organization_id) is None:
                self.accounts.assign_role(conn, user.id, invitation["role_id"], organization_id)
            conn.execute(
                self.table.update()
                .where(self.table.c.id == invitation["id"])
                .values(accepted_at=utcnow())
            )
            organization = self.accounts.find_organization(conn, "id", organization_id)
            role = self.accounts.role_for(conn, user.id, organization_id)

        logger.info("User %s joined organization %s", user.id, organization_id)
        return {"organization": organization, "role": role.slug if role else None}

    def _find(self, conn, clause) -> dict[str, Any] | None:
        row = conn.execute(sa.select(self.table).where(clause)).mappings().first()
        return dict(row) if row else None
