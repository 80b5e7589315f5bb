"""Users, organizations, roles and role assignments (system tables)."""

import time
import uuid
from datetime import UTC, datetime
from typing import Any

import sqlalchemy as sa
from sqlalchemy.engine import Connection

from lumina.auth.permissions import Role
from lumina.persistence.system import SystemTables


def utcnow() -> str:
    return datetime.now(UTC).isoformat()


class AccountStore:
    """Reads and writes the system tables. Every method takes a connection."""

    def __init__(self, system: SystemTables):
        self.t = system

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def find_user(self, conn: Connection, user_id: Any) -> dict[str, Any] | None:
        try:
            user_id = int(user_id)
        except (TypeError, ValueError):
            return None
        row = conn.execute(sa.select(self.t.users).where(self.t.users.c.id == user_id)).mappings().first()
        return dict(row) if row else None

    def find_user_by_email(self, conn: Connection, email: str) -> dict[str, Any] | None:
        users = self.t.users
        row = conn.execute(
            sa.select(users).where(sa.func.lower(users.c.email) == email.strip().lower())
        ).mappings().first()
        return dict(row) if row else None

    def create_user(
        self,
        conn: Connection,
        name: str,
        email: str,
        password_hash: str | None,
        verified: bool = False,
    ) -> dict[str, Any]:
        now = utcnow()
        result = conn.execute(self.t.users.insert().values(
            name=name,
            email=email.strip().lower(),
            password_hash=password_hash,
            email_verified_at=now if verified else None,
            created_at=now,
            updated_at=now,
        ))
        return self.find_user(conn, result.inserted_primary_key[0])

    def set_password(self, conn: Connection, user_id: int, password_hash: str) -> None:
        conn.execute(
            self.t.users.update()
            .where(self.t.users.c.id == user_id)
            .values(password_hash=password_hash, updated_at=utcnow())
        )

    # ------------------------------------------------------------------
    # Organizations
    # ------------------------------------------------------------------

    def create_organization(self, conn: Connection, name: str, slug: str) -> dict[str, Any]:
        now = utcnow()
        result = conn.execute(self.t.organizations.insert().values(
            name=name,
            slug=slug,
            uuid=str(uuid.uuid4()),
            is_active=True,
            created_at=now,
            updated_at=now,
        ))
        return self.find_organization(conn, "id", result.inserted_primary_key[0])

    def find_organization(
        self, conn: Connection, identifier: str, value: Any, *, active_only: bool = True
    ) -> dict[str, Any] | None:
        """Look an organization up by ``id``, ``slug`` or ``uuid``."""
        orgs = self.t.organizations
        if identifier == "id":
            try:
                value = int(value)
            except (TypeError, ValueError):
                return None
        stmt = sa.select(orgs).where(orgs.c[identifier] == value)
        if active_only:
            stmt = stmt.where(orgs.c.is_active.is_(True))
        row = conn.execute(stmt).mappings().first()
        return dict(row) if row else None

    # ------------------------------------------------------------------
    # Roles
    # ------------------------------------------------------------------

    @staticmethod
    def _to_role(row) -> Role:
        return Role(
            id=row["id"],
            slug=row["slug"],
            name=row["name"],
            permissions=tuple(row["permissions"] or ()),
        )

    def create_role(
        self, conn: Connection, slug: str, name: str | None = None, permissions: list[str] | None = None
    ) -> Role:
        now = utcnow()
        conn.execute(self.t.roles.insert().values(
            slug=slug,
            name=name or slug.replace("-", " ").title(),
            permissions=list(permissions or []),
            created_at=now,
            updated_at=now,
        ))
        return self.find_role(conn, slug)

    def find_role(self, conn: Connection, slug: str) -> Role | None:
        row = conn.execute(
            sa.select(self.t.roles).where(self.t.roles.c.slug == slug)
        ).mappings().first()
        return self._to_role(row) if row else None

    def assign_role(
        self, conn: Connection, user_id: int, role_id: int, organization_id: int | None = None
    ) -> None:
        conn.execute(self.t.user_roles.insert().values(
            user_id=user_id,
            role_id=role_id,
            organization_id=organization_id,
            created_at=utcnow(),
        ))

    def role_for(self, conn: Connection, user_id: int, organization_id: int | None) -> Role | None:
        """The caller's role in an organization (or global role when None).

        One role per (user, organization) is assumed; the earliest
        assignment wins if there are several.
        """
        ur, roles = self.t.user_roles, self.t.roles
        org_clause = (
            ur.c.organization_id.is_(None)
            if organization_id is None
            else ur.c.organization_id == organization_id
        )
        row = conn.execute(
            sa.select(roles)
            .join(ur, ur.c.role_id == roles.c.id)
            .where(ur.c.user_id == user_id, org_clause)
            .order_by(ur.c.id)
            .limit(1)
        ).mappings().first()
        return self._to_role(row) if row else None

    def memberships(self, conn: Connection, user_id: int) -> list[dict[str, Any]]:
        """Organizations the user belongs to, with their role slug."""
        ur, roles, orgs = self.t.user_roles, self.t.roles, self.t.organizations
        rows = conn.execute(
            sa.select(orgs.c.id, orgs.c.name, orgs.c.slug, orgs.c.uuid, roles.c.slug.label("role"))
            .select_from(ur.join(orgs, ur.c.organization_id == orgs.c.id).join(roles, ur.c.role_id == roles.c.id))
            .where(ur.c.user_id == user_id, orgs.c.is_active.is_(True))
            .order_by(orgs.c.id)
        ).mappings()
        return [dict(r) for r in rows]

    # ------------------------------------------------------------------
    # Token revocation
    # ------------------------------------------------------------------

    def revoke_token(self, conn: Connection, jti: str, expires_at: int) -> None:
        if self.is_revoked(conn, jti):
            return
        conn.execute(self.t.revoked_tokens.insert().values(jti=jti, expires_at=expires_at))
        # Expired entries can never match a valid token again
        conn.execute(
            self.t.revoked_tokens.delete().where(self.t.revoked_tokens.c.expires_at < int(time.time()))
        )

    def is_revoked(self, conn: Connection, jti: str) -> bool:
        rt = self.t.revoked_tokens
        return conn.execute(sa.select(rt.c.jti).where(rt.c.jti == jti)).first() is not None
