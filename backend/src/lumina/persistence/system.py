"""System tables shared by every Lumina project.

Resource tables are generated from descriptors; these are fixed.
"""

from dataclasses import dataclass

import sqlalchemy as sa


@dataclass
class SystemTables:
    users: sa.Table
    organizations: sa.Table
    roles: sa.Table
    user_roles: sa.Table
    audit_logs: sa.Table
    invitations: sa.Table
    revoked_tokens: sa.Table


def build_system_tables(metadata: sa.MetaData) -> SystemTables:
    """Define the system tables on *metadata*."""
    users = sa.Table(
        "users", metadata,
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255), nullable=False, unique=True),
        sa.Column("password_hash", sa.String(255), nullable=True),
        sa.Column("email_verified_at", sa.String(32), nullable=True),
        sa.Column("created_at", sa.String(32), nullable=True),
        sa.Column("updated_at", sa.String(32), nullable=True),
    )
    organizations = sa.Table(
        "organizations", metadata,
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("slug", sa.String(255), nullable=False, unique=True),
        sa.Column("uuid", sa.String(36), nullable=False, unique=True),
        sa.Column("is_active", sa.Boolean, nullable=False, default=True),
        sa.Column("created_at", sa.String(32), nullable=True),
        sa.Column("updated_at", sa.String(32), nullable=True),
    )
    roles = sa.Table(
        "roles", metadata,
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("slug", sa.String(255), nullable=False, unique=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("permissions", sa.JSON, nullable=False, default=list),
        sa.Column("created_at", sa.String(32), nullable=True),
        sa.Column("updated_at", sa.String(32), nullable=True),
    )
    user_roles = sa.Table(
        "user_roles", metadata,
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("user_id", sa.Integer, sa.ForeignKey("users.id"), nullable=False, index=True),
        sa.Column("organization_id", sa.Integer, sa.ForeignKey("organizations.id"), nullable=True),
        sa.Column("role_id", sa.Integer, sa.ForeignKey("roles.id"), nullable=False),
        sa.Column("created_at", sa.String(32), nullable=True),
    )
    audit_logs = sa.Table(
        "audit_logs", metadata,
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("auditable_type", sa.String(255), nullable=False),
        sa.Column("auditable_id", sa.String(64), nullable=False),
        sa.Column("action", sa.String(32), nullable=False),
        sa.Column("old_values", sa.JSON, nullable=True),
        sa.Column("new_values", sa.JSON, nullable=True),
        sa.Column("user_id", sa.Integer, nullable=True),
        sa.Column("organization_id", sa.Integer, nullable=True),
        sa.Column("ip_address", sa.String(45), nullable=True),
        sa.Column("user_agent", sa.String(1024), nullable=True),
        sa.Column("created_at", sa.String(32), nullable=False),
        sa.Index("ix_audit_logs_auditable", "auditable_type", "auditable_id"),
    )
    invitations = sa.Table(
        "invitations", metadata,
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("organization_id", sa.Integer, sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("role_id", sa.Integer, sa.ForeignKey("roles.id"), nullable=False),
        sa.Column("token", sa.String(128), nullable=False, unique=True),
        sa.Column("invited_by", sa.Integer, nullable=True),
        sa.Column("expires_at", sa.String(32), nullable=False),
        sa.Column("accepted_at", sa.String(32), nullable=True),
        sa.Column("created_at", sa.String(32), nullable=True),
    )
    revoked_tokens = sa.Table(
        "revoked_tokens", metadata,
        sa.Column("jti", sa.String(64), primary_key=True),
        sa.Column("expires_at", sa.Integer, nullable=False),
    )
    return SystemTables(
        users=users,
        organizations=organizations,
        roles=roles,
        user_roles=user_roles,
        audit_logs=audit_logs,
        invitations=invitations,
        revoked_tokens=revoked_tokens,
    )
