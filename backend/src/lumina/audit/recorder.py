"""Audit trail for mutating operations.

Entries are written on the caller's connection inside a SAVEPOINT: a batch
rollback removes them together with the mutation, while a failed audit
insert only rolls back itself.
"""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

import sqlalchemy as sa
from sqlalchemy.engine import Connection
from sqlalchemy.exc import SQLAlchemyError

from lumina.errors import AuditWriteDegraded
from lumina.registry.types import ModelDescriptor

logger = logging.getLogger(__name__)

AUDIT_ACTIONS = ("created", "updated", "deleted", "restored", "force_deleted")

# Bookkeeping columns that never make an update worth auditing
IGNORED_ON_UPDATE = frozenset({"created_at", "updated_at"})


@dataclass
class AuditContext:
    user_id: int | None = None
    organization_id: int | None = None
    ip_address: str | None = None
    user_agent: str | None = None


def scrub(value: Any, excluded: frozenset[str]) -> Any:
    """Drop excluded keys at every depth of a JSON-like value."""
    if isinstance(value, dict):
        return {k: scrub(v, excluded) for k, v in value.items() if k not in excluded}
    if isinstance(value, list):
        return [scrub(v, excluded) for v in value]
    return value


def diff(old: dict[str, Any], new: dict[str, Any]) -> tuple[dict[str, Any], dict[str, Any]]:
    """Changed fields only, as (old values, new values)."""
    changed = [
        k for k in new
        if k not in IGNORED_ON_UPDATE and old.get(k) != new.get(k)
    ]
    return {k: old.get(k) for k in changed}, {k: new.get(k) for k in changed}


class AuditRecorder:
    def __init__(self, audit_logs: sa.Table, exclude: frozenset[str]):
        self.audit_logs = audit_logs
        self.exclude = exclude

    def record(
        self,
        conn: Connection,
        descriptor: ModelDescriptor,
        action: str,
        entity_id: Any,
        old: dict[str, Any] | None,
        new: dict[str, Any] | None,
        context: AuditContext,
    ) -> bool:
        """Write one entry. Returns False when nothing needed recording.

        Raises:
            AuditWriteDegraded: The insert failed; the mutation stands
        """
        if not descriptor.audit.enabled:
            return False

        excluded = self.exclude | descriptor.audit.exclude
        old_values = scrub(old, excluded) if old is not None else None
        new_values = scrub(new, excluded) if new is not None else None
        if action == "updated":
            old_values, new_values = diff(old_values or {}, new_values or {})
            if not new_values:
                return False

        try:
            with conn.begin_nested():
                self._insert(conn, {
                    "auditable_type": descriptor.slug,
                    "auditable_id": str(entity_id),
                    "action": action,
                    "old_values": old_values,
                    "new_values": new_values,
                    "user_id": context.user_id,
                    "organization_id": context.organization_id,
                    "ip_address": context.ip_address,
                    "user_agent": context.user_agent,
                    "created_at": datetime.now(UTC).isoformat(),
                })
        except SQLAlchemyError as exc:
            logger.error(
                "Audit write failed for %s %s#%s: %s", action, descriptor.slug, entity_id, exc
            )
            raise AuditWriteDegraded(str(exc)) from exc
        return True

    def _insert(self, conn: Connection, values: dict[str, Any]) -> None:
        conn.execute(self.audit_logs.insert().values(**values))

    def history_statement(self, descriptor: ModelDescriptor, entity_id: Any) -> sa.Select:
        logs = self.audit_logs
        return (
            sa.select(logs)
            .where(logs.c.auditable_type == descriptor.slug, logs.c.auditable_id == str(entity_id))
            .order_by(logs.c.id.desc())
        )
