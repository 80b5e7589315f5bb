"""Per-request context passed through the pipeline."""

from dataclasses import dataclass

from lumina.audit.recorder import AuditContext
from lumina.auth.types import AuthUser
from lumina.tenancy.scope import TenantContext


@dataclass
class RequestContext:
    """Caller identity and request facts; the tenant is resolved lazily.

    Attributes:
        user: Authenticated user, or None
        organization: Raw organization identifier from the route or host
        tenant: Resolved organization and role (set by the pipeline)
        audit_degraded: Set when an audit entry could not be written
    """

    user: AuthUser | None = None
    organization: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    tenant: TenantContext | None = None
    audit_degraded: bool = False

    def audit_context(self) -> AuditContext:
        return AuditContext(
            user_id=self.user.id if self.user else None,
            organization_id=self.tenant.organization_id if self.tenant else None,
            ip_address=self.ip_address,
            user_agent=self.user_agent,
        )
