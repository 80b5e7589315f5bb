"""Multi-tenancy: organization resolution and row scoping."""

from lumina.tenancy.resolver import TenantResolver, subdomain_of
from lumina.tenancy.scope import TenantContext, TenantScope

__all__ = ["TenantContext", "TenantResolver", "TenantScope", "subdomain_of"]
