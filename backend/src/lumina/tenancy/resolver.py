"""Resolve the active organization for a request."""

import ipaddress
import logging

from sqlalchemy.engine import Connection

from lumina.auth.accounts import AccountStore
from lumina.auth.types import AuthUser
from lumina.config import TenancyConfig
from lumina.errors import TenantNotFound
from lumina.tenancy.scope import TenantContext

logger = logging.getLogger(__name__)


def subdomain_of(host: str | None) -> str | None:
    """``acme.example.com:8000`` -> ``acme``; bare hosts and IPs have none."""
    if not host:
        return None
    hostname = host.split(":", 1)[0].strip().lower()
    try:
        ipaddress.ip_address(hostname)
        return None
    except ValueError:
        pass
    parts = hostname.split(".")
    if len(parts) < 3 and not (len(parts) == 2 and parts[1] == "localhost"):
        return None
    return parts[0] or None


class TenantResolver:
    """Derives the TenantContext from a route segment or subdomain.

    A missing organization and a non-member caller raise the same
    TenantNotFound so the two cannot be told apart.
    """

    def __init__(self, config: TenancyConfig, accounts: AccountStore):
        self.config = config
        self.accounts = accounts

    def identifier_from(self, route_value: str | None, host: str | None) -> str | None:
        if self.config.strategy == "route":
            return route_value
        if self.config.strategy == "subdomain":
            return subdomain_of(host)
        return None

    def resolve(self, conn: Connection, identifier: str | None, user: AuthUser | None) -> TenantContext:
        if not self.config.enabled:
            role = self.accounts.role_for(conn, user.id, None) if user else None
            return TenantContext(organization=None, role=role)

        if not identifier:
            raise TenantNotFound()
        organization = self.accounts.find_organization(conn, self.config.identifier, identifier)
        if organization is None:
            logger.debug("Organization '%s' not found", identifier)
            raise TenantNotFound()
        if user is None:
            return TenantContext(organization=organization, role=None)

        role = self.accounts.role_for(conn, user.id, organization["id"])
        if role is None:
            logger.debug("User %s is not a member of organization %s", user.id, organization["id"])
            raise TenantNotFound()
        return TenantContext(organization=organization, role=role)
