"""Invitations into organizations (tenancy enabled only)."""

from lumina.invitations.endpoints import create_invitations_router
from lumina.invitations.service import InvitationService

__all__ = ["InvitationService", "create_invitations_router"]
