"""Invitation API endpoints."""

from collections.abc import Callable
from typing import Any

from fastapi import APIRouter, Body, Depends, Request
from fastapi.responses import Response

from lumina.auth.dependencies import get_current_user
from lumina.auth.middleware import get_request_user
from lumina.auth.types import AuthUser
from lumina.config import TenancyConfig
from lumina.services.context import RequestContext


def create_invitations_router(get_container: Callable[[], Any], tenancy: TenancyConfig) -> APIRouter:
    """Create the invitations router (only mounted when tenancy is enabled)."""
    router = APIRouter(prefix="/api", tags=["invitations"])
    prefix = "/{organization}/invitations" if tenancy.strategy == "route" else "/invitations"

    def request_context(request: Request) -> RequestContext:
        organization = get_container().resolver.identifier_from(
            request.path_params.get("organization"), request.headers.get("host")
        )
        return RequestContext(user=get_request_user(request), organization=organization)

    @router.post("/invitations/{token}/accept")
    async def accept_invitation(
        token: str,
        user: AuthUser | None = Depends(get_current_user),
    ) -> dict[str, Any]:
        return get_container().invitations.accept(user, token)

    @router.get(prefix)
    async def list_invitations(ctx: RequestContext = Depends(request_context)) -> list[dict[str, Any]]:
        return get_container().invitations.pending(ctx)

    @router.post(prefix, status_code=201)
    async def create_invitation(
        payload: dict[str, Any] = Body(...),
        ctx: RequestContext = Depends(request_context),
    ) -> dict[str, Any]:
        return get_container().invitations.create(ctx, payload)

    @router.delete(prefix + "/{id}", status_code=204)
    async def cancel_invitation(id: str, ctx: RequestContext = Depends(request_context)) -> Response:
        get_container().invitations.cancel(ctx, id)
        return Response(status_code=204)

    return router
