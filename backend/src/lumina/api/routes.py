"""HTTP routes for every registered resource and the nested batch endpoint.

Routes take the resource slug as a path segment and hand it to the
ResourceService; unknown slugs and excluded actions are 404s from the
service, not from routing.
"""

from collections.abc import Callable
from typing import Any

from fastapi import APIRouter, Body, Depends, Request
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel

from lumina.auth.middleware import get_request_user
from lumina.config import LuminaConfig
from lumina.query.compiler import Page
from lumina.query.directives import QueryDirectives
from lumina.services.context import RequestContext


class NestedRequest(BaseModel):
    """Request body for a nested batch.

    Operations are checked by the executor so malformed steps report
    per-step paths.
    """

    operations: Any = None


def api_prefix(config: LuminaConfig) -> str:
    if config.tenancy.strategy == "route":
        return "/api/{organization}"
    return "/api"


def _response_headers(ctx: RequestContext, page: Page | None = None) -> dict[str, str]:
    headers = page.headers() if page is not None else {}
    if ctx.audit_degraded:
        headers["X-Audit-Degraded"] = "true"
    return headers


def create_resource_router(get_container: Callable[[], Any], config: LuminaConfig) -> APIRouter:
    """Create the resource router.

    Registration order matters: the nested endpoint and the ``trashed``
    listing come before the ``{id}`` routes that would otherwise match them.
    """
    router = APIRouter(prefix=api_prefix(config), tags=["resources"])

    def request_context(request: Request) -> RequestContext:
        resolver = get_container().resolver
        organization = resolver.identifier_from(
            request.path_params.get("organization"), request.headers.get("host")
        )
        return RequestContext(
            user=get_request_user(request),
            organization=organization,
            ip_address=request.client.host if request.client else None,
            user_agent=request.headers.get("user-agent"),
        )

    def directives(request: Request) -> QueryDirectives:
        return QueryDirectives.from_query_params(request.query_params.multi_items())

    def listing(ctx: RequestContext, page: Page) -> JSONResponse:
        return JSONResponse(content=page.records, headers=_response_headers(ctx, page))

    def record(ctx: RequestContext, data: dict[str, Any], status_code: int = 200) -> JSONResponse:
        return JSONResponse(content=data, status_code=status_code, headers=_response_headers(ctx))

    @router.post(f"/{config.nested.path}")
    async def nested(
        payload: NestedRequest,
        ctx: RequestContext = Depends(request_context),
    ) -> JSONResponse:
        """Run create/update/delete operations atomically."""
        results = get_container().nested.execute(ctx, payload.operations)
        return record(ctx, {"results": results})

    @router.get("/{resource}")
    async def index(
        resource: str,
        ctx: RequestContext = Depends(request_context),
        query: QueryDirectives = Depends(directives),
    ) -> JSONResponse:
        return listing(ctx, get_container().resources.index(ctx, resource, query))

    @router.post("/{resource}", status_code=201)
    async def store(
        resource: str,
        payload: dict[str, Any] = Body(...),
        ctx: RequestContext = Depends(request_context),
    ) -> JSONResponse:
        return record(ctx, get_container().resources.store(ctx, resource, payload), status_code=201)

    @router.get("/{resource}/trashed")
    async def trashed(
        resource: str,
        ctx: RequestContext = Depends(request_context),
        query: QueryDirectives = Depends(directives),
    ) -> JSONResponse:
        return listing(ctx, get_container().resources.trashed(ctx, resource, query))

    @router.get("/{resource}/{id}")
    async def show(
        resource: str,
        id: str,
        ctx: RequestContext = Depends(request_context),
        query: QueryDirectives = Depends(directives),
    ) -> JSONResponse:
        return record(ctx, get_container().resources.show(ctx, resource, id, query))

    @router.api_route("/{resource}/{id}", methods=["PUT", "PATCH"])
    async def update(
        resource: str,
        id: str,
        payload: dict[str, Any] = Body(...),
        ctx: RequestContext = Depends(request_context),
    ) -> JSONResponse:
        return record(ctx, get_container().resources.update(ctx, resource, id, payload))

    @router.delete("/{resource}/{id}")
    async def destroy(
        resource: str,
        id: str,
        ctx: RequestContext = Depends(request_context),
    ) -> JSONResponse:
        return record(ctx, get_container().resources.destroy(ctx, resource, id))

    @router.post("/{resource}/{id}/restore")
    async def restore(
        resource: str,
        id: str,
        ctx: RequestContext = Depends(request_context),
    ) -> JSONResponse:
        return record(ctx, get_container().resources.restore(ctx, resource, id))

    @router.delete("/{resource}/{id}/force-delete", status_code=204)
    async def force_delete(
        resource: str,
        id: str,
        ctx: RequestContext = Depends(request_context),
    ) -> Response:
        get_container().resources.force_delete(ctx, resource, id)
        return Response(status_code=204, headers=_response_headers(ctx))

    @router.get("/{resource}/{id}/audit")
    async def audit(
        resource: str,
        id: str,
        page: int | None = None,
        per_page: int | None = None,
        ctx: RequestContext = Depends(request_context),
    ) -> JSONResponse:
        history = get_container().resources.audit_history(ctx, resource, id, page, per_page)
        return listing(ctx, history)

    return router
