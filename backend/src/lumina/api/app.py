"""FastAPI application."""

import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from lumina.api.errors import install_error_handlers
from lumina.api.routes import create_resource_router
from lumina.auth.endpoints import create_auth_router
from lumina.auth.jwt_service import JWTService
from lumina.auth.middleware import AuthMiddleware
from lumina.config import LuminaConfig
from lumina.container import Container
from lumina.invitations.endpoints import create_invitations_router

logger = logging.getLogger(__name__)


def create_app(config: LuminaConfig | None = None, **container_options: Any) -> FastAPI:
    """Build the application for one project.

    Configuration is read eagerly because it decides the route layout;
    the registry, database and services are built on startup.

    Args:
        config: Project configuration (default: ``LuminaConfig.from_env()``)
        **container_options: Passed to ``Container.build``
    """
    config = config or LuminaConfig.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Initialize on startup, cleanup on shutdown."""
        app.state.container = Container.build(config, **container_options)
        yield
        app.state.container.close()

    app = FastAPI(title="Lumina API", lifespan=lifespan)

    def get_container() -> Container:
        return app.state.container

    app.add_middleware(
        AuthMiddleware,
        jwt_service=JWTService(config.secret_key),
        load_user=lambda claims: get_container().load_user(claims),
    )
    if config.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=config.cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
            expose_headers=["X-Current-Page", "X-Last-Page", "X-Per-Page", "X-Total", "X-Audit-Degraded"],
        )
    install_error_handlers(app)

    # Fixed routes first: resource routes match any leading segment
    app.include_router(create_auth_router(get_container))
    if config.tenancy.enabled:
        app.include_router(create_invitations_router(get_container, config.tenancy))
    app.include_router(create_resource_router(get_container, config))
    return app
