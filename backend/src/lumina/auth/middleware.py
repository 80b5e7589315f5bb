"""Authentication middleware for FastAPI."""

import logging
from collections.abc import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from lumina.auth.jwt_service import JWTError, JWTService
from lumina.auth.types import AuthUser, TokenClaims

logger = logging.getLogger(__name__)

UserLoader = Callable[[TokenClaims], AuthUser | None]


class AuthMiddleware(BaseHTTPMiddleware):
    """Middleware that extracts a Bearer JWT and sets the request user.

    The middleware:
    1. Extracts Bearer token from Authorization header
    2. Decodes and validates the JWT (access tokens only)
    3. Loads the user, skipping revoked tokens and deleted users
    4. Sets request.state.user and request.state.token_claims

    The middleware does NOT reject unauthenticated requests; the request
    pipeline decides per action whether a user is needed.
    """

    def __init__(self, app, jwt_service: JWTService, load_user: UserLoader):
        super().__init__(app)
        self._jwt_service = jwt_service
        self._load_user = load_user

    async def dispatch(self, request: Request, call_next) -> Response:
        request.state.user = None
        request.state.token_claims = None

        if self._should_skip_auth(request.url.path):
            return await call_next(request)

        auth_header = request.headers.get("Authorization")
        if auth_header and auth_header.startswith("Bearer "):
            token = auth_header[7:]
            try:
                claims = self._jwt_service.validate_access_token(token)
            except JWTError as e:
                logger.debug("Rejected bearer token: %s", e)
                claims = None

            if claims is not None:
                user = self._load_user(claims)
                if user is not None:
                    request.state.token_claims = claims
                    request.state.user = user

        return await call_next(request)

    def _should_skip_auth(self, path: str) -> bool:
        """Login and refresh validate credentials themselves."""
        skip_paths = [
            "/api/auth/login",
            "/api/auth/refresh",
            "/docs",
            "/openapi.json",
            "/redoc",
        ]
        return any(path.startswith(p) for p in skip_paths)


def get_request_user(request: Request) -> AuthUser | None:
    return getattr(request.state, "user", None)


def get_token_claims(request: Request) -> TokenClaims | None:
    return getattr(request.state, "token_claims", None)
