"""FastAPI dependencies for authentication."""

from fastapi import Request

from lumina.auth.middleware import get_request_user
from lumina.auth.types import AuthUser
from lumina.errors import Unauthenticated


def get_current_user(request: Request) -> AuthUser | None:
    """Soft dependency: the current user, or None if not authenticated."""
    return get_request_user(request)


def require_authenticated(request: Request) -> AuthUser:
    """Dependency that requires authentication.

    Raises:
        Unauthenticated: rendered as 401 with ``WWW-Authenticate: Bearer``
    """
    user = get_request_user(request)
    if user is None:
        raise Unauthenticated()
    return user
