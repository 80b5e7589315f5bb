"""Authentication and authorization for Lumina."""

from lumina.auth.types import (
    AuthUser,
    TokenClaims,
    TokenPair,
)
from lumina.auth.password import PasswordService
from lumina.auth.jwt_service import JWTService
from lumina.auth.middleware import AuthMiddleware, get_request_user
from lumina.auth.dependencies import (
    get_current_user,
    require_authenticated,
)
from lumina.auth.permissions import PermissionSet, Role
from lumina.auth.policies import (
    Authorizer,
    PolicyContext,
    PolicyRegistry,
    ResourcePolicy,
    policy,
)

__all__ = [
    "AuthUser",
    "TokenClaims",
    "TokenPair",
    "PasswordService",
    "JWTService",
    "AuthMiddleware",
    "get_request_user",
    "get_current_user",
    "require_authenticated",
    "PermissionSet",
    "Role",
    "Authorizer",
    "PolicyContext",
    "PolicyRegistry",
    "ResourcePolicy",
    "policy",
]
