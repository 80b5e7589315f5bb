"""Authentication API endpoints."""

import logging
from collections.abc import Callable
from typing import Any

from fastapi import APIRouter, Body, Depends, Request
from pydantic import BaseModel

from lumina.auth.dependencies import require_authenticated
from lumina.auth.jwt_service import JWTError
from lumina.auth.middleware import get_token_claims
from lumina.auth.types import AuthUser
from lumina.errors import Unauthenticated, ValidationFailed
from lumina.services.resources import ConnectionLookup

logger = logging.getLogger(__name__)

REGISTER_RULES = {
    "name": "required|string|max:255",
    "email": "required|email|max:255|unique:users,email",
    "password": "required|string|min:8|confirmed",
}

RESET_RULES = {
    "token": "required|string",
    "password": "required|string|min:8|confirmed",
}


class LoginRequest(BaseModel):
    """Request body for login."""

    email: str
    password: str


class RefreshRequest(BaseModel):
    """Request body for token refresh."""

    refresh_token: str


class LoginResponse(BaseModel):
    """Response body for login and refresh."""

    access_token: str
    refresh_token: str
    token_type: str = "Bearer"
    expires_in: int


class RecoverRequest(BaseModel):
    """Request body for a password reset request."""

    email: str


def create_auth_router(get_container: Callable[[], Any]) -> APIRouter:
    """Create the auth router.

    Args:
        get_container: Function returning the application's Container
            (built on startup)

    Returns:
        Configured APIRouter
    """
    router = APIRouter(prefix="/api/auth", tags=["auth"])

    def _token_response(user_id: Any) -> LoginResponse:
        pair = get_container().jwt_service.generate_token_pair(user_id)
        return LoginResponse(
            access_token=pair.access_token,
            refresh_token=pair.refresh_token,
            token_type=pair.token_type,
            expires_in=pair.expires_in,
        )

    @router.post("/login", response_model=LoginResponse)
    async def login(request: LoginRequest) -> LoginResponse:
        """Authenticate user and return tokens.

        Raises:
            Unauthenticated: Unknown email or wrong password
        """
        container = get_container()
        passwords = container.password_service
        with container.db.transaction() as conn:
            user = container.accounts.find_user_by_email(conn, request.email)
            if user is None or not passwords.verify(request.password, user["password_hash"]):
                raise Unauthenticated("Invalid email or password")
            if passwords.needs_rehash(user["password_hash"]):
                container.accounts.set_password(conn, user["id"], passwords.hash(request.password))
        return _token_response(user["id"])

    @router.post("/refresh", response_model=LoginResponse)
    async def refresh(request: RefreshRequest) -> LoginResponse:
        """Exchange a refresh token for a new pair; the old refresh token is revoked."""
        container = get_container()
        try:
            claims = container.jwt_service.validate_refresh_token(request.refresh_token)
        except JWTError as e:
            raise Unauthenticated(f"Invalid refresh token: {e}")

        with container.db.transaction() as conn:
            if container.accounts.is_revoked(conn, claims.jti):
                raise Unauthenticated("Refresh token has been revoked")
            user = container.accounts.find_user(conn, claims.user_id)
            if user is None:
                raise Unauthenticated("User not found")
            container.accounts.revoke_token(conn, claims.jti, claims.exp)
        return _token_response(user["id"])

    @router.post("/logout")
    async def logout(
        http_request: Request,
        user: AuthUser = Depends(require_authenticated),
    ) -> dict[str, str]:
        """Revoke the access token used for this request."""
        container = get_container()
        claims = get_token_claims(http_request)
        with container.db.transaction() as conn:
            container.accounts.revoke_token(conn, claims.jti, claims.exp)
        logger.info("User %s logged out", user.id)
        return {"message": "Logged out"}

    @router.post("/register", status_code=201)
    async def register(payload: dict[str, Any] = Body(...)) -> dict[str, Any]:
        """Create an account. Password rules match the resource validation rules."""
        container = get_container()
        with container.db.transaction() as conn:
            result = container.engine.check(
                REGISTER_RULES, payload, lookup=ConnectionLookup(container.db, conn)
            )
            if not result.valid:
                raise ValidationFailed(result.errors)
            user = container.accounts.create_user(
                conn,
                name=result.data["name"],
                email=result.data["email"],
                password_hash=container.password_service.hash(result.data["password"]),
            )
        return AuthUser.from_row(user).to_dict()

    @router.get("/me")
    async def me(user: AuthUser = Depends(require_authenticated)) -> dict[str, Any]:
        """Current user with organization memberships (or global role)."""
        container = get_container()
        with container.db.connection() as conn:
            organizations = container.accounts.memberships(conn, user.id)
            role = container.accounts.role_for(conn, user.id, None)
        return {
            **user.to_dict(),
            "role": role.slug if role else None,
            "organizations": organizations,
        }

    @router.post("/password/recover")
    async def recover_password(request: RecoverRequest) -> dict[str, Any]:
        """Issue a reset token by mail.

        The response is the same whether or not the account exists.
        """
        container = get_container()
        with container.db.connection() as conn:
            user = container.accounts.find_user_by_email(conn, request.email)

        response: dict[str, Any] = {
            "message": "If an account exists with this email, a reset token has been sent."
        }
        if user is not None:
            token = container.jwt_service.generate_reset_token(user["id"])
            container.mailer.send_password_reset(user["email"], token)
            if container.config.expose_reset_tokens:
                response["reset_token"] = token
        return response

    @router.post("/password/reset")
    async def reset_password(payload: dict[str, Any] = Body(...)) -> dict[str, str]:
        """Set a new password with a reset token; each token works once."""
        container = get_container()
        result = container.engine.check(RESET_RULES, payload)
        if not result.valid:
            raise ValidationFailed(result.errors)

        invalid = ValidationFailed({"token": ["This password reset token is invalid."]})
        try:
            claims = container.jwt_service.validate_reset_token(result.data["token"])
        except JWTError:
            raise invalid

        with container.db.transaction() as conn:
            if container.accounts.is_revoked(conn, claims.jti):
                raise invalid
            user = container.accounts.find_user(conn, claims.user_id)
            if user is None:
                raise invalid
            container.accounts.set_password(
                conn, user["id"], container.password_service.hash(result.data["password"])
            )
            container.accounts.revoke_token(conn, claims.jti, claims.exp)
        return {"message": "Password has been reset successfully"}

    return router
