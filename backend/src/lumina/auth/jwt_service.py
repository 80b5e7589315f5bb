"""Signed bearer tokens: access, refresh and password reset.

All three kinds share one HS256 secret and differ only in their ``type``
claim and lifetime. Each token gets its own ``jti`` so that logout,
refresh rotation and password resets can revoke exactly one token.
"""

import time
import uuid

import jwt

from lumina.auth.types import TokenClaims, TokenPair

ACCESS = "access"
REFRESH = "refresh"
RESET = "reset"


class JWTError(Exception):
    """Base exception for JWT-related errors."""


class TokenExpiredError(JWTError):
    pass


class InvalidTokenError(JWTError):
    """Bad signature, malformed token or a token of the wrong type."""


class JWTService:
    ACCESS_TOKEN_TTL = 15 * 60
    REFRESH_TOKEN_TTL = 7 * 24 * 60 * 60
    RESET_TOKEN_TTL = 60 * 60

    def __init__(self, secret_key: str, algorithm: str = "HS256"):
        self._secret_key = secret_key
        self._algorithm = algorithm

    def _ttl(self, token_type: str) -> int:
        return {
            ACCESS: self.ACCESS_TOKEN_TTL,
            REFRESH: self.REFRESH_TOKEN_TTL,
            RESET: self.RESET_TOKEN_TTL,
        }[token_type]

    def issue(self, user_id, token_type: str) -> str:
        issued_at = int(time.time())
        return jwt.encode(
            {
                "sub": str(user_id),
                "type": token_type,
                "jti": uuid.uuid4().hex,
                "iat": issued_at,
                "exp": issued_at + self._ttl(token_type),
            },
            self._secret_key,
            algorithm=self._algorithm,
        )

    def generate_token_pair(self, user_id) -> TokenPair:
        """Access and refresh token for *user_id*.

        No organization is embedded; it comes from the route or host of
        every request.
        """
        return TokenPair(
            access_token=self.issue(user_id, ACCESS),
            refresh_token=self.issue(user_id, REFRESH),
            expires_in=self.ACCESS_TOKEN_TTL,
        )

    def generate_reset_token(self, user_id) -> str:
        return self.issue(user_id, RESET)

    def decode_token(self, token: str) -> TokenClaims:
        """Verify signature and expiry, whatever the token type.

        Raises:
            TokenExpiredError: The ``exp`` claim has passed
            InvalidTokenError: Bad signature or malformed token
        """
        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[self._algorithm])
        except jwt.ExpiredSignatureError:
            raise TokenExpiredError("Token has expired")
        except jwt.InvalidTokenError as e:
            raise InvalidTokenError(f"Invalid token: {e}")

        return TokenClaims(
            user_id=payload.get("sub", ""),
            exp=payload.get("exp", 0),
            iat=payload.get("iat", 0),
            type=payload.get("type", ACCESS),
            jti=payload.get("jti", ""),
        )

    def _expect(self, token: str, token_type: str) -> TokenClaims:
        claims = self.decode_token(token)
        if claims.type != token_type:
            raise InvalidTokenError(f"Not a {token_type} token")
        return claims

    def validate_access_token(self, token: str) -> TokenClaims:
        return self._expect(token, ACCESS)

    def validate_refresh_token(self, token: str) -> TokenClaims:
        return self._expect(token, REFRESH)

    def validate_reset_token(self, token: str) -> TokenClaims:
        return self._expect(token, RESET)
