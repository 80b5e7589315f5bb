"""bcrypt password hashes (passlib)."""

from passlib.context import CryptContext


class PasswordService:
    def __init__(self, rounds: int = 12):
        # Tests build the service with rounds=4; stored hashes carry their own cost
        self._context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=rounds)

    def hash(self, password: str) -> str:
        return self._context.hash(password)

    def verify(self, password: str, hash: str | None) -> bool:
        """Check *password*; a missing or malformed hash never matches."""
        if not hash:
            return False
        try:
            return self._context.verify(password, hash)
        except (ValueError, TypeError):
            return False

    def needs_rehash(self, hash: str) -> bool:
        """True when *hash* uses a deprecated scheme or settings."""
        return self._context.needs_update(hash)
