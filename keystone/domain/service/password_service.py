"""Password hashing domain service."""

import asyncio

import bcrypt
import logfire

from keystone.config import AuthSettings
from keystone.domain.error import ValidationError

from .base import Service

# bcrypt only looks at the first 72 bytes
MAX_PASSWORD_BYTES = 72


class PasswordService(Service):
    """Hashes and checks passwords with bcrypt.

    Hashing runs in a worker thread so it does not stall the event loop.
    """

    def __init__(self, auth_settings: AuthSettings) -> None:
        """Initialize password service.

        Args:
            auth_settings: Authentication settings
        """
        self.auth_settings = auth_settings

    def validate_strength(self, password: str) -> None:
        """Reject passwords that are too short or too long for bcrypt.

        Raises:
            ValidationError: If the password does not meet the policy
        """
        if len(password) < self.auth_settings.min_password_length:
            raise ValidationError(
                f"Password must be at least {self.auth_settings.min_password_length} characters"
            )
        if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
            raise ValidationError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes")

    async def hash(self, password: str) -> str:
        """Validate and hash a password.

        Args:
            password: Plain-text password

        Returns:
            bcrypt hash

        Raises:
            ValidationError: If the password does not meet the policy
        """
        self.validate_strength(password)
        with logfire.span("password_service.hash"):
            hashed = await asyncio.to_thread(
                bcrypt.hashpw,
                password.encode("utf-8"),
                bcrypt.gensalt(rounds=self.auth_settings.bcrypt_rounds),
            )
            return hashed.decode("utf-8")

    async def verify(self, password: str, password_hash: str | None) -> bool:
        """Check a password against a stored hash.

        A missing or malformed hash never matches.
        """
        if not password_hash:
            return False
        encoded = password.encode("utf-8")
        if len(encoded) > MAX_PASSWORD_BYTES:
            return False
        try:
            return await asyncio.to_thread(
                bcrypt.checkpw, encoded, password_hash.encode("utf-8")
            )
        except ValueError as e:
            logfire.warn("Stored password hash is malformed", error=str(e))
            return False
