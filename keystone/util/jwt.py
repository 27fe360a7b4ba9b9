"""JWT token utilities."""

from datetime import datetime, timezone
from typing import Any

import jwt
from pydantic import BaseModel

from keystone.config import AuthSettings
from keystone.domain.error import InvalidTokenError, TokenExpiredError

ACCESS_TOKEN_TYPE = "access"
OTP_PENDING_TOKEN_TYPE = "otp_pending"

REQUIRED_CLAIMS = ["sub", "iat", "exp", "iss", "aud", "type"]


class AccessTokenClaims(BaseModel):
    """Access token payload."""

    sub: str  # identity id
    sid: str  # session id
    did: str  # device id
    iat: datetime
    exp: datetime
    type: str = ACCESS_TOKEN_TYPE


class OtpPendingClaims(BaseModel):
    """Payload of the short-lived token handed out while a login awaits OTP."""

    sub: str  # identity id
    did: str  # device id the login started on
    method: str  # credential used before the OTP branch
    iat: datetime
    exp: datetime
    type: str = OTP_PENDING_TOKEN_TYPE


def create_token(
    claims: dict[str, Any],
    token_type: str,
    issued_at: datetime,
    expires_at: datetime,
    settings: AuthSettings,
) -> str:
    """Create a signed JWT.

    Args:
        claims: Token-specific claims
        token_type: Value of the ``type`` claim
        issued_at: Issue time
        expires_at: Expiry time
        settings: Authentication settings

    Returns:
        Encoded JWT token
    """
    payload = {
        **claims,
        "type": token_type,
        "iat": int(issued_at.timestamp()),
        "exp": int(expires_at.timestamp()),
        "iss": settings.jwt_issuer,
        "aud": settings.jwt_audience,
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_token(
    token: str,
    token_type: str,
    settings: AuthSettings,
    now: datetime,
) -> dict[str, Any]:
    """Verify and decode a JWT.

    Expiry is checked against ``now`` rather than the wall clock so callers
    control time.

    Args:
        token: JWT token to verify
        token_type: Expected ``type`` claim
        settings: Authentication settings
        now: Current time

    Returns:
        Token payload

    Raises:
        TokenExpiredError: If the token is past its expiry
        InvalidTokenError: If the token is malformed, forged or of another type
    """
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
            options={
                "require": REQUIRED_CLAIMS,
                "verify_exp": False,
                "verify_iat": False,
            },
        )
    except jwt.InvalidTokenError:
        raise InvalidTokenError()

    if payload.get("type") != token_type:
        raise InvalidTokenError()

    expires_at = datetime.fromtimestamp(payload["exp"], tz=timezone.utc)
    if now >= expires_at:
        raise TokenExpiredError()

    return payload
