"""Request-level helpers shared by the routes."""

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from keystone.domain.error import InvalidTokenError
from keystone.domain.value import RequestSignals

bearer_scheme = HTTPBearer(auto_error=False)


def request_signals(request: Request) -> RequestSignals:
    """Collect the headers and peer address used for device fingerprinting."""
    return RequestSignals(
        headers=dict(request.headers),
        remote_addr=request.client.host if request.client else None,
    )


def bearer_token(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> str:
    """Extract the access token from the Authorization header.

    Raises:
        InvalidTokenError: If no bearer token was sent
    """
    if not credentials or not credentials.credentials:
        raise InvalidTokenError("Missing bearer token")
    return credentials.credentials
