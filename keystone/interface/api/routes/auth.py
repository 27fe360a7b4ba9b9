"""Authentication routes."""

from typing import Annotated, Union

from dishka.integrations.fastapi import DishkaRoute, FromDishka
from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from keystone.application.orchestrator import (
    IdentityOrchestrator,
    OneTimeCodeCredential,
    PasswordCredential,
    SocialCredential,
)
from keystone.domain.service import AccessToken
from keystone.domain.value import RequestSignals
from keystone.interface.api.dependencies import bearer_token, request_signals
from keystone.interface.api.schemas import IdentityResponse, LoginResponse

router = APIRouter(prefix="/auth", tags=["authentication"], route_class=DishkaRoute)


class RegisterRequest(BaseModel):
    """Password registration request."""

    email: str
    password: str
    username: str | None = Field(None, max_length=255)
    display_name: str | None = Field(None, max_length=255)
    phone_number: str | None = Field(None, max_length=50)


class LoginRequest(BaseModel):
    """Login request carrying one credential."""

    credential: Annotated[
        Union[PasswordCredential, SocialCredential, OneTimeCodeCredential],
        Field(discriminator="kind"),
    ]


class CompleteLoginRequest(BaseModel):
    """Second login step after OTP_REQUIRED."""

    otp_token: str
    code: str


class LoginCodeRequest(BaseModel):
    """Email address for a passwordless login or password reset code."""

    email: str


class LoginCodeResponse(BaseModel):
    """Always the same answer, whether or not the address is known."""

    sent: bool = True


class ResetPasswordRequest(BaseModel):
    """New password plus the code emailed by /auth/password/forgot."""

    email: str
    code: str
    new_password: str


class RefreshRequest(BaseModel):
    """Refresh request."""

    refresh_token: str


@router.post(
    "/register", response_model=IdentityResponse, status_code=status.HTTP_201_CREATED
)
async def register(
    request: RegisterRequest,
    orchestrator: FromDishka[IdentityOrchestrator],
) -> IdentityResponse:
    """Register a password identity.

    Example:
        POST /auth/register
        {"email": "alice@example.com", "password": "correct horse battery"}
    """
    identity = await orchestrator.register(
        email=request.email,
        password=request.password,
        username=request.username,
        display_name=request.display_name,
        phone_number=request.phone_number,
    )
    return IdentityResponse.from_identity(identity)


@router.post("/login", response_model=LoginResponse)
async def login(
    request: LoginRequest,
    orchestrator: FromDishka[IdentityOrchestrator],
    signals: RequestSignals = Depends(request_signals),
) -> LoginResponse:
    """Log in with a password, social provider token or one-time code.

    Examples:
        POST /auth/login
        {"credential": {"kind": "password", "identifier": "alice", "password": "..."}}

        POST /auth/login
        {"credential": {"kind": "social", "provider": "google", "token": "eyJ..."}}

        Response when a code is required:
        {"state": "otp_required", "otp_token": "eyJ...", "challenge": {...}}
    """
    result = await orchestrator.login(request.credential, signals)
    return LoginResponse.from_result(result)


@router.post("/login/otp", response_model=LoginResponse)
async def complete_login(
    request: CompleteLoginRequest,
    orchestrator: FromDishka[IdentityOrchestrator],
    signals: RequestSignals = Depends(request_signals),
) -> LoginResponse:
    """Finish a login that is waiting for a one-time code."""
    result = await orchestrator.complete_login(request.otp_token, request.code, signals)
    return LoginResponse.from_result(result)


@router.post(
    "/login/code",
    response_model=LoginCodeResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def request_login_code(
    request: LoginCodeRequest,
    orchestrator: FromDishka[IdentityOrchestrator],
    signals: RequestSignals = Depends(request_signals),
) -> LoginCodeResponse:
    """Email a passwordless login code."""
    await orchestrator.request_login_code(request.email, signals)
    return LoginCodeResponse()


@router.post(
    "/password/forgot",
    response_model=LoginCodeResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def forgot_password(
    request: LoginCodeRequest,
    orchestrator: FromDishka[IdentityOrchestrator],
    signals: RequestSignals = Depends(request_signals),
) -> LoginCodeResponse:
    """Email a password reset code. Answers the same for unknown addresses."""
    await orchestrator.request_password_reset(request.email, signals)
    return LoginCodeResponse()


@router.post("/password/reset", status_code=status.HTTP_204_NO_CONTENT)
async def reset_password(
    request: ResetPasswordRequest,
    orchestrator: FromDishka[IdentityOrchestrator],
) -> None:
    """Set a new password with the emailed code; every session is revoked."""
    await orchestrator.reset_password(
        request.email, request.code, request.new_password
    )


@router.post("/refresh", response_model=AccessToken)
async def refresh(
    request: RefreshRequest,
    orchestrator: FromDishka[IdentityOrchestrator],
) -> AccessToken:
    """Exchange a refresh token for a new access token."""
    return await orchestrator.refresh_session(request.refresh_token)


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(
    orchestrator: FromDishka[IdentityOrchestrator],
    access_token: str = Depends(bearer_token),
) -> None:
    """Revoke the current session."""
    current = await orchestrator.authenticate(access_token)
    await orchestrator.logout(current.session_id)


@router.get("/me", response_model=IdentityResponse)
async def get_current_identity(
    orchestrator: FromDishka[IdentityOrchestrator],
    access_token: str = Depends(bearer_token),
) -> IdentityResponse:
    """Return the identity behind the access token."""
    current = await orchestrator.authenticate(access_token)
    return IdentityResponse.from_identity(current.identity)
