"""Account security routes: step-up, password, email verification, OTP and
two-factor settings, login history and the security summary.
"""

from dishka.integrations.fastapi import DishkaRoute, FromDishka
from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel

from keystone.application.orchestrator import IdentityOrchestrator, SecuritySummary
from keystone.domain.model import LoginRecord, OtpSettings, SecurityEvent
from keystone.domain.service import IssuedChallenge, TotpEnrollment
from keystone.domain.value import OtpMethod, OtpPurpose
from keystone.interface.api.dependencies import bearer_token
from keystone.interface.api.schemas import BackupCodesResponse, IdentityResponse

router = APIRouter(prefix="/security", tags=["security"], route_class=DishkaRoute)


class StepUpRequest(BaseModel):
    """Request a step-up code."""

    method: OtpMethod | None = None


class StepUpVerifyRequest(BaseModel):
    """Verify a step-up code for the current session."""

    code: str
    purpose: OtpPurpose = OtpPurpose.SENSITIVE_OP


class StepUpVerifyResponse(BaseModel):
    """Step-up verification result."""

    verified: bool


class ChangePasswordRequest(BaseModel):
    """Change or set the password."""

    current_password: str | None = None
    new_password: str


class EmailVerifyRequest(BaseModel):
    """Code emailed by /security/email/verify."""

    code: str


class TotpConfirmRequest(BaseModel):
    """First code from the authenticator app."""

    code: str


@router.post("/step-up", response_model=IssuedChallenge)
async def request_step_up(
    request: StepUpRequest,
    orchestrator: FromDishka[IdentityOrchestrator],
    access_token: str = Depends(bearer_token),
) -> IssuedChallenge:
    """Send a step-up code ahead of a sensitive operation."""
    current = await orchestrator.authenticate(access_token)
    return await orchestrator.request_step_up(current.identity, request.method)


@router.post("/step-up/verify", response_model=StepUpVerifyResponse)
async def verify_step_up(
    request: StepUpVerifyRequest,
    orchestrator: FromDishka[IdentityOrchestrator],
    access_token: str = Depends(bearer_token),
) -> StepUpVerifyResponse:
    """Verify a step-up code; opens the verification window for this session."""
    current = await orchestrator.authenticate(access_token)
    verified = await orchestrator.verify_step_up(
        current.identity, current.session_id, request.code, request.purpose
    )
    return StepUpVerifyResponse(verified=verified)


@router.post("/password", status_code=status.HTTP_204_NO_CONTENT)
async def change_password(
    request: ChangePasswordRequest,
    orchestrator: FromDishka[IdentityOrchestrator],
    access_token: str = Depends(bearer_token),
) -> None:
    """Change the password. Requires step-up when OTP protects sensitive ops."""
    current = await orchestrator.authenticate(access_token)
    await orchestrator.change_password(
        current.identity,
        current.session_id,
        request.current_password,
        request.new_password,
    )


@router.put("/otp-settings", response_model=IdentityResponse)
async def update_otp_settings(
    request: OtpSettings,
    orchestrator: FromDishka[IdentityOrchestrator],
    access_token: str = Depends(bearer_token),
) -> IdentityResponse:
    """Replace the identity's OTP preferences."""
    current = await orchestrator.authenticate(access_token)
    identity = await orchestrator.update_otp_settings(
        current.identity, current.session_id, request
    )
    return IdentityResponse.from_identity(identity)


@router.post("/totp", response_model=TotpEnrollment)
async def begin_totp_enrollment(
    orchestrator: FromDishka[IdentityOrchestrator],
    access_token: str = Depends(bearer_token),
) -> TotpEnrollment:
    """Start authenticator-app enrollment; returns the secret and otpauth URI."""
    current = await orchestrator.authenticate(access_token)
    return await orchestrator.begin_totp_enrollment(current.identity)


@router.post("/totp/confirm", response_model=BackupCodesResponse)
async def confirm_totp_enrollment(
    request: TotpConfirmRequest,
    orchestrator: FromDishka[IdentityOrchestrator],
    access_token: str = Depends(bearer_token),
) -> BackupCodesResponse:
    """Confirm enrollment with a first code and receive backup codes."""
    current = await orchestrator.authenticate(access_token)
    _, codes = await orchestrator.confirm_totp_enrollment(
        current.identity, request.code
    )
    return BackupCodesResponse(backup_codes=codes)


@router.delete("/totp", status_code=status.HTTP_204_NO_CONTENT)
async def disable_two_factor(
    orchestrator: FromDishka[IdentityOrchestrator],
    access_token: str = Depends(bearer_token),
) -> None:
    """Disable the authenticator app."""
    current = await orchestrator.authenticate(access_token)
    await orchestrator.disable_two_factor(current.identity, current.session_id)


@router.post("/backup-codes", response_model=BackupCodesResponse)
async def generate_backup_codes(
    orchestrator: FromDishka[IdentityOrchestrator],
    access_token: str = Depends(bearer_token),
) -> BackupCodesResponse:
    """Replace all backup codes."""
    current = await orchestrator.authenticate(access_token)
    _, codes = await orchestrator.generate_backup_codes(
        current.identity, current.session_id
    )
    return BackupCodesResponse(backup_codes=codes)


@router.get("/events", response_model=list[SecurityEvent])
async def list_my_security_events(
    orchestrator: FromDishka[IdentityOrchestrator],
    access_token: str = Depends(bearer_token),
    limit: int = Query(50, ge=1, le=500),
) -> list[SecurityEvent]:
    """Most recent security events of the current identity."""
    current = await orchestrator.authenticate(access_token)
    return await orchestrator.security_events(
        current.identity, current.identity.id, limit
    )


@router.post("/email/verify", response_model=IssuedChallenge)
async def request_email_verification(
    orchestrator: FromDishka[IdentityOrchestrator],
    access_token: str = Depends(bearer_token),
) -> IssuedChallenge:
    """Email a code confirming the current identity owns its address."""
    current = await orchestrator.authenticate(access_token)
    return await orchestrator.request_email_verification(current.identity)


@router.post("/email/verify/confirm", response_model=IdentityResponse)
async def confirm_email_verification(
    request: EmailVerifyRequest,
    orchestrator: FromDishka[IdentityOrchestrator],
    access_token: str = Depends(bearer_token),
) -> IdentityResponse:
    """Mark the email verified with the emailed code."""
    current = await orchestrator.authenticate(access_token)
    identity = await orchestrator.confirm_email_verification(
        current.identity, request.code
    )
    return IdentityResponse.from_identity(identity)


@router.get("/login-history", response_model=list[LoginRecord])
async def list_login_history(
    orchestrator: FromDishka[IdentityOrchestrator],
    access_token: str = Depends(bearer_token),
    limit: int = Query(20, ge=1, le=50),
    successful: bool | None = None,
) -> list[LoginRecord]:
    """Recent login attempts of the current identity, newest first."""
    current = await orchestrator.authenticate(access_token)
    return orchestrator.login_history(current.identity, limit, successful)


@router.get("/summary", response_model=SecuritySummary)
async def security_summary(
    orchestrator: FromDishka[IdentityOrchestrator],
    access_token: str = Depends(bearer_token),
) -> SecuritySummary:
    """Account protection overview with suggested improvements."""
    current = await orchestrator.authenticate(access_token)
    return await orchestrator.security_summary(current.identity)
