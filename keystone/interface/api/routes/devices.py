"""Device and session management routes."""

from uuid import UUID

from dishka.integrations.fastapi import DishkaRoute, FromDishka
from fastapi import APIRouter, Depends, status
from pydantic import BaseModel

from keystone.application.orchestrator import IdentityOrchestrator
from keystone.domain.model import TrustedDevice
from keystone.domain.value import SessionId
from keystone.interface.api.dependencies import bearer_token
from keystone.interface.api.schemas import SessionResponse

router = APIRouter(tags=["devices"], route_class=DishkaRoute)


class RevokeAllResponse(BaseModel):
    """Number of sessions revoked."""

    revoked: int


@router.get("/devices", response_model=list[TrustedDevice])
async def list_devices(
    orchestrator: FromDishka[IdentityOrchestrator],
    access_token: str = Depends(bearer_token),
) -> list[TrustedDevice]:
    """Devices seen on this identity, most recently used first."""
    current = await orchestrator.authenticate(access_token)
    return orchestrator.list_devices(current.identity)


@router.post("/devices/{device_id}/trust", response_model=TrustedDevice)
async def trust_device(
    device_id: str,
    orchestrator: FromDishka[IdentityOrchestrator],
    access_token: str = Depends(bearer_token),
) -> TrustedDevice:
    """Mark a device as trusted."""
    current = await orchestrator.authenticate(access_token)
    identity = await orchestrator.trust_device(
        current.identity, current.session_id, device_id
    )
    device = identity.find_device(device_id)
    assert device is not None
    return device


@router.delete("/devices/{device_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_device(
    device_id: str,
    orchestrator: FromDishka[IdentityOrchestrator],
    access_token: str = Depends(bearer_token),
) -> None:
    """Forget a device and revoke its sessions."""
    current = await orchestrator.authenticate(access_token)
    await orchestrator.remove_device(current.identity, current.session_id, device_id)


@router.get("/sessions", response_model=list[SessionResponse])
async def list_sessions(
    orchestrator: FromDishka[IdentityOrchestrator],
    access_token: str = Depends(bearer_token),
) -> list[SessionResponse]:
    """Live sessions of the current identity."""
    current = await orchestrator.authenticate(access_token)
    sessions = await orchestrator.list_sessions(current.identity)
    return [SessionResponse.from_session(s, current.session_id) for s in sessions]


@router.delete("/sessions/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def revoke_session(
    session_id: UUID,
    orchestrator: FromDishka[IdentityOrchestrator],
    access_token: str = Depends(bearer_token),
) -> None:
    """Revoke one of the current identity's sessions."""
    current = await orchestrator.authenticate(access_token)
    await orchestrator.revoke_session(current.identity, SessionId(session_id))


@router.delete("/sessions", response_model=RevokeAllResponse)
async def revoke_all_sessions(
    orchestrator: FromDishka[IdentityOrchestrator],
    access_token: str = Depends(bearer_token),
) -> RevokeAllResponse:
    """Revoke every session, the current one included."""
    current = await orchestrator.authenticate(access_token)
    revoked = await orchestrator.revoke_all_sessions(
        current.identity, current.session_id
    )
    return RevokeAllResponse(revoked=revoked)
