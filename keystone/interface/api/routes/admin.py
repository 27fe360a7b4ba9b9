"""Administrative routes, guarded by the authorization policy."""

from uuid import UUID

from dishka.integrations.fastapi import DishkaRoute, FromDishka
from fastapi import APIRouter, Depends, Query

from keystone.application.orchestrator import IdentityOrchestrator
from keystone.domain.model import SecurityEvent
from keystone.domain.value import IdentityId
from keystone.interface.api.dependencies import bearer_token

router = APIRouter(prefix="/admin", tags=["admin"], route_class=DishkaRoute)


@router.get(
    "/identities/{identity_id}/security-events", response_model=list[SecurityEvent]
)
async def list_security_events(
    identity_id: UUID,
    orchestrator: FromDishka[IdentityOrchestrator],
    access_token: str = Depends(bearer_token),
    limit: int = Query(100, ge=1, le=500),
) -> list[SecurityEvent]:
    """Security events of any identity; needs security_events:read."""
    current = await orchestrator.authenticate(access_token)
    return await orchestrator.security_events(
        current.identity, IdentityId(identity_id), limit
    )
