"""Social account linking routes."""

from dishka.integrations.fastapi import DishkaRoute, FromDishka
from fastapi import APIRouter, Depends, status
from pydantic import BaseModel

from keystone.application.orchestrator import IdentityOrchestrator
from keystone.domain.model import SocialLink
from keystone.domain.value import SocialProvider
from keystone.interface.api.dependencies import bearer_token

router = APIRouter(prefix="/social", tags=["social"], route_class=DishkaRoute)


class LinkRequest(BaseModel):
    """Link a provider account using a token from that provider."""

    provider: SocialProvider
    token: str


@router.get("/links", response_model=list[SocialLink])
async def list_links(
    orchestrator: FromDishka[IdentityOrchestrator],
    access_token: str = Depends(bearer_token),
) -> list[SocialLink]:
    """List the current identity's social links."""
    current = await orchestrator.authenticate(access_token)
    return orchestrator.list_social_links(current.identity)


@router.post(
    "/links", response_model=SocialLink, status_code=status.HTTP_201_CREATED
)
async def link(
    request: LinkRequest,
    orchestrator: FromDishka[IdentityOrchestrator],
    access_token: str = Depends(bearer_token),
) -> SocialLink:
    """Link a provider account.

    Example:
        POST /social/links
        {"provider": "github", "token": "gho_..."}
    """
    current = await orchestrator.authenticate(access_token)
    return await orchestrator.link_social(
        current.identity, request.provider, request.token
    )


@router.delete("/links/{provider}", status_code=status.HTTP_204_NO_CONTENT)
async def unlink(
    provider: SocialProvider,
    orchestrator: FromDishka[IdentityOrchestrator],
    access_token: str = Depends(bearer_token),
    provider_id: str | None = None,
) -> None:
    """Unlink a provider account, unless it is the last way to log in."""
    current = await orchestrator.authenticate(access_token)
    await orchestrator.unlink_social(current.identity, provider, provider_id)
