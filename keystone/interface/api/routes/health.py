"""Health check routes."""

from datetime import datetime, timezone

from dishka.integrations.fastapi import DishkaRoute, FromDishka
from fastapi import APIRouter
from pydantic import BaseModel

from keystone.config import Settings
from keystone.domain.service import SocialAuthService

router = APIRouter(tags=["health"], route_class=DishkaRoute)


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    timestamp: datetime
    version: str
    git_sha: str
    providers: list[str]


@router.get("/health", response_model=HealthResponse)
async def health_check(
    settings: FromDishka[Settings],
    social_auth_service: FromDishka[SocialAuthService],
) -> HealthResponse:
    """Basic health check endpoint.

    Returns:
        Health status and the social providers this instance accepts
    """
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(timezone.utc),
        version="0.1.0",
        git_sha=settings.git_sha,
        providers=sorted(p.value for p in social_auth_service.supported_providers),
    )
