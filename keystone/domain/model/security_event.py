"""Security event entity."""

from datetime import datetime
from typing import Any, Optional

from pydantic import Field

from keystone.domain.model.common import DomainModel, utc_now
from keystone.domain.value import (
    IdentityId,
    SecurityEventId,
    SecurityEventType,
    Severity,
)


class SecurityEvent(DomainModel):
    """Append-only record of a security-relevant occurrence."""

    id: SecurityEventId
    identity_id: Optional[IdentityId] = None
    type: SecurityEventType
    severity: Severity = Severity.LOW
    description: str
    context: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utc_now)
