"""Strongly typed identifiers for Keystone domain entities.

NewType keeps identity, session and event ids from being mixed up while
staying plain UUIDs at runtime.
"""

from typing import NewType
from uuid import UUID

IdentityId = NewType("IdentityId", UUID)
SessionId = NewType("SessionId", UUID)
SecurityEventId = NewType("SecurityEventId", UUID)
