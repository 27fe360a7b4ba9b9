"""PostgreSQL implementation of Identity repository."""

from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from sqlalchemy import and_, delete, func, insert, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from keystone.domain.error import (
    ConflictAlreadyLinkedError,
    ConflictEmailInUseError,
    ConflictUsernameTakenError,
    LastAuthMethodBlockedError,
    NotFoundError,
)
from keystone.domain.model import Identity, LoginRecord, OtpChallenge, SocialLink
from keystone.domain.repository import IdentityRepository
from keystone.domain.value import IdentityId, SocialProvider
from keystone.persistence.mappers import (
    identity_to_dict,
    otp_challenge_to_dict,
    row_to_identity,
    row_to_otp_challenge,
    social_link_to_dict,
)
from keystone.persistence.tables import (
    identities_table,
    otp_challenges_table,
    social_links_table,
)

# Columns written when a failed login is counted
LOGIN_FAILURE_COLUMNS = (
    "failed_login_attempts",
    "last_failed_login_at",
    "lockout_until",
    "lockout_count",
    "status",
    "login_history",
    "updated_at",
)


class PostgresIdentityRepository(IdentityRepository):
    """PostgreSQL implementation of IdentityRepository.

    Uniqueness is enforced by the schema: a unique index on lower(email), a
    unique index on username and the social_links primary key. Violations
    are mapped back to domain conflicts.
    """

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session
        """
        self.session = session

    async def find_by_id(self, identity_id: IdentityId) -> Optional[Identity]:
        """Find an identity by ID."""
        stmt = select(identities_table).where(identities_table.c.id == identity_id)
        return await self._load_one(stmt)

    async def find_by_email(self, email: str) -> Optional[Identity]:
        """Find an identity by email, ignoring case."""
        stmt = select(identities_table).where(
            func.lower(identities_table.c.email) == email.lower()
        )
        return await self._load_one(stmt)

    async def find_by_email_or_username(self, identifier: str) -> Optional[Identity]:
        """Find an identity by email or username, email first."""
        by_email = await self.find_by_email(identifier)
        if by_email:
            return by_email

        stmt = select(identities_table).where(identities_table.c.username == identifier)
        return await self._load_one(stmt)

    async def find_by_social_link(
        self, provider: SocialProvider, provider_id: str
    ) -> Optional[Identity]:
        """Find the identity owning a provider account."""
        stmt = select(identities_table).join(
            social_links_table,
            social_links_table.c.identity_id == identities_table.c.id,
        ).where(
            and_(
                social_links_table.c.provider == provider.value,
                social_links_table.c.provider_id == provider_id,
            )
        )
        return await self._load_one(stmt)

    async def create(self, identity: Identity) -> Identity:
        """Insert an identity and its initial social links in one savepoint."""
        try:
            async with self.session.begin_nested():
                await self.session.execute(
                    insert(identities_table).values(**identity_to_dict(identity))
                )
                for link in identity.social_links:
                    await self.session.execute(
                        insert(social_links_table).values(
                            **social_link_to_dict(identity.id, link)
                        )
                    )
        except IntegrityError as e:
            raise self._conflict(e, identity) from e

        return identity

    async def save(self, identity: Identity) -> Identity:
        """Update an identity's own columns."""
        values = identity_to_dict(identity)
        values.pop("id")
        values.pop("created_at")
        stmt = (
            update(identities_table)
            .where(identities_table.c.id == identity.id)
            .values(**values)
        )
        try:
            result = await self.session.execute(stmt)
        except IntegrityError as e:
            raise self._conflict(e, identity) from e
        if result.rowcount == 0:
            raise NotFoundError("Identity", str(identity.id))
        await self.session.flush()

        stored = await self.find_by_id(identity.id)
        assert stored is not None
        return stored

    async def add_social_link(
        self, identity_id: IdentityId, link: SocialLink
    ) -> Identity:
        """Insert a link; the primary key and per-provider constraint reject duplicates."""
        try:
            async with self.session.begin_nested():
                await self.session.execute(
                    insert(social_links_table).values(
                        **social_link_to_dict(identity_id, link)
                    )
                )
        except IntegrityError as e:
            if "social_links_identity_id_fkey" in str(e.orig):
                raise NotFoundError("Identity", str(identity_id)) from e
            raise ConflictAlreadyLinkedError(link.provider.value) from e

        return await self._require(identity_id)

    async def remove_social_link(
        self, identity_id: IdentityId, provider: SocialProvider, provider_id: str
    ) -> Identity:
        """Delete a link while holding the identity row lock."""
        # Serializes concurrent unlinks so the last-method check cannot race
        await self.session.execute(
            select(identities_table.c.id)
            .where(identities_table.c.id == identity_id)
            .with_for_update()
        )
        identity = await self._require(identity_id)

        if not identity.find_link(provider, provider_id):
            raise NotFoundError("SocialLink", f"{provider.value}:{provider_id}")
        if identity.auth_method_count() <= 1:
            raise LastAuthMethodBlockedError()

        await self.session.execute(
            delete(social_links_table).where(
                and_(
                    social_links_table.c.identity_id == identity_id,
                    social_links_table.c.provider == provider.value,
                    social_links_table.c.provider_id == provider_id,
                )
            )
        )
        await self.session.flush()
        return await self._require(identity_id)

    async def set_otp_challenge(
        self, identity_id: IdentityId, challenge: OtpChallenge
    ) -> None:
        """Upsert the identity's single challenge row."""
        values = otp_challenge_to_dict(identity_id, challenge)
        stmt = pg_insert(otp_challenges_table).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[otp_challenges_table.c.identity_id],
            set_={k: v for k, v in values.items() if k != "identity_id"},
        )
        await self.session.execute(stmt)
        await self.session.flush()

    async def clear_otp_challenge(self, identity_id: IdentityId) -> None:
        """Delete the identity's challenge row."""
        stmt = delete(otp_challenges_table).where(
            otp_challenges_table.c.identity_id == identity_id
        )
        await self.session.execute(stmt)
        await self.session.flush()

    async def consume_otp_attempt(
        self, identity_id: IdentityId, now: datetime
    ) -> Optional[OtpChallenge]:
        """Conditional increment; the row lock makes concurrent verifies queue."""
        stmt = (
            update(otp_challenges_table)
            .where(
                and_(
                    otp_challenges_table.c.identity_id == identity_id,
                    otp_challenges_table.c.expires_at > now,
                    otp_challenges_table.c.attempts
                    < otp_challenges_table.c.max_attempts,
                )
            )
            .values(attempts=otp_challenges_table.c.attempts + 1)
            .returning(otp_challenges_table)
        )
        result = await self.session.execute(stmt)
        row = result.mappings().first()
        await self.session.flush()
        return row_to_otp_challenge(dict(row)) if row else None

    async def record_login_failure(
        self,
        identity_id: IdentityId,
        record: LoginRecord,
        now: datetime,
        max_attempts: int,
        lockout_duration: Callable[[int], timedelta],
    ) -> Identity:
        """Count the failure while holding the identity row lock.

        Concurrent failures queue on the lock, so each one sees the count
        written by the previous one.
        """
        stmt = (
            select(identities_table)
            .where(identities_table.c.id == identity_id)
            .with_for_update()
        )
        identity = await self._load_one(stmt)
        if not identity:
            raise NotFoundError("Identity", str(identity_id))

        updated = identity.with_login_failure(
            record, now, max_attempts, lockout_duration
        )
        values = identity_to_dict(updated)
        await self.session.execute(
            update(identities_table)
            .where(identities_table.c.id == identity_id)
            .values(**{column: values[column] for column in LOGIN_FAILURE_COLUMNS})
        )
        await self.session.flush()
        return updated

    async def _load_one(self, stmt) -> Optional[Identity]:
        result = await self.session.execute(stmt)
        row = result.mappings().first()
        if not row:
            return None
        return await self._assemble(dict(row))

    async def _assemble(self, row: Dict[str, Any]) -> Identity:
        identity_id = row["id"]

        links_result = await self.session.execute(
            select(social_links_table)
            .where(social_links_table.c.identity_id == identity_id)
            .order_by(social_links_table.c.connected_at)
        )
        links = [dict(link) for link in links_result.mappings().all()]

        challenge_result = await self.session.execute(
            select(otp_challenges_table).where(
                otp_challenges_table.c.identity_id == identity_id
            )
        )
        challenge = challenge_result.mappings().first()

        return row_to_identity(row, links, dict(challenge) if challenge else None)

    async def _require(self, identity_id: IdentityId) -> Identity:
        identity = await self.find_by_id(identity_id)
        if not identity:
            raise NotFoundError("Identity", str(identity_id))
        return identity

    @staticmethod
    def _conflict(error: IntegrityError, identity: Identity) -> Exception:
        message = str(error.orig)
        if "uq_identities_username" in message:
            return ConflictUsernameTakenError(identity.username or "")
        if "social_links" in message:
            provider = (
                identity.social_links[0].provider.value
                if identity.social_links
                else "unknown"
            )
            return ConflictAlreadyLinkedError(provider)
        return ConflictEmailInUseError(identity.email)
