"""Identity repository interface."""

from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Optional

from keystone.domain.model import Identity, LoginRecord, OtpChallenge, SocialLink
from keystone.domain.value import IdentityId, SocialProvider


class IdentityRepository(ABC):
    """Repository for the Identity aggregate.

    Social links and the OTP challenge have dedicated operations because
    they carry uniqueness and attempt-counting guarantees that a plain
    read-modify-write ``save`` cannot give. ``save`` never touches them.
    """

    @abstractmethod
    async def find_by_id(self, identity_id: IdentityId) -> Optional[Identity]:
        """Find an identity by ID.

        Args:
            identity_id: The identity's unique identifier

        Returns:
            The identity if found, None otherwise
        """
        pass

    @abstractmethod
    async def find_by_email(self, email: str) -> Optional[Identity]:
        """Find an identity by email, case-insensitively.

        Args:
            email: Email address

        Returns:
            The identity if found, None otherwise
        """
        pass

    @abstractmethod
    async def find_by_email_or_username(self, identifier: str) -> Optional[Identity]:
        """Find an identity whose email or username matches ``identifier``.

        Args:
            identifier: Email address or username

        Returns:
            The identity if found, None otherwise
        """
        pass

    @abstractmethod
    async def find_by_social_link(
        self, provider: SocialProvider, provider_id: str
    ) -> Optional[Identity]:
        """Find the identity owning a provider account.

        Args:
            provider: Social provider
            provider_id: The user's ID on that provider

        Returns:
            The identity if found, None otherwise
        """
        pass

    @abstractmethod
    async def create(self, identity: Identity) -> Identity:
        """Insert a new identity, together with any initial social links.

        The uniqueness check and insert are one atomic step.

        Args:
            identity: Identity to create

        Returns:
            The created identity

        Raises:
            ConflictEmailInUseError: If the email (or username) is taken
            ConflictAlreadyLinkedError: If an initial social link is owned elsewhere
        """
        pass

    @abstractmethod
    async def save(self, identity: Identity) -> Identity:
        """Update an existing identity.

        Social links and the OTP challenge are left as stored.

        Args:
            identity: Identity to save

        Returns:
            The stored identity, including its current links and challenge
        """
        pass

    @abstractmethod
    async def add_social_link(
        self, identity_id: IdentityId, link: SocialLink
    ) -> Identity:
        """Attach a social link.

        Args:
            identity_id: Owner of the new link
            link: Link to attach

        Returns:
            The updated identity

        Raises:
            ConflictAlreadyLinkedError: If the provider is already on this
                identity or ``(provider, provider_id)`` belongs to any identity
        """
        pass

    @abstractmethod
    async def remove_social_link(
        self, identity_id: IdentityId, provider: SocialProvider, provider_id: str
    ) -> Identity:
        """Detach a social link, keeping at least one auth method.

        Args:
            identity_id: Owner of the link
            provider: Social provider
            provider_id: The user's ID on that provider

        Returns:
            The updated identity

        Raises:
            NotFoundError: If the link does not exist
            LastAuthMethodBlockedError: If it is the identity's last auth method
        """
        pass

    @abstractmethod
    async def set_otp_challenge(
        self, identity_id: IdentityId, challenge: OtpChallenge
    ) -> None:
        """Store ``challenge`` as the identity's live challenge, replacing any prior one."""
        pass

    @abstractmethod
    async def clear_otp_challenge(self, identity_id: IdentityId) -> None:
        """Remove the identity's challenge, if any."""
        pass

    @abstractmethod
    async def consume_otp_attempt(
        self, identity_id: IdentityId, now: datetime
    ) -> Optional[OtpChallenge]:
        """Atomically use up one verification attempt.

        The increment only happens when a challenge exists, has not expired
        at ``now`` and still has attempts left.

        Args:
            identity_id: Owner of the challenge
            now: Current time

        Returns:
            The challenge after the increment, or None if no attempt was consumed
        """
        pass

    @abstractmethod
    async def record_login_failure(
        self,
        identity_id: IdentityId,
        record: LoginRecord,
        now: datetime,
        max_attempts: int,
        lockout_duration: Callable[[int], timedelta],
    ) -> Identity:
        """Atomically count one failed login and lock at the threshold.

        Read, increment and write happen as one step, so concurrent failures
        are all counted. See ``Identity.with_login_failure`` for the rule.

        Args:
            identity_id: Identity that failed to log in
            record: Login history entry for the failure
            now: Current time
            max_attempts: Consecutive failures that trigger a lockout
            lockout_duration: Lockout length given the number of earlier lockouts

        Returns:
            The identity after the update

        Raises:
            NotFoundError: If the identity does not exist
        """
        pass
