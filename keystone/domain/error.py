"""Domain layer errors.

Every error carries a stable ``code`` that the interface layer exposes to
clients. Messages are safe to show to end users; provider-internal detail
is logged, never attached here.
"""

from datetime import datetime


class DomainError(Exception):
    """Base domain error."""

    code = "DOMAIN_ERROR"


class ValidationError(DomainError):
    """Domain validation error."""

    code = "VALIDATION_ERROR"


class InvalidCredentialError(DomainError):
    """Password, provider token or one-time code did not check out."""

    code = "INVALID_CREDENTIAL"

    def __init__(self, message: str = "Invalid credentials"):
        super().__init__(message)


class AccountLockedError(DomainError):
    """Raised while an identity is locked after repeated failed logins."""

    code = "ACCOUNT_LOCKED"

    def __init__(self, locked_until: datetime | None = None):
        self.locked_until = locked_until
        if locked_until:
            message = f"Account is locked until {locked_until.isoformat()}"
        else:
            message = "Account is locked"
        super().__init__(message)


class AccountInactiveError(DomainError):
    """Raised when an inactive identity tries to authenticate."""

    code = "ACCOUNT_INACTIVE"

    def __init__(self) -> None:
        super().__init__("Account is inactive")


class OtpRequiredError(DomainError):
    """A one-time code must be verified before the operation can continue."""

    code = "OTP_REQUIRED"

    def __init__(self, message: str = "One-time code verification required"):
        super().__init__(message)


class StepUpRequiredError(OtpRequiredError):
    """A sensitive operation needs a fresh step-up verification."""

    code = "OTP_VERIFICATION_REQUIRED"

    def __init__(self, operation: str, methods: list[str] | None = None):
        self.operation = operation
        self.methods = methods or []
        super().__init__(f"OTP verification required for {operation}")


class OtpInvalidError(DomainError):
    """The code is wrong, expired, or there is no live challenge."""

    code = "OTP_INVALID"

    def __init__(self, message: str = "Invalid or expired one-time code"):
        super().__init__(message)


class OtpExhaustedError(DomainError):
    """The challenge has no attempts left; a new code must be issued."""

    code = "OTP_EXHAUSTED"

    def __init__(self, message: str = "Too many failed attempts, request a new code"):
        super().__init__(message)


class ConflictAlreadyLinkedError(DomainError):
    """The provider account is already linked (here or to another identity)."""

    code = "ALREADY_LINKED"

    def __init__(self, provider: str, message: str | None = None):
        self.provider = provider
        super().__init__(message or f"{provider} account is already linked")


class ConflictEmailInUseError(DomainError):
    """The email address belongs to a different identity."""

    code = "EMAIL_IN_USE"

    def __init__(self, email: str | None = None):
        self.email = email
        super().__init__("Email address is already in use by another account")


class ConflictUsernameTakenError(DomainError):
    """The username belongs to a different identity."""

    code = "USERNAME_TAKEN"

    def __init__(self, username: str):
        self.username = username
        super().__init__(f"Username {username} is already taken")


class LastAuthMethodBlockedError(DomainError):
    """Removing the link would leave the identity without any way to log in."""

    code = "LAST_AUTH_METHOD"

    def __init__(self) -> None:
        super().__init__(
            "Cannot remove the last authentication method; set a password first"
        )


class InvalidTokenError(DomainError):
    """Token is unknown, malformed or has a bad signature."""

    code = "INVALID_TOKEN"

    def __init__(self, message: str = "Invalid token"):
        super().__init__(message)


class TokenRevokedError(InvalidTokenError):
    """Refresh token belongs to a revoked session.

    Shares the INVALID_TOKEN code so clients cannot tell revoked from unknown.
    """

    def __init__(self) -> None:
        super().__init__("Token has been revoked")


class TokenExpiredError(DomainError):
    """Token is past its expiry."""

    code = "TOKEN_EXPIRED"

    def __init__(self) -> None:
        super().__init__("Token has expired")


class ProviderUnavailableError(DomainError):
    """A social provider could not be reached or is not configured."""

    code = "PROVIDER_UNAVAILABLE"

    def __init__(self, provider: str):
        self.provider = provider
        super().__init__(f"Provider {provider} is unavailable")


class RateLimitExceededError(DomainError):
    """Too many requests for the given scope."""

    code = "RATE_LIMITED"

    def __init__(self, scope: str, retry_after_seconds: int | None = None):
        self.scope = scope
        self.retry_after_seconds = retry_after_seconds
        super().__init__("Too many requests, try again later")


class AuthorizationDeniedError(DomainError):
    """Policy evaluation denied the action."""

    code = "FORBIDDEN"

    def __init__(self, resource: str, action: str):
        self.resource = resource
        self.action = action
        super().__init__(f"Not allowed to {action} {resource}")


class NotFoundError(DomainError):
    """Raised when a requested resource is not found."""

    code = "NOT_FOUND"

    def __init__(self, resource: str, identifier: str):
        self.resource = resource
        self.identifier = identifier
        super().__init__(f"{resource} not found: {identifier}")
