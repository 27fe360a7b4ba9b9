"""Infrastructure layer errors.

Adapter errors stay inside the adapter boundary: provider validators turn
them into a None result and the notification service logs them.
"""


class AdapterError(Exception):
    """Base infrastructure error."""

    pass


class ProviderError(AdapterError):
    """External identity provider returned an error or an unusable payload."""

    pass


class NotificationError(AdapterError):
    """A notification could not be delivered."""

    pass
