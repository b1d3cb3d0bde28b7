"""Error taxonomy of the realtime layer.

Only authentication failures ever reach a caller of the push channel.
Authorization failures belong to the REST path, delivery failures stay local
to one recipient, and listener failures are contained by the client bus.
"""


class RealtimeError(Exception):
    """Base class for realtime layer errors."""


class AuthenticationError(RealtimeError):
    """A credential was missing, malformed, expired or signed with another key."""


class AuthorizationError(RealtimeError):
    """The authenticated user may not access or administer the resource."""


class DeliveryError(RealtimeError):
    """An event could not be handed to one connection (queue full or closed)."""


class InvalidIdentifierError(RealtimeError, ValueError):
    """A room operation received an empty or non-string identifier."""
