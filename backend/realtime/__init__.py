"""Server side of the realtime synchronization layer.

Key Components:
    - SessionRegistry: admits authenticated push-channel connections
    - RoomRouter: project room membership (join / leave / disconnect)
    - EventBroadcaster: publishes typed events to exactly one room
"""

from realtime.broadcaster import EventBroadcaster
from realtime.errors import (
    AuthenticationError,
    AuthorizationError,
    DeliveryError,
    InvalidIdentifierError,
    RealtimeError,
)
from realtime.rooms import RoomRouter
from realtime.sessions import Connection, SessionRegistry

__all__ = [
    "AuthenticationError",
    "AuthorizationError",
    "Connection",
    "DeliveryError",
    "EventBroadcaster",
    "InvalidIdentifierError",
    "RealtimeError",
    "RoomRouter",
    "SessionRegistry",
]
