"""Session Registry: authenticated push-channel connections.

A ``Connection`` exists only after its handshake credential has been verified
with the same ``TokenVerifier`` the REST API uses. The registry is the sole
owner of connection objects; the Room Router only ever holds connection ids
and the Event Broadcaster looks connections up here at publish time.
"""

from __future__ import annotations

import asyncio
import contextlib
import threading
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import structlog

from realtime.errors import AuthenticationError, DeliveryError

if TYPE_CHECKING:
    from auth import TokenVerifier

logger = structlog.get_logger(__name__)

DEFAULT_SEND_QUEUE_SIZE = 256


@dataclass
class Connection:
    """One open, authenticated push channel.

    Outbound messages are queued here and drained by a single writer task,
    so messages reach the client in the order they were enqueued.

    Attributes:
        connection_id: Unique identifier of this transport connection.
        user_id: The user the handshake credential identified.
        authenticated: Always True for registry-created connections.
        outbox: Bounded queue of JSON-ready messages; ``None`` stops the writer.
    """

    connection_id: str
    user_id: str
    authenticated: bool = True
    outbox: asyncio.Queue[dict[str, Any] | None] = field(
        default_factory=lambda: asyncio.Queue(maxsize=DEFAULT_SEND_QUEUE_SIZE)
    )
    closed: bool = False

    def deliver(self, message: dict[str, Any]) -> None:
        """Enqueue a message without blocking.

        Raises:
            DeliveryError: If the connection is closed or its queue is full.
        """
        if self.closed:
            raise DeliveryError(f"Connection {self.connection_id} is closed")
        try:
            self.outbox.put_nowait(message)
        except asyncio.QueueFull as e:
            raise DeliveryError(
                f"Outbound queue full for connection {self.connection_id}"
            ) from e

    def close(self) -> None:
        """Mark the connection closed and wake its writer."""
        if self.closed:
            return
        self.closed = True
        with contextlib.suppress(asyncio.QueueFull):
            self.outbox.put_nowait(None)


class SessionRegistry:
    """Maps admitted connection ids to their authenticated user.

    Thread Safety:
        The registry dict is guarded by a threading.Lock so lookups from the
        broadcaster and mutations from websocket handlers never race.
    """

    def __init__(
        self,
        verifier: TokenVerifier,
        send_queue_size: int = DEFAULT_SEND_QUEUE_SIZE,
    ) -> None:
        self._verifier = verifier
        self._send_queue_size = send_queue_size
        self._connections: dict[str, Connection] = {}
        self._lock = threading.Lock()
        logger.info("session_registry_initialized", send_queue_size=send_queue_size)

    def admit(self, token: str | None) -> Connection:
        """Authenticate a handshake credential and register a new connection.

        Args:
            token: The bearer credential presented at handshake.

        Returns:
            The newly registered Connection.

        Raises:
            AuthenticationError: If the credential is rejected. Nothing is
                registered in that case.
        """
        try:
            user_id = self._verifier.verify(token)
        except AuthenticationError as e:
            logger.warning("websocket_auth_failed", reason=str(e))
            raise

        connection = Connection(
            connection_id=f"conn_{uuid.uuid4().hex[:12]}",
            user_id=user_id,
            outbox=asyncio.Queue(maxsize=self._send_queue_size),
        )
        with self._lock:
            self._connections[connection.connection_id] = connection
            active = len(self._connections)

        logger.info(
            "websocket_admitted",
            connection_id=connection.connection_id,
            user_id=user_id,
            active_connections=active,
        )
        return connection

    def get(self, connection_id: str) -> Connection | None:
        with self._lock:
            return self._connections.get(connection_id)

    def remove(self, connection_id: str) -> Connection | None:
        """Unregister and close a connection. Unknown ids are a no-op."""
        with self._lock:
            connection = self._connections.pop(connection_id, None)
            active = len(self._connections)

        if connection is None:
            return None

        connection.close()
        logger.info(
            "websocket_session_removed",
            connection_id=connection_id,
            user_id=connection.user_id,
            active_connections=active,
        )
        return connection

    def connection_ids(self) -> list[str]:
        with self._lock:
            return list(self._connections)

    def count(self) -> int:
        with self._lock:
            return len(self._connections)
