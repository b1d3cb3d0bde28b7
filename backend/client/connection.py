"""Client side of the realtime push channel.

``RealtimeConnection`` owns one websocket per session. It presents the same
bearer credential the REST client uses, forwards every pushed event to its
Client Event Bus, and sends ``join-project`` / ``leave-project`` control
messages. Room membership does not survive a transport drop, so after every
reconnect the connection re-joins each project it still considers active.

Features:
- Auto-reconnect with exponential backoff (1s doubling up to a cap)
- Automatic re-join of active projects after reconnect
- Stops retrying when the handshake is rejected (bad credential)
"""

import asyncio
import contextlib
import json
from collections.abc import Callable
from typing import Any

import structlog
import websockets
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidStatus

from client.bus import ClientEventBus

logger = structlog.get_logger(__name__)

# Handshake statuses meaning the credential itself was refused; retrying cannot help.
REJECTED_STATUS_CODES = frozenset({401, 403})


def websocket_url(api_url: str) -> str:
    """Derive the push channel URL from the REST base URL."""
    url = api_url.rstrip("/")
    url = url.replace("https://", "wss://", 1).replace("http://", "ws://", 1)
    return f"{url}/ws"


class RealtimeConnection:
    """One authenticated push channel with room bookkeeping.

    Join and leave are synchronous: they update the active set immediately
    and queue the control message for the writer. While disconnected the
    message is dropped, since the active set is replayed on reconnect.

    Attributes:
        url: Websocket URL of the ``/ws`` endpoint.
        bus: Bus receiving every pushed event.
        rejected: True once the server refused the credential.
    """

    def __init__(
        self,
        url: str,
        token: str,
        bus: ClientEventBus,
        *,
        connect: Callable[..., Any] = websockets.connect,
        initial_delay: float = 1.0,
        max_delay: float = 60.0,
    ) -> None:
        self.url = url
        self.bus = bus
        self.rejected = False
        self._token = token
        self._connect = connect
        self._initial_delay = initial_delay
        self._max_delay = max_delay

        self._active: set[str] = set()
        self._outgoing: asyncio.Queue[dict[str, Any]] = asyncio.Queue()
        self._connected = asyncio.Event()
        self._shutdown = asyncio.Event()
        self._task: asyncio.Task[None] | None = None
        self.connect_count = 0

    @property
    def active_projects(self) -> frozenset[str]:
        return frozenset(self._active)

    @property
    def is_connected(self) -> bool:
        return self._connected.is_set()

    # -----------------------------------------------------------------
    # Room control
    # -----------------------------------------------------------------

    def join(self, project_id: str) -> None:
        self._active.add(project_id)
        self._send({"type": "join-project", "project_id": project_id})

    def leave(self, project_id: str) -> None:
        self._active.discard(project_id)
        self._send({"type": "leave-project", "project_id": project_id})

    def ping(self, timestamp: float | None = None) -> None:
        self._send({"type": "ping", "timestamp": timestamp})

    def _send(self, message: dict[str, Any]) -> None:
        if not self._connected.is_set():
            logger.debug("realtime_message_deferred", message_type=message["type"])
            return
        self._outgoing.put_nowait(message)

    # -----------------------------------------------------------------
    # Lifecycle
    # -----------------------------------------------------------------

    def start(self) -> asyncio.Task[None]:
        """Run the connection loop in a background task."""
        if self._task is None or self._task.done():
            self._shutdown.clear()
            self._task = asyncio.create_task(self.run())
        return self._task

    async def wait_connected(self, timeout: float | None = None) -> None:
        await asyncio.wait_for(self._connected.wait(), timeout=timeout)

    async def close(self) -> None:
        """Stop reconnecting and close the current socket."""
        self._shutdown.set()
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        self._connected.clear()
        logger.info("realtime_connection_closed_by_client", url=self.url)

    async def run(self) -> None:
        """Main connection loop with reconnection."""
        reconnect_delay = self._initial_delay

        while not self._shutdown.is_set():
            try:
                async with self._connect(
                    self.url,
                    additional_headers={"Authorization": f"Bearer {self._token}"},
                ) as websocket:
                    reconnect_delay = self._initial_delay
                    self._on_connected()
                    await self._pump(websocket)
                    logger.info("realtime_connection_ended", url=self.url)
            except InvalidStatus as e:
                status_code = e.response.status_code
                if status_code in REJECTED_STATUS_CODES:
                    self.rejected = True
                    logger.error("realtime_handshake_rejected", url=self.url, status_code=status_code)
                    return
                logger.warning("realtime_handshake_failed", url=self.url, status_code=status_code)
            except InvalidHandshake as e:
                logger.warning("realtime_handshake_failed", url=self.url, error=str(e))
            except ConnectionClosed as e:
                logger.warning("realtime_connection_closed", code=e.code, reason=e.reason)
            except OSError as e:
                logger.warning("realtime_connection_failed", url=self.url, error=str(e))
            except Exception:
                logger.exception("realtime_connection_error", url=self.url)
            finally:
                self._connected.clear()

            if self._shutdown.is_set():
                break

            logger.info("realtime_reconnecting", delay_seconds=reconnect_delay)
            try:
                await asyncio.wait_for(self._shutdown.wait(), timeout=reconnect_delay)
                break
            except TimeoutError:
                pass

            # Exponential backoff
            reconnect_delay = min(reconnect_delay * 2, self._max_delay)

    def _on_connected(self) -> None:
        # No await until _connected is set, so a join issued meanwhile is
        # either in the replay or queued behind it.
        while not self._outgoing.empty():
            self._outgoing.get_nowait()

        self.connect_count += 1
        for project_id in sorted(self._active):
            self._outgoing.put_nowait({"type": "join-project", "project_id": project_id})

        self._connected.set()
        logger.info(
            "realtime_connected",
            url=self.url,
            attempt=self.connect_count,
            rejoined=len(self._active),
        )

    async def _pump(self, websocket: Any) -> None:
        writer = asyncio.create_task(self._write_loop(websocket))
        try:
            async for raw in websocket:
                self._handle_message(raw)
        finally:
            writer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await writer

    async def _write_loop(self, websocket: Any) -> None:
        while True:
            message = await self._outgoing.get()
            await websocket.send(json.dumps(message))

    def _handle_message(self, raw: str | bytes) -> None:
        try:
            message = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("realtime_message_invalid")
            return
        if isinstance(message, dict) and message.get("type") == "pong":
            logger.debug("realtime_pong", timestamp=message.get("timestamp"))
            return
        self.bus.dispatch_raw(message)
