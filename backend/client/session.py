"""Wiring for one signed-in client.

``ClientSession`` builds the REST client, the push channel, the event bus and
the project view from ``Settings`` so they all share one bearer credential
and one bus, and tears them down together.

Usage:
    >>> async with ClientSession.create(token) as session:
    ...     await session.connection.wait_connected(timeout=5)
    ...     await session.view.open("prj_1a2b3c4d5e6f")
"""

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import structlog
import websockets

from client.api import TaskApiClient
from client.bus import ClientEventBus
from client.connection import RealtimeConnection, websocket_url
from client.reconciler import ProjectView, ViewState
from config import Settings, settings

logger = structlog.get_logger(__name__)


@dataclass
class ClientSession:
    """REST client, push channel, bus and view of one user."""

    api: TaskApiClient
    bus: ClientEventBus
    connection: RealtimeConnection
    view: ProjectView

    @classmethod
    def create(
        cls,
        token: str,
        app_settings: Settings | None = None,
        *,
        connect: Callable[..., Any] = websockets.connect,
    ) -> "ClientSession":
        cfg = app_settings or settings
        bus = ClientEventBus()
        api = TaskApiClient(cfg.api_url, token)
        connection = RealtimeConnection(
            websocket_url(cfg.api_url),
            token,
            bus,
            connect=connect,
            initial_delay=cfg.reconnect_initial_delay_seconds,
            max_delay=cfg.reconnect_max_delay_seconds,
        )
        return cls(api=api, bus=bus, connection=connection, view=ProjectView(api, connection, bus))

    async def __aenter__(self) -> "ClientSession":
        self.connection.start()
        logger.info("client_session_started", url=self.connection.url)
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the view, then the push channel, then the REST client."""
        if self.view.state != ViewState.UNLOADED:
            self.view.close()
        try:
            await self.connection.close()
        finally:
            await self.api.aclose()
        logger.info("client_session_closed")
