"""WebSocket handler for the realtime push channel.

Clients connect to ``/ws`` with a bearer credential (``Authorization`` header
or ``?token=`` query parameter). Unauthenticated handshakes are closed with
code 4401 before acceptance. Once admitted, a client controls which project
rooms it receives events for with ``join-project`` / ``leave-project``
messages, and can ``ping`` to check liveness.
"""

import asyncio
import contextlib
import json
from typing import Any

import structlog
from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from auth import bearer_token_from_header
from realtime import (
    AuthenticationError,
    Connection,
    DeliveryError,
    InvalidIdentifierError,
    RoomRouter,
    SessionRegistry,
)

logger = structlog.get_logger(__name__)

websocket_router = APIRouter()

WS_CLOSE_UNAUTHORIZED = 4401


def handshake_token(websocket: WebSocket) -> str | None:
    """Return the credential presented at handshake, header first."""
    token = bearer_token_from_header(websocket.headers.get("authorization"))
    return token or websocket.query_params.get("token")


def handle_command(
    connection: Connection,
    room_router: RoomRouter,
    data: Any,
) -> None:
    """Apply one client control message.

    Control messages are fire-and-forget; anything unknown or malformed is
    logged and ignored so a misbehaving client cannot break its connection.

    Args:
        connection: The connection that sent the message.
        room_router: Router holding room membership.
        data: The decoded JSON message.
    """
    connection_id = connection.connection_id
    if not isinstance(data, dict):
        logger.warning("invalid_ws_message", connection_id=connection_id)
        return

    command_type = data.get("type")
    logger.debug("command_received", connection_id=connection_id, command_type=command_type)

    try:
        if command_type == "join-project":
            room_router.join(connection_id, data.get("project_id"))
        elif command_type == "leave-project":
            room_router.leave(connection_id, data.get("project_id"))
        elif command_type == "ping":
            # Through the outbox so the pong stays ordered with pushed events.
            connection.deliver({"type": "pong", "timestamp": data.get("timestamp")})
        else:
            logger.warning(
                "unknown_command",
                connection_id=connection_id,
                command_type=command_type,
            )
    except InvalidIdentifierError as e:
        logger.warning(
            "invalid_room_command",
            connection_id=connection_id,
            command_type=command_type,
            error=str(e),
        )
    except DeliveryError as e:
        logger.warning("pong_delivery_failed", connection_id=connection_id, error=str(e))


@websocket_router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket) -> None:
    """WebSocket endpoint for realtime project events.

    This endpoint handles bidirectional communication:
    - Server -> Client: Project and task events for joined rooms, pongs
    - Client -> Server: join-project, leave-project, ping

    Args:
        websocket: The WebSocket connection.
    """
    registry: SessionRegistry = websocket.app.state.registry
    room_router: RoomRouter = websocket.app.state.router

    try:
        connection = registry.admit(handshake_token(websocket))
    except AuthenticationError:
        await websocket.close(code=WS_CLOSE_UNAUTHORIZED)
        return

    connection_id = connection.connection_id
    await websocket.accept()
    logger.info("websocket_connected", connection_id=connection_id, user_id=connection.user_id)

    try:

        async def send_events() -> None:
            """Drain the connection's outbox to the client in enqueue order."""
            try:
                while True:
                    message = await connection.outbox.get()
                    # None is the close sentinel from Connection.close().
                    if message is None:
                        break
                    await websocket.send_json(message)
                    logger.debug(
                        "event_sent",
                        connection_id=connection_id,
                        event_type=message.get("type"),
                    )
            except WebSocketDisconnect:
                logger.info("websocket_disconnect_during_send", connection_id=connection_id)
            except Exception as e:
                logger.error("websocket_send_error", connection_id=connection_id, error=str(e))

        async def receive_commands() -> None:
            """Receive and apply control messages from the client."""
            try:
                while True:
                    raw = await websocket.receive_text()
                    try:
                        data = json.loads(raw)
                    except json.JSONDecodeError:
                        logger.warning("invalid_ws_message", connection_id=connection_id)
                        continue
                    handle_command(connection, room_router, data)
            except WebSocketDisconnect:
                logger.info("websocket_disconnect_during_receive", connection_id=connection_id)
            except Exception as e:
                logger.error("websocket_receive_error", connection_id=connection_id, error=str(e))

        # Run both tasks concurrently
        send_task = asyncio.create_task(send_events())
        receive_task = asyncio.create_task(receive_commands())

        # Wait for either task to complete (usually due to disconnect)
        done, pending = await asyncio.wait(
            [send_task, receive_task],
            return_when=asyncio.FIRST_COMPLETED,
        )

        for task in pending:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    except WebSocketDisconnect:
        logger.info("websocket_disconnected", connection_id=connection_id)
    except Exception as e:
        logger.error("websocket_error", connection_id=connection_id, error=str(e))
    finally:
        # Every termination path leaves all rooms before the session goes away.
        left = room_router.disconnect(connection_id)
        registry.remove(connection_id)
        logger.info(
            "websocket_cleanup_complete",
            connection_id=connection_id,
            rooms_left=left,
        )
