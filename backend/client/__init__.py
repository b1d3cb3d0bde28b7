"""Client library for the task tracker realtime layer.

Key Components:
    - TaskApiClient: async REST client (httpx)
    - RealtimeConnection: websocket push channel with re-join on reconnect
    - ClientEventBus: per-connection listener registry
    - ProjectView / TaskIndex: reconciled task list of the viewed project
    - ClientSession: all of the above wired from Settings for one user

Usage:
    >>> bus = ClientEventBus()
    >>> connection = RealtimeConnection(websocket_url(api_url), token, bus)
    >>> connection.start()
    >>> view = ProjectView(TaskApiClient(api_url, token), connection, bus)
    >>> await view.open("prj_1a2b3c4d5e6f")
"""

from client.api import ApiError, TaskApiClient
from client.bus import ClientEventBus
from client.connection import RealtimeConnection, websocket_url
from client.reconciler import ProjectView, TaskIndex, ViewState
from client.session import ClientSession

__all__ = [
    "ApiError",
    "ClientEventBus",
    "ClientSession",
    "ProjectView",
    "RealtimeConnection",
    "TaskApiClient",
    "TaskIndex",
    "ViewState",
    "websocket_url",
]
