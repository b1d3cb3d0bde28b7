"""API module for HTTP routes and WebSocket handlers.

This module exposes the FastAPI routers for the task tracker backend.
"""

from api.accounts import auth_router
from api.routes import router
from api.websocket import websocket_router

__all__ = ["auth_router", "router", "websocket_router"]
