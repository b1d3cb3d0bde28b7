"""Tests for client/session.py -- settings-driven client wiring and teardown."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from client.reconciler import ViewState
from client.session import ClientSession
from config import Settings


@pytest.fixture()
def client_settings() -> Settings:
    return Settings(
        api_url="https://tasks.example.com/",
        reconnect_initial_delay_seconds=0.5,
        reconnect_max_delay_seconds=8.0,
    )


def _stub_transports(session: ClientSession) -> None:
    session.connection.start = MagicMock()
    session.connection.close = AsyncMock()
    session.api.aclose = AsyncMock()


class TestCreate:
    async def test_shares_bus_and_url(self, client_settings: Settings) -> None:
        session = ClientSession.create("tok", client_settings)

        assert session.api.base_url == "https://tasks.example.com"
        assert session.connection.url == "wss://tasks.example.com/ws"
        assert session.connection.bus is session.bus
        assert session.view.state == ViewState.UNLOADED

        await session.api.aclose()


class TestLifecycle:
    async def test_context_starts_and_closes(self, client_settings: Settings) -> None:
        session = ClientSession.create("tok", client_settings)
        _stub_transports(session)

        async with session as entered:
            assert entered is session
            session.connection.start.assert_called_once_with()

        session.connection.close.assert_awaited_once()
        session.api.aclose.assert_awaited_once()

    async def test_open_view_is_closed(self, client_settings: Settings) -> None:
        session = ClientSession.create("tok", client_settings)
        _stub_transports(session)
        session.view = MagicMock(state=ViewState.READY)

        await session.aclose()

        session.view.close.assert_called_once_with()

    async def test_api_closed_when_connection_close_fails(self, client_settings: Settings) -> None:
        session = ClientSession.create("tok", client_settings)
        _stub_transports(session)
        session.connection.close = AsyncMock(side_effect=RuntimeError("socket gone"))

        with pytest.raises(RuntimeError):
            await session.aclose()

        session.api.aclose.assert_awaited_once()
