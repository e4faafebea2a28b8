from types import SimpleNamespace
from unittest.mock import AsyncMock, Mock, patch

import pytest

from api.main import app, lifespan
from core.constants import Settings
from integrations.record_store import InMemoryRequestStore, PostgresRequestStore


def make_settings(**overrides: object) -> Settings:
    return Settings(_env_file=None, **overrides)


@pytest.mark.asyncio
async def test_lifespan_memory_store() -> None:
    """Startup with the in-memory store builds every component and needs no pool."""
    mock_app = Mock()
    mock_app.state = SimpleNamespace()
    mock_openai = Mock()
    mock_openai.close = AsyncMock()

    with (
        patch("api.main.get_settings", return_value=make_settings(record_store="memory")),
        patch("api.main.create_generation_client_from_settings", return_value=mock_openai),
        patch("api.main.create_database_pool", new_callable=AsyncMock) as mock_create_db,
        patch("api.main.WebSocketManager", autospec=True) as MockWSManager,
    ):
        mock_ws_instance = MockWSManager.return_value
        mock_ws_instance.start_idle_checker = AsyncMock()
        mock_ws_instance.graceful_shutdown = AsyncMock()

        async with lifespan(mock_app):
            assert isinstance(mock_app.state.record_store, InMemoryRequestStore)
            assert mock_app.state.db_pool is None
            assert mock_app.state.interpreter is not None
            assert mock_app.state.generation_client is not None
            assert len(mock_app.state.session_registry) == 0
            mock_ws_instance.start_idle_checker.assert_awaited_once()

        mock_create_db.assert_not_called()
        mock_ws_instance.graceful_shutdown.assert_awaited_once()
        mock_openai.close.assert_awaited_once()


@pytest.mark.asyncio
async def test_lifespan_postgres_store() -> None:
    """The PostgreSQL store gets a pool at startup which is closed on shutdown."""
    mock_app = Mock()
    mock_app.state = SimpleNamespace()
    mock_openai = Mock()
    mock_openai.close = AsyncMock()
    mock_db_pool = Mock()

    with (
        patch("api.main.get_settings", return_value=make_settings(record_store="postgres")),
        patch("api.main.create_generation_client_from_settings", return_value=mock_openai),
        patch("api.main.create_database_pool", new_callable=AsyncMock, return_value=mock_db_pool) as mock_create_db,
        patch("api.main.graceful_pool_close", new_callable=AsyncMock) as mock_close_db,
        patch("api.main.WebSocketManager", autospec=True) as MockWSManager,
    ):
        MockWSManager.return_value.start_idle_checker = AsyncMock()
        MockWSManager.return_value.graceful_shutdown = AsyncMock()

        async with lifespan(mock_app):
            assert isinstance(mock_app.state.record_store, PostgresRequestStore)
            assert mock_app.state.db_pool is mock_db_pool

        mock_create_db.assert_awaited_once()
        mock_close_db.assert_awaited_once_with(mock_db_pool)


@pytest.mark.asyncio
async def test_lifespan_startup_db_failure() -> None:
    """Startup fails when the database cannot be reached."""
    mock_app = Mock()
    mock_app.state = SimpleNamespace()

    with (
        patch("api.main.get_settings", return_value=make_settings(record_store="postgres")),
        patch("api.main.create_generation_client_from_settings"),
        patch("api.main.create_database_pool", new_callable=AsyncMock, side_effect=OSError("refused")),
    ):
        with pytest.raises(OSError, match="refused"):
            async with lifespan(mock_app):
                pass


def test_app_routes_exist() -> None:
    """Smoke test to verify router mounting."""
    routes = [r.path for r in app.routes]
    assert "/api/health" in routes
    assert "/api/health/ready" in routes
    assert "/ws/chat" in routes


@pytest.mark.asyncio
async def test_lifespan_creates_schema_when_enabled() -> None:
    mock_app = Mock()
    mock_app.state = SimpleNamespace()
    mock_openai = Mock()
    mock_openai.close = AsyncMock()

    with (
        patch("api.main.get_settings", return_value=make_settings(record_store="postgres", db_create_schema=True)),
        patch("api.main.create_generation_client_from_settings", return_value=mock_openai),
        patch("api.main.create_database_pool", new_callable=AsyncMock, return_value=Mock()),
        patch("api.main.graceful_pool_close", new_callable=AsyncMock),
        patch("api.main.WebSocketManager", autospec=True) as MockWSManager,
        patch.object(PostgresRequestStore, "create_schema", new_callable=AsyncMock) as mock_create_schema,
    ):
        MockWSManager.return_value.start_idle_checker = AsyncMock()
        MockWSManager.return_value.graceful_shutdown = AsyncMock()

        async with lifespan(mock_app):
            mock_create_schema.assert_awaited_once()
