"""Tests for the DatabaseManager singleton."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from docmigrate.core.config import settings
from docmigrate.core.database import DatabaseManager, db_manager
from docmigrate.migrations.models import MigrationContext


@pytest.fixture
def manager():
    """db_manager with a mocked Motor client, reset afterwards."""
    with patch("docmigrate.core.database.AsyncIOMotorClient") as mock_client_cls:
        mock_client = MagicMock()
        mock_client_cls.return_value = mock_client
        yield db_manager, mock_client_cls, mock_client
    db_manager._client = None
    db_manager._database = None


class TestDatabaseManager:
    def test_singleton(self):
        assert DatabaseManager() is db_manager

    def test_client_uses_pool_settings(self, manager):
        mgr, mock_client_cls, mock_client = manager

        assert mgr.client is mock_client
        assert mgr.client is mock_client
        mock_client_cls.assert_called_once()
        kwargs = mock_client_cls.call_args[1]
        assert kwargs["maxPoolSize"] == settings.mongo_max_pool_size
        assert kwargs["serverSelectionTimeoutMS"] == settings.mongo_server_selection_timeout_ms

    def test_build_context(self, manager):
        mgr, _, mock_client = manager

        ctx = mgr.build_context()

        assert isinstance(ctx, MigrationContext)
        assert ctx.client is mock_client
        mock_client.__getitem__.assert_called_with(settings.mongodb_database)

    @pytest.mark.asyncio
    async def test_ping(self, manager):
        mgr, _, mock_client = manager
        mock_client.admin.command = AsyncMock(return_value={"ok": 1})

        assert await mgr.ping() is True

        mock_client.admin.command = AsyncMock(side_effect=Exception("no servers"))
        assert await mgr.ping() is False

    @pytest.mark.asyncio
    async def test_close(self, manager):
        mgr, _, mock_client = manager
        _ = mgr.database

        await mgr.close()

        mock_client.close.assert_called_once()
        assert mgr._client is None
        assert mgr._database is None
