import pytest
from unittest.mock import patch, AsyncMock, MagicMock

from analytics_ingestion_service.infrastructure.database import connection
from analytics_ingestion_service.app.config import settings


@pytest.fixture(autouse=True)
def reset_connection_globals():
    connection.client = None
    connection.db = None
    yield
    connection.client = None
    connection.db = None


@pytest.mark.asyncio
@patch('analytics_ingestion_service.infrastructure.database.connection.AsyncIOMotorClient')
async def test_connect_to_mongo_success(MockMotorClient):
    # Arrange
    mock_client = MagicMock()
    mock_client.admin.command = AsyncMock(return_value={"ok": 1})
    MockMotorClient.return_value = mock_client

    # Act
    db = await connection.connect_to_mongo()

    # Assert
    MockMotorClient.assert_called_once_with(
        settings.MONGO_DETAILS,
        serverSelectionTimeoutMS=settings.STORE_REQUEST_TIMEOUT_MS,
        socketTimeoutMS=settings.STORE_REQUEST_TIMEOUT_MS,
    )
    mock_client.admin.command.assert_awaited_once_with('ping')
    mock_client.__getitem__.assert_called_once_with(settings.DB_NAME)
    assert db is connection.db

    # A second call reuses the connection
    assert await connection.connect_to_mongo() is db
    MockMotorClient.assert_called_once()


@pytest.mark.asyncio
@patch('analytics_ingestion_service.infrastructure.database.connection.AsyncIOMotorClient')
async def test_connect_to_mongo_failure(MockMotorClient):
    mock_client = MagicMock()
    mock_client.admin.command = AsyncMock(side_effect=Exception("server selection timeout"))
    MockMotorClient.return_value = mock_client

    with pytest.raises(ConnectionError, match="Failed to connect to MongoDB"):
        await connection.connect_to_mongo()

    mock_client.close.assert_called_once()
    assert connection.client is None
    assert connection.db is None


def test_close_mongo_connection():
    mock_client = MagicMock()
    connection.client = mock_client
    connection.db = MagicMock()

    connection.close_mongo_connection()

    mock_client.close.assert_called_once()
    assert connection.client is None
