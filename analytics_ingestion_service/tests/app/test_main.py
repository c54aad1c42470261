import asyncio
import pytest
from unittest.mock import patch, AsyncMock, MagicMock
from fastapi import FastAPI

from analytics_ingestion_service.app.main import build_pipelines, check_settings, startup, shutdown, app as main_app_instance
from analytics_ingestion_service.app.config import settings
from analytics_ingestion_service.app.service.broadcast import BroadcastHub
from analytics_ingestion_service.app.service.exceptions import ConfigurationError
from analytics_ingestion_service.app.service.stats import StatsAggregator


@pytest.fixture
def mock_app():
    return FastAPI()


@patch('analytics_ingestion_service.app.main.KafkaLogBroker')
def test_build_pipelines_one_per_configured_consumer(MockBroker):
    hub = BroadcastHub()
    with patch.object(settings, 'CONSUMER_CONCURRENCY', 3):
        pipelines = build_pipelines(MagicMock(), StatsAggregator(), hub)

    assert [pipeline.name for pipeline in pipelines] == ["pipeline-0", "pipeline-1", "pipeline-2"]
    assert MockBroker.call_count == 3
    for pipeline in pipelines:
        assert pipeline.flush_threshold == settings.FLUSH_BATCH_SIZE
        assert pipeline.dispatcher._handlers == [hub.broadcast_many]


@pytest.mark.asyncio
@patch('analytics_ingestion_service.app.main.close_mongo_connection')
@patch('analytics_ingestion_service.app.main.build_pipelines')
@patch('analytics_ingestion_service.app.main.EventIndex')
@patch('analytics_ingestion_service.app.main.connect_to_mongo', new_callable=AsyncMock)
@patch('analytics_ingestion_service.app.main.PymongoInstrumentor')
async def test_startup_and_shutdown(
    mock_pymongo_instrumentor,
    mock_connect_to_mongo,
    MockEventIndex,
    mock_build_pipelines,
    mock_close_mongo,
    mock_app,
):
    # Arrange
    event_index = MockEventIndex.return_value
    event_index.initialize = AsyncMock()
    event_index.count = AsyncMock(return_value=0)
    pipeline = MagicMock()
    pipeline.name = "pipeline-0"
    stop_requested = asyncio.Event()

    async def run():
        await stop_requested.wait()

    pipeline.run = run
    pipeline.stop.side_effect = stop_requested.set
    mock_build_pipelines.return_value = [pipeline]

    # Act
    await startup(mock_app)

    # Assert
    mock_pymongo_instrumentor.return_value.instrument.assert_called_once()
    MockEventIndex.assert_called_once_with(mock_connect_to_mongo.return_value)
    event_index.initialize.assert_awaited_once()
    assert mock_app.state.event_index is event_index
    assert isinstance(mock_app.state.broadcast_hub, BroadcastHub)
    assert isinstance(mock_app.state.stats, StatsAggregator)
    assert len(mock_app.state.pipeline_tasks) == 1
    assert not mock_app.state.pipeline_tasks[0].done()

    await shutdown(mock_app)

    pipeline.stop.assert_called_once()
    assert mock_app.state.pipeline_tasks[0].done()
    mock_close_mongo.assert_called_once()


@pytest.mark.asyncio
@patch('analytics_ingestion_service.app.main.build_pipelines')
@patch('analytics_ingestion_service.app.main.connect_to_mongo', new_callable=AsyncMock)
@patch('analytics_ingestion_service.app.main.PymongoInstrumentor')
async def test_startup_fails_when_store_unreachable(mock_pymongo_instrumentor, mock_connect_to_mongo, mock_build_pipelines, mock_app):
    mock_connect_to_mongo.side_effect = ConnectionError("Failed to connect to MongoDB")

    with pytest.raises(ConnectionError):
        await startup(mock_app)

    mock_build_pipelines.assert_not_called()


def test_routes_are_mounted():
    paths = {route.path for route in main_app_instance.routes}

    assert {"/health", "/api/v1/stats", "/api/v1/events", "/ws/events"} <= paths


@pytest.mark.parametrize("name, value", [
    ("CONSUMER_CONCURRENCY", 0),
    ("FLUSH_BATCH_SIZE", 0),
    ("BROADCAST_REPLAY_SIZE", 5000),
])
def test_check_settings_rejects_unusable_values(name, value):
    with patch.object(settings, name, value):
        with pytest.raises(ConfigurationError):
            check_settings()


@pytest.mark.asyncio
@patch('analytics_ingestion_service.app.main.connect_to_mongo', new_callable=AsyncMock)
@patch('analytics_ingestion_service.app.main.PymongoInstrumentor')
async def test_startup_rejects_bad_configuration_before_connecting(mock_pymongo_instrumentor, mock_connect_to_mongo, mock_app):
    with patch.object(settings, 'FLUSH_BATCH_SIZE', 0):
        with pytest.raises(ConfigurationError):
            await startup(mock_app)

    mock_connect_to_mongo.assert_not_called()
