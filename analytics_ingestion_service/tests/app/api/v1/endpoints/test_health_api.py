import pytest
from unittest.mock import AsyncMock, MagicMock

from fastapi.testclient import TestClient

from analytics_ingestion_service.app.main import app
from analytics_ingestion_service.app.config import settings
from analytics_ingestion_service.app.dependencies.services import (
    get_broadcast_hub,
    get_event_index,
    get_pipeline_tasks,
)

# --- Fixtures ---

@pytest.fixture
def client():
    app.dependency_overrides = {}
    yield TestClient(app)
    app.dependency_overrides = {}


@pytest.fixture
def mock_event_index():
    event_index = MagicMock()
    event_index.health_check = AsyncMock(return_value=True)
    return event_index


@pytest.fixture
def mock_hub():
    hub = MagicMock()
    hub.client_count.return_value = 3
    return hub


def make_task(done: bool) -> MagicMock:
    task = MagicMock()
    task.done.return_value = done
    return task


@pytest.fixture
def pipeline_tasks(client, mock_event_index, mock_hub):
    tasks = [make_task(False), make_task(False)]
    app.dependency_overrides[get_event_index] = lambda: mock_event_index
    app.dependency_overrides[get_broadcast_hub] = lambda: mock_hub
    app.dependency_overrides[get_pipeline_tasks] = lambda: tasks
    return tasks

# --- Tests for GET /health ---

def test_health_check_store_connected(client: TestClient, mock_event_index: MagicMock, pipeline_tasks):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {
        "status": "ok",
        "components": {"mongodb": "connected", "subscribers": 3, "pipelines": {"running": 2, "total": 2}},
        "service_name": settings.SERVICE_NAME,
    }
    mock_event_index.health_check.assert_awaited_once()


def test_health_check_store_disconnected(client: TestClient, mock_event_index: MagicMock, pipeline_tasks):
    mock_event_index.health_check.return_value = False

    response = client.get("/health")

    assert response.status_code == 200 # The endpoint itself still answers
    assert response.json()["components"]["mongodb"] == "disconnected"


def test_health_check_degraded_when_a_pipeline_has_stopped(client: TestClient, pipeline_tasks):
    # Arrange
    pipeline_tasks[1].done.return_value = True

    # Act
    response = client.get("/health")

    # Assert
    assert response.status_code == 503
    body = response.json()
    assert body["status"] == "degraded"
    assert body["components"]["pipelines"] == {"running": 1, "total": 2}


def test_health_check_without_started_pipelines(client: TestClient, mock_event_index: MagicMock, mock_hub: MagicMock):
    app.dependency_overrides[get_event_index] = lambda: mock_event_index
    app.dependency_overrides[get_broadcast_hub] = lambda: mock_hub
    app.dependency_overrides[get_pipeline_tasks] = lambda: []

    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["components"]["pipelines"] == {"running": 0, "total": 0}
