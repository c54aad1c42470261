import asyncio
from typing import List

from fastapi.requests import HTTPConnection

from analytics_ingestion_service.app.service.broadcast import BroadcastHub
from analytics_ingestion_service.app.service.stats import StatsAggregator
from analytics_ingestion_service.infrastructure.database.event_index import EventIndex

# Shared service instances live on app.state; HTTPConnection covers HTTP and WebSocket routes.

async def get_broadcast_hub(connection: HTTPConnection) -> BroadcastHub:
    return connection.app.state.broadcast_hub

async def get_event_index(connection: HTTPConnection) -> EventIndex:
    return connection.app.state.event_index

async def get_stats_aggregator(connection: HTTPConnection) -> StatsAggregator:
    return connection.app.state.stats

async def get_pipeline_tasks(connection: HTTPConnection) -> List[asyncio.Task]:
    return getattr(connection.app.state, "pipeline_tasks", [])
