# API Router for Health Checks
from typing import List
import asyncio

from fastapi import APIRouter, Depends, Response, status
import logging

from analytics_ingestion_service.app.config import settings
from analytics_ingestion_service.app.dependencies.services import (
    get_broadcast_hub,
    get_event_index,
    get_pipeline_tasks,
)
from analytics_ingestion_service.app.service.broadcast import BroadcastHub
from analytics_ingestion_service.infrastructure.database.event_index import EventIndex

logger = logging.getLogger(__name__)
router = APIRouter()

@router.get("/health", tags=["Monitoring"])
async def health_check(
    response: Response,
    event_index: EventIndex = Depends(get_event_index),
    hub: BroadcastHub = Depends(get_broadcast_hub),
    pipeline_tasks: List[asyncio.Task] = Depends(get_pipeline_tasks),
):
    mongodb_status = "connected" if await event_index.health_check() else "disconnected"
    running = sum(1 for task in pipeline_tasks if not task.done())

    # A finished pipeline task means its partitions are no longer consumed.
    health_status = "ok"
    if running < len(pipeline_tasks):
        health_status = "degraded"
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        logger.warning(f"Health check: {len(pipeline_tasks) - running} of {len(pipeline_tasks)} pipelines stopped.")

    return {
        "status": health_status,
        "components": {
            "mongodb": mongodb_status,
            "subscribers": hub.client_count(),
            "pipelines": {"running": running, "total": len(pipeline_tasks)},
        },
        "service_name": settings.SERVICE_NAME,
    }
