# API Router for stored events and ingestion stats
from fastapi import APIRouter, Depends, HTTPException, Query
import logging
from typing import List, Optional

from pymongo.errors import PyMongoError

from analytics_ingestion_service.app.dependencies.services import (
    get_broadcast_hub,
    get_event_index,
    get_stats_aggregator,
)
from analytics_ingestion_service.app.models import ProcessedEvent
from analytics_ingestion_service.app.service.broadcast import BroadcastHub
from analytics_ingestion_service.app.service.reporting import collect_report
from analytics_ingestion_service.app.service.stats import StatsAggregator
from analytics_ingestion_service.infrastructure.database.event_index import EventIndex

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Events"])

@router.get("/stats")
async def get_stats(
    stats: StatsAggregator = Depends(get_stats_aggregator),
    event_index: EventIndex = Depends(get_event_index),
    hub: BroadcastHub = Depends(get_broadcast_hub),
):
    return await collect_report(stats, event_index, hub)

@router.get("/events", response_model=List[ProcessedEvent], response_model_by_alias=True)
async def search_events(
    event_type: Optional[str] = Query(None, description="Filter by eventType"),
    user_id: Optional[str] = Query(None, description="Filter by userId"),
    session_id: Optional[str] = Query(None, description="Filter by sessionId"),
    size: int = Query(100, ge=1, le=1000),
    event_index: EventIndex = Depends(get_event_index),
):
    try:
        return await event_index.search(
            event_type=event_type, user_id=user_id, session_id=session_id, size=size
        )
    except PyMongoError as e:
        logger.error(f"Event search failed: {e}", exc_info=True)
        raise HTTPException(status_code=503, detail="Event store unavailable")
