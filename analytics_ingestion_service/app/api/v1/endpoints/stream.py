# WebSocket route for the live event stream
from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
import logging

from analytics_ingestion_service.app.dependencies.services import get_broadcast_hub
from analytics_ingestion_service.app.service.broadcast import BroadcastHub
from analytics_ingestion_service.infrastructure.websocket.transport import WebSocketSubscriberTransport

logger = logging.getLogger(__name__)
router = APIRouter()

@router.websocket("/ws/events")
async def stream_events(websocket: WebSocket, hub: BroadcastHub = Depends(get_broadcast_hub)):
    await websocket.accept()
    connection = await hub.register(WebSocketSubscriberTransport(websocket))
    try:
        while True:
            data = await websocket.receive_text()
            hub.handle_inbound(connection, data)
    except WebSocketDisconnect:
        pass
    except RuntimeError as e:
        # receive after the hub closed a dropped subscriber
        logger.debug(f"WebSocket receive ended: {e}")
    finally:
        await hub.unregister(connection)
