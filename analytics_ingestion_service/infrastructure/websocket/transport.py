from fastapi import WebSocket
from starlette.websockets import WebSocketState

from analytics_ingestion_service.app.service.interfaces.subscriber_transport import AbstractSubscriberTransport


class WebSocketSubscriberTransport(AbstractSubscriberTransport):
    def __init__(self, websocket: WebSocket):
        self.websocket = websocket

    @property
    def is_open(self) -> bool:
        return (
            self.websocket.client_state == WebSocketState.CONNECTED
            and self.websocket.application_state == WebSocketState.CONNECTED
        )

    async def send_text(self, data: str) -> None:
        await self.websocket.send_text(data)

    async def close(self) -> None:
        if self.is_open:
            await self.websocket.close()
