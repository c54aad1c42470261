# Fan-out of processed events to live subscribers
import asyncio
import json
import logging
import threading
from collections import deque
from typing import Deque, List, Optional, Sequence, Set

from analytics_ingestion_service.app.config import settings
from analytics_ingestion_service.app.models import ProcessedEvent, StreamMessage
from analytics_ingestion_service.app.service.interfaces.subscriber_transport import AbstractSubscriberTransport

logger = logging.getLogger(__name__)


class SubscriberConnection:
    """
    One registered subscriber. Messages are queued in a bounded outbox and
    written by a dedicated sender task, so a slow transport only ever
    stalls its own task. Each send is bounded by `send_timeout`.
    """

    def __init__(
        self,
        transport: AbstractSubscriberTransport,
        hub: "BroadcastHub",
        send_timeout: float,
        outbox_size: int,
    ):
        self.transport = transport
        self.hub = hub
        self.send_timeout = send_timeout
        self.outbox: asyncio.Queue = asyncio.Queue(maxsize=outbox_size)
        self.closed = False
        self._sender_task: Optional[asyncio.Task] = None

    @property
    def is_open(self) -> bool:
        return not self.closed and self.transport.is_open

    def offer(self, data: str) -> bool:
        """Queues `data` without waiting. Returns False if the connection is closed or backed up."""
        if not self.is_open:
            return False
        try:
            self.outbox.put_nowait(data)
            return True
        except asyncio.QueueFull:
            return False

    def start(self) -> None:
        self._sender_task = asyncio.create_task(self._send_loop())

    async def _send_loop(self) -> None:
        while True:
            data = await self.outbox.get()
            try:
                await asyncio.wait_for(self.transport.send_text(data), timeout=self.send_timeout)
            except Exception as e:
                logger.info(f"Dropping subscriber after failed send: {type(e).__name__}: {e}")
                self.hub.discard(self)
                await self._close_transport()
                return

    async def close(self) -> None:
        self.closed = True
        if self._sender_task is not None and self._sender_task is not asyncio.current_task():
            self._sender_task.cancel()
            try:
                await self._sender_task
            except asyncio.CancelledError:
                pass
        self._sender_task = None
        await self._close_transport()

    async def _close_transport(self) -> None:
        try:
            await self.transport.close()
        except Exception as e:
            logger.debug(f"Error closing subscriber transport: {e}")


class BroadcastHub:
    """
    Registered subscriber connections plus a bounded history of the most
    recent broadcast events.

    The connection set and history are guarded by one lock. Neither
    register() nor broadcast() awaits while holding it, so replay to a new
    subscriber is queued before any later live event.
    """

    def __init__(
        self,
        history_size: int = settings.BROADCAST_HISTORY_SIZE,
        replay_size: int = settings.BROADCAST_REPLAY_SIZE,
        send_timeout: float = settings.BROADCAST_SEND_TIMEOUT_SECONDS,
        outbox_size: int = settings.BROADCAST_OUTBOX_SIZE,
    ):
        self.replay_size = replay_size
        self.send_timeout = send_timeout
        # Replay must fit in a fresh outbox.
        self.outbox_size = max(outbox_size, replay_size + 1)
        self._history: Deque[ProcessedEvent] = deque(maxlen=history_size)
        self._connections: Set[SubscriberConnection] = set()
        self._closing: Set[asyncio.Task] = set()
        self._lock = threading.Lock()

    async def register(self, transport: AbstractSubscriberTransport) -> SubscriberConnection:
        connection = SubscriberConnection(transport, self, self.send_timeout, self.outbox_size)
        with self._lock:
            self._connections.add(connection)
            replay = list(self._history)[-self.replay_size:] if self.replay_size > 0 else []
            for event in replay:
                connection.offer(self._encode_event(event))
            count = len(self._connections)
        connection.start()
        logger.info(f"Client connected. Replayed {len(replay)} events. Total clients: {count}")
        return connection

    def discard(self, connection: SubscriberConnection) -> None:
        with self._lock:
            if connection not in self._connections:
                return
            self._connections.discard(connection)
            count = len(self._connections)
        connection.closed = True
        logger.info(f"Client disconnected. Total clients: {count}")

    async def unregister(self, connection: SubscriberConnection) -> None:
        self.discard(connection)
        await connection.close()

    def broadcast(self, event: ProcessedEvent) -> int:
        """
        Records `event` in the history and queues it for every open
        connection. Connections that are closed or cannot keep up are
        dropped. Never raises for transport problems; returns the number
        of connections the event was queued for.
        """
        data = self._encode_event(event)
        stale: List[SubscriberConnection] = []
        delivered = 0
        with self._lock:
            self._history.append(event)
            for connection in self._connections:
                if connection.offer(data):
                    delivered += 1
                else:
                    stale.append(connection)
        for connection in stale:
            self.discard(connection)
            task = asyncio.ensure_future(connection.close())
            self._closing.add(task)
            task.add_done_callback(self._closing.discard)
        return delivered

    def broadcast_many(self, events: Sequence[ProcessedEvent]) -> None:
        for event in events:
            self.broadcast(event)

    def handle_inbound(self, connection: SubscriberConnection, raw: str) -> None:
        """Handles a control message from a subscriber; anything unrecognized is ignored."""
        try:
            message = json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            logger.debug("Ignoring malformed subscriber message.")
            return
        if not isinstance(message, dict):
            return
        message_type = message.get("type")
        if message_type == "subscribe":
            logger.info("Client subscribed to event stream")
        elif message_type == "ping":
            reply = StreamMessage(type="stats", payload={"clients": self.client_count()})
            connection.offer(reply.model_dump_json())

    def recent_history(self) -> List[ProcessedEvent]:
        with self._lock:
            return list(self._history)

    def client_count(self) -> int:
        with self._lock:
            return len(self._connections)

    async def close(self) -> None:
        with self._lock:
            connections = list(self._connections)
            self._connections.clear()
        for connection in connections:
            await connection.close()
        logger.info(f"Broadcast hub closed, {len(connections)} clients disconnected.")

    @staticmethod
    def _encode_event(event: ProcessedEvent) -> str:
        return StreamMessage(type="event", payload=event.to_wire()).model_dump_json()
