# Kafka producer for analytics events (used by the load tools)
import asyncio
import logging
from typing import Optional

from confluent_kafka import Producer

from analytics_ingestion_service.infrastructure.kafka.schemas import RawEvent

logger = logging.getLogger(__name__)


class EventProducer:
    """
    Publishes RawEvents in their camelCase wire form, keyed by userId so a
    user's events stay on one partition.

    Delivery reports are served by a background poll task between
    start_polling() and stop_polling(); `delivered` and `failed` count them.
    """

    def __init__(self, bootstrap_servers: str, client_id: str = "analytics-producer", linger_ms: int = 10):
        self.producer_config = {
            'bootstrap.servers': bootstrap_servers,
            'client.id': client_id,
            'linger.ms': linger_ms,
        }
        self.producer = Producer(self.producer_config)
        self.delivered = 0
        self.failed = 0
        self._cancelled = False
        self._poll_loop_task: Optional[asyncio.Task] = None
        logger.info(f"EventProducer initialized with servers: {bootstrap_servers}")

    def _on_delivery(self, err, msg):
        if err is not None:
            self.failed += 1
            logger.error(f"Event delivery to {msg.topic()} failed: {err}")
        else:
            self.delivered += 1

    async def _poll_loop(self):
        while not self._cancelled:
            self.producer.poll(0)
            await asyncio.sleep(0.1)
        logger.info("EventProducer poll loop stopped.")

    def produce_event(self, topic: str, event: RawEvent) -> None:
        """
        Enqueues `event` on `topic`. When the local queue is full, delivery
        reports are served for up to a second and the event is enqueued
        again; a second BufferError propagates.
        """
        value = event.model_dump_json(by_alias=True).encode('utf-8')
        key = str(event.user_id).encode('utf-8')
        try:
            self.producer.produce(topic, value=value, key=key, callback=self._on_delivery)
        except BufferError:
            logger.warning(f"Producer queue full, draining before enqueueing to {topic}.")
            self.producer.poll(1.0)
            self.producer.produce(topic, value=value, key=key, callback=self._on_delivery)

    async def start_polling(self):
        if self._poll_loop_task is None or self._poll_loop_task.done():
            self._cancelled = False
            self._poll_loop_task = asyncio.create_task(self._poll_loop())

    async def stop_polling(self):
        if self._poll_loop_task is None:
            return
        self._cancelled = True
        try:
            await asyncio.wait_for(self._poll_loop_task, timeout=5.0)
        except asyncio.TimeoutError:
            logger.warning("EventProducer poll loop did not stop in time.")
        self._poll_loop_task = None

    def flush(self, timeout: float = 10.0) -> int:
        """Waits for queued events to be delivered; returns how many are still queued."""
        remaining = self.producer.flush(timeout)
        if remaining > 0:
            logger.warning(f"{remaining} events still queued after flush timeout.")
        return remaining
