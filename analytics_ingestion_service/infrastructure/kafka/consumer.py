# Kafka implementation of the log broker used by the ingestion pipeline
import asyncio
import logging
from typing import Dict, List, Optional, Sequence

from confluent_kafka import Consumer, KafkaError, KafkaException, TopicPartition

from analytics_ingestion_service.app.config import settings
from analytics_ingestion_service.app.service.exceptions import LogBrokerError
from analytics_ingestion_service.app.service.interfaces.log_broker import (
    AbstractLogBroker,
    LogMessage,
    PartitionKey,
)

logger = logging.getLogger(__name__)


def _is_fatal(e: KafkaException) -> bool:
    error = e.args[0] if e.args else None
    return isinstance(error, KafkaError) and error.fatal()


def build_consumer_config() -> dict:
    return {
        'bootstrap.servers': settings.KAFKA_BOOTSTRAP_SERVERS,
        'group.id': settings.KAFKA_CONSUMER_GROUP_ID,
        'client.id': settings.KAFKA_CLIENT_ID,
        # Offsets are committed by the pipeline after durable writes only.
        'enable.auto.commit': False,
        'enable.auto.offset.store': False,
        # Only used when the group has no committed offset yet.
        'auto.offset.reset': 'latest',
        'session.timeout.ms': settings.KAFKA_SESSION_TIMEOUT_MS,
        'heartbeat.interval.ms': settings.KAFKA_HEARTBEAT_INTERVAL_MS,
        'max.poll.interval.ms': settings.KAFKA_MAX_POLL_INTERVAL_MS,
    }


class KafkaLogBroker(AbstractLogBroker):
    """
    Wraps a confluent_kafka Consumer. The client is blocking, so every call
    runs in a worker thread; one broker instance is driven by a single
    pipeline and is never called concurrently.
    """

    def __init__(
        self,
        topic: str = settings.KAFKA_TOPIC_NAME,
        batch_size: int = settings.KAFKA_FETCH_BATCH_SIZE,
        poll_timeout: float = settings.KAFKA_POLL_TIMEOUT_SECONDS,
        config: Optional[dict] = None,
    ):
        self.topic = topic
        self.batch_size = batch_size
        self.poll_timeout = poll_timeout
        self.config = config or build_consumer_config()
        self.consumer: Optional[Consumer] = None

    def _require_consumer(self) -> Consumer:
        if self.consumer is None:
            raise LogBrokerError("Kafka consumer is not subscribed.")
        return self.consumer

    async def subscribe(self) -> None:
        logger.info("Initializing Kafka consumer...")
        self.consumer = Consumer(self.config)
        self.consumer.subscribe([self.topic])
        logger.info(f"Kafka consumer subscribed to {self.topic} with group {self.config['group.id']}.")

    async def fetch_batch(self) -> List[LogMessage]:
        consumer = self._require_consumer()
        try:
            messages = await asyncio.to_thread(
                consumer.consume, num_messages=self.batch_size, timeout=self.poll_timeout
            )
        except KafkaException as e:
            raise LogBrokerError(f"Kafka consume failed: {e}") from e

        batch = []
        for msg in messages:
            error = msg.error()
            if error is not None:
                if error.code() == KafkaError._PARTITION_EOF:
                    continue
                if error.fatal():
                    raise LogBrokerError(f"Fatal Kafka error: {error}")
                logger.error(f"Kafka error: {error}. Skipping.")
                continue
            batch.append(LogMessage(
                topic=msg.topic(),
                partition=msg.partition(),
                offset=msg.offset(),
                value=msg.value(),
                key=msg.key(),
            ))
        return batch

    async def commit(self, resolved: Dict[PartitionKey, int]) -> None:
        if not resolved:
            return
        consumer = self._require_consumer()
        offsets = [TopicPartition(topic, partition, offset + 1) for (topic, partition), offset in resolved.items()]
        try:
            await asyncio.to_thread(consumer.commit, offsets=offsets, asynchronous=False)
        except KafkaException as e:
            if _is_fatal(e):
                raise LogBrokerError(f"Fatal Kafka error on commit: {e}") from e
            # The batch stays uncommitted and is redelivered; the store write is idempotent.
            logger.warning(f"Offset commit failed for {len(offsets)} partition(s): {e}")
            return
        logger.debug(f"Committed offsets: {[(tp.topic, tp.partition, tp.offset) for tp in offsets]}")

    async def heartbeat(self) -> None:
        consumer = self._require_consumer()
        try:
            await asyncio.to_thread(self._heartbeat, consumer)
        except KafkaException as e:
            if _is_fatal(e):
                raise LogBrokerError(f"Fatal Kafka error on heartbeat: {e}") from e
            logger.warning(f"Kafka heartbeat failed: {e}")

    @staticmethod
    def _heartbeat(consumer: Consumer) -> None:
        # A poll resets max.poll.interval; pausing first keeps it from handing out messages.
        assignment = consumer.assignment()
        consumer.pause(assignment)
        try:
            msg = consumer.poll(0)
            if msg is not None and msg.error() is None:
                consumer.seek(TopicPartition(msg.topic(), msg.partition(), msg.offset()))
        finally:
            consumer.resume(assignment)

    async def rewind(self, messages: Sequence[LogMessage]) -> None:
        consumer = self._require_consumer()
        first_offsets: Dict[PartitionKey, int] = {}
        for message in messages:
            key = message.partition_key
            if key not in first_offsets or message.offset < first_offsets[key]:
                first_offsets[key] = message.offset
        for (topic, partition), offset in first_offsets.items():
            try:
                await asyncio.to_thread(consumer.seek, TopicPartition(topic, partition, offset))
                logger.info(f"Rewound {topic}/{partition} to offset {offset} for redelivery.")
            except KafkaException as e:
                # Partition was revoked; its new owner resumes from the committed offset.
                logger.warning(f"Could not rewind {topic}/{partition}: {e}")

    async def close(self) -> None:
        if self.consumer is None:
            return
        logger.info("Closing Kafka consumer...")
        consumer, self.consumer = self.consumer, None
        try:
            await asyncio.to_thread(consumer.close)
        except KafkaException as e:
            logger.warning(f"Kafka consumer did not close cleanly: {e}")
            return
        logger.info("Kafka consumer closed.")
