# At-least-once ingestion: log -> transform -> bulk write -> commit, plus live fan-out
import asyncio
import logging
from typing import Dict, List, Optional, Sequence

import bson
from bson.errors import InvalidDocument
from opentelemetry.trace import SpanKind
from opentelemetry.trace.status import Status, StatusCode
from pydantic import ValidationError

from analytics_ingestion_service.app.config import settings
from analytics_ingestion_service.app.models import ProcessedEvent
from analytics_ingestion_service.app.observability import tracer, flush_latency_histogram
from analytics_ingestion_service.app.service.dispatch import FlushDispatcher, FlushHandler
from analytics_ingestion_service.app.service.exceptions import LogBrokerError, StoreWriteError
from analytics_ingestion_service.app.service.interfaces.log_broker import AbstractLogBroker, LogMessage, PartitionKey
from analytics_ingestion_service.app.service.stats import StatsAggregator
from analytics_ingestion_service.app.service.transform import transform_event
from analytics_ingestion_service.infrastructure.database.event_index import EventIndex
from analytics_ingestion_service.infrastructure.kafka.schemas import parse_raw_event

logger = logging.getLogger(__name__)


class IngestionPipeline:
    """
    Consumes batches from one log broker and indexes them.

    Within a batch every message is resolved as soon as it is transformed
    (or found malformed), windows of `flush_threshold` events are written in
    arrival order, and offsets are committed once per batch after every
    window in it has been durably written. A failed write aborts the batch
    without committing, so the whole batch is delivered again.
    """

    def __init__(
        self,
        broker: AbstractLogBroker,
        event_index: EventIndex,
        stats: StatsAggregator,
        flush_threshold: int = settings.FLUSH_BATCH_SIZE,
        redelivery_backoff: float = settings.REDELIVERY_BACKOFF_SECONDS,
        dispatcher: Optional[FlushDispatcher] = None,
        name: str = "pipeline-0",
    ):
        if flush_threshold < 1:
            raise ValueError("flush_threshold must be at least 1")
        self.broker = broker
        self.event_index = event_index
        self.stats = stats
        self.flush_threshold = flush_threshold
        self.redelivery_backoff = redelivery_backoff
        self.dispatcher = dispatcher or FlushDispatcher()
        self.name = name
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def on_flush(self, handler: FlushHandler) -> None:
        """Registers a handler called with every successfully written window."""
        self.dispatcher.add_handler(handler)

    async def run(self) -> None:
        await self.broker.subscribe()
        await self.dispatcher.start()
        self._running = True
        logger.info(f"Ingestion pipeline {self.name} started.")
        try:
            while self._running:
                try:
                    batch = await self.broker.fetch_batch()
                    if not batch:
                        continue
                    await self.process_batch(batch)
                except StoreWriteError as e:
                    logger.error(
                        f"Pipeline {self.name}: batch of {len(batch)} messages not committed, "
                        f"rewinding for redelivery: {e}"
                    )
                    await self.broker.rewind(batch)
                    await asyncio.sleep(self.redelivery_backoff)
                except LogBrokerError as e:
                    logger.error(f"Pipeline {self.name}: log broker failed, reconnecting: {e}")
                    await self._reconnect()
        finally:
            self._running = False
            await self.dispatcher.stop()
            await self.broker.close()
            logger.info(f"Ingestion pipeline {self.name} stopped.")

    async def _reconnect(self) -> None:
        # A fresh subscription resumes from the committed offsets, so the
        # uncommitted batch is delivered again.
        await self.broker.close()
        await asyncio.sleep(self.redelivery_backoff)
        await self.broker.subscribe()

    def stop(self) -> None:
        """Asks run() to exit after the batch in flight; never interrupts it."""
        self._running = False

    async def process_batch(self, batch: Sequence[LogMessage]) -> Dict[PartitionKey, int]:
        """
        Processes one delivered batch and commits it.

        Returns the committed offsets (last resolved offset per partition).
        Raises StoreWriteError, without committing, if any window fails to write.
        """
        resolved: Dict[PartitionKey, int] = {}
        window: List[ProcessedEvent] = []

        with tracer.start_as_current_span("process_log_batch", kind=SpanKind.CONSUMER) as span:
            span.set_attribute("messaging.system", "kafka")
            span.set_attribute("messaging.batch.message_count", len(batch))
            span.set_attribute("pipeline.name", self.name)

            for message in batch:
                event = self._decode(message)
                if event is not None:
                    window.append(event)
                    self.stats.record_processed()
                resolved[message.partition_key] = message.offset

                if len(window) >= self.flush_threshold:
                    await self._flush(window)
                    window = []
                    await self.broker.heartbeat()

            if window:
                await self._flush(window)

            await self.broker.commit(resolved)
            span.add_event("OffsetsCommitted", {"partitions": len(resolved)})
            span.set_status(Status(StatusCode.OK))
        return resolved

    def _decode(self, message: LogMessage) -> Optional[ProcessedEvent]:
        location = f"{message.topic}/{message.partition}/{message.offset}"
        if message.value is None:
            logger.debug(f"Skipping empty message at {location}")
            return None
        try:
            event = transform_event(parse_raw_event(message.value))
            # Valid JSON can still be unstorable (oversized integers, NUL in keys).
            bson.encode(event.to_document())
            return event
        except (UnicodeDecodeError, ValidationError) as e:
            logger.error(f"Failed to parse message at {location}: {e}")
        except (InvalidDocument, OverflowError) as e:
            logger.error(f"Message at {location} cannot be stored as a document: {e}")
        except Exception as e:
            logger.error(f"Failed to transform message at {location}: {e}", exc_info=True)
        self.stats.record_error()
        return None

    async def _flush(self, window: List[ProcessedEvent]) -> None:
        # StoreWriteError propagates; both spans record it.
        with tracer.start_as_current_span("flush_window") as span:
            span.set_attribute("db.system", "mongodb")
            span.set_attribute("pipeline.window_size", len(window))
            result = await self.event_index.write(window)
            span.set_attribute("pipeline.window_rejected", result.failed)
        self.stats.record_indexed(result.successful)
        self.stats.record_rejected(result.failed)
        flush_latency_histogram.record(result.elapsed_ms)
        if result.failed:
            logger.warning(f"Pipeline {self.name}: {result.failed} of {len(window)} documents rejected by the store.")
        logger.info(f"Indexed {result.successful} events in {result.elapsed_ms}ms")

        self.dispatcher.submit(window)
