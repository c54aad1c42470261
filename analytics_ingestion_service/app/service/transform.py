# Raw -> processed event transformation
import datetime
import time
import uuid

from analytics_ingestion_service.infrastructure.kafka.schemas import RawEvent
from analytics_ingestion_service.app.models import ProcessedEvent, ProcessedEventMetadata


def transform_event(raw: RawEvent) -> ProcessedEvent:
    """
    Builds the stored form of a raw event.

    Pure apart from reading the clock and generating ids: every field of the
    raw event is copied, a missing or empty eventId is replaced by a fresh
    UUID4, and processingTimeMs covers this call only.
    """
    start_time = time.perf_counter()
    now = datetime.datetime.now(datetime.timezone.utc)

    fields = raw.model_dump(exclude={"event_id", "metadata"})
    metadata = ProcessedEventMetadata(
        **raw.metadata.model_dump(exclude={"processed_at"}),
        processed_at=now,
    )
    processed = ProcessedEvent(
        **fields,
        event_id=raw.event_id or str(uuid.uuid4()),
        metadata=metadata,
        indexed_at=now,
        processing_time_ms=0,
    )

    elapsed_ms = int((time.perf_counter() - start_time) * 1000)
    return processed.model_copy(update={"processing_time_ms": elapsed_ms})
