import datetime
from pydantic import Field
from typing import List

from analytics_ingestion_service.infrastructure.kafka.schemas import CamelModel, EventMetadata, RawEvent

class ProcessedEventMetadata(EventMetadata):
    processed_at: datetime.datetime

class ProcessedEvent(RawEvent):
    event_id: str
    metadata: ProcessedEventMetadata
    indexed_at: datetime.datetime
    processing_time_ms: int = Field(ge=0)

    def to_document(self) -> dict:
        """Store representation: camelCase fields keyed by the event id."""
        document = self.model_dump(by_alias=True)
        document["_id"] = self.event_id
        return document

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)

class BulkWriteFailure(CamelModel):
    event_id: str
    code: int
    message: str

class BulkWriteSummary(CamelModel):
    successful: int = 0 # Confirmed by the store
    failed: int = 0 # Rejected individually by the store
    elapsed_ms: int = 0
    failures: List[BulkWriteFailure] = Field(default_factory=list)
