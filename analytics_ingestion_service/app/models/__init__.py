from .processed_event import ProcessedEvent, ProcessedEventMetadata, BulkWriteFailure, BulkWriteSummary
from .stream_message import StreamMessage
from .stats_snapshot import StatsSnapshot

__all__ = [
    "ProcessedEvent",
    "ProcessedEventMetadata",
    "BulkWriteFailure",
    "BulkWriteSummary",
    "StreamMessage",
    "StatsSnapshot",
]
