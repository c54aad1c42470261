# Process-wide ingestion counters
import threading

from analytics_ingestion_service.app.models import StatsSnapshot
from analytics_ingestion_service.app.observability import (
    events_processed_counter,
    events_indexed_counter,
    events_rejected_counter,
    events_errors_counter,
)


class StatsAggregator:
    """
    Monotonic processed/indexed/rejected/error counters shared by every
    pipeline in the process. Each increment holds the lock only for the
    addition itself; snapshot() copies the four values under the same lock.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._processed = 0
        self._indexed = 0
        self._rejected = 0
        self._errors = 0

    def record_processed(self, count: int = 1) -> None:
        with self._lock:
            self._processed += count
        events_processed_counter.add(count)

    def record_indexed(self, count: int) -> None:
        if count <= 0:
            return
        with self._lock:
            self._indexed += count
        events_indexed_counter.add(count)

    def record_rejected(self, count: int) -> None:
        if count <= 0:
            return
        with self._lock:
            self._rejected += count
        events_rejected_counter.add(count)

    def record_error(self, count: int = 1) -> None:
        with self._lock:
            self._errors += count
        events_errors_counter.add(count)

    def snapshot(self) -> StatsSnapshot:
        with self._lock:
            return StatsSnapshot(
                processed=self._processed,
                indexed=self._indexed,
                rejected=self._rejected,
                errors=self._errors,
            )
