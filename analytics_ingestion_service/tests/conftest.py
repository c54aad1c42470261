# Shared test doubles for the ingestion pipeline, store and subscribers
import asyncio
import json
from typing import Any, Dict, List, Optional, Sequence

import pytest
from pymongo.errors import ConnectionFailure

from analytics_ingestion_service.app.models import BulkWriteSummary
from analytics_ingestion_service.app.service.exceptions import StoreWriteError
from analytics_ingestion_service.app.service.interfaces.log_broker import AbstractLogBroker, LogMessage
from analytics_ingestion_service.app.service.interfaces.subscriber_transport import AbstractSubscriberTransport


def make_event_payload(index: int, **overrides) -> Dict[str, Any]:
    payload = {
        "eventId": f"evt-{index:05d}",
        "userId": index if index % 2 == 0 else f"user_{index}",
        "sessionId": f"session-{index % 7}",
        "eventType": "page_view",
        "timestamp": "2024-05-01T12:00:00.000Z",
        "properties": {"url": f"https://example.com/{index}", "duration": index},
        "metadata": {"source": "web", "version": "1.0.0"},
    }
    payload.update(overrides)
    return payload


def make_message(offset: int, payload: Any = None, partition: int = 0, topic: str = "analytics-events") -> LogMessage:
    if payload is None:
        payload = make_event_payload(offset)
    value = payload if isinstance(payload, bytes) else json.dumps(payload).encode("utf-8")
    return LogMessage(topic=topic, partition=partition, offset=offset, value=value)


def make_batch(count: int, start_offset: int = 0, partition: int = 0) -> List[LogMessage]:
    return [make_message(start_offset + i, partition=partition) for i in range(count)]


class StubLogBroker(AbstractLogBroker):
    """Hands out prepared batches and records every call in order."""

    def __init__(self, batches: Optional[List[List[LogMessage]]] = None, calls: Optional[list] = None):
        self.batches = list(batches or [])
        self.calls = calls if calls is not None else []
        self.commits: List[dict] = []
        self.on_exhausted = None

    async def subscribe(self) -> None:
        self.calls.append(("subscribe",))

    async def fetch_batch(self) -> List[LogMessage]:
        if self.batches:
            return self.batches.pop(0)
        if self.on_exhausted is not None:
            self.on_exhausted()
        await asyncio.sleep(0)
        return []

    async def commit(self, resolved) -> None:
        self.calls.append(("commit", dict(resolved)))
        self.commits.append(dict(resolved))

    async def heartbeat(self) -> None:
        self.calls.append(("heartbeat",))

    async def rewind(self, messages: Sequence[LogMessage]) -> None:
        self.calls.append(("rewind", [m.offset for m in messages]))

    async def close(self) -> None:
        self.calls.append(("close",))


class RecordingEventIndex:
    """Stands in for EventIndex; records writes and can be told to fail or reject."""

    def __init__(self, calls: Optional[list] = None, fail_on_write: Optional[int] = None, rejected_per_write: int = 0):
        self.calls = calls if calls is not None else []
        self.writes: List[list] = []
        self.fail_on_write = fail_on_write
        self.rejected_per_write = rejected_per_write

    async def write(self, events) -> BulkWriteSummary:
        self.writes.append(list(events))
        self.calls.append(("write", len(events)))
        if self.fail_on_write is not None and len(self.writes) == self.fail_on_write:
            raise StoreWriteError(len(events), 4, ConnectionFailure("store unreachable"))
        rejected = min(self.rejected_per_write, len(events))
        return BulkWriteSummary(successful=len(events) - rejected, failed=rejected, elapsed_ms=1)


class FakeTransport(AbstractSubscriberTransport):
    """In-memory subscriber transport; can be made to fail or stall on send."""

    def __init__(self, fail: bool = False, stall: bool = False):
        self.sent: List[str] = []
        self.open = True
        self.fail = fail
        self.stall = stall
        self.closed_by_server = False

    @property
    def is_open(self) -> bool:
        return self.open

    async def send_text(self, data: str) -> None:
        if self.fail:
            raise ConnectionResetError("peer went away")
        if self.stall:
            await asyncio.Event().wait()
        self.sent.append(data)

    async def close(self) -> None:
        self.open = False
        self.closed_by_server = True

    def messages(self) -> List[dict]:
        return [json.loads(item) for item in self.sent]


async def wait_for_sent(transport: FakeTransport, count: int, timeout: float = 2.0) -> None:
    async def _wait():
        while len(transport.sent) < count:
            await asyncio.sleep(0.005)
    await asyncio.wait_for(_wait(), timeout=timeout)


@pytest.fixture
def calls():
    return []
