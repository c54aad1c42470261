# Periodic structured stats report
import asyncio
import datetime
import logging
from typing import Any, Dict, Optional

from pymongo.errors import PyMongoError

from analytics_ingestion_service.app.config import settings
from analytics_ingestion_service.app.service.broadcast import BroadcastHub
from analytics_ingestion_service.app.service.stats import StatsAggregator
from analytics_ingestion_service.infrastructure.database.event_index import EventIndex

logger = logging.getLogger(__name__)


async def collect_report(stats: StatsAggregator, event_index: EventIndex, hub: BroadcastHub) -> Dict[str, Any]:
    try:
        document_count: Optional[int] = await event_index.count()
    except PyMongoError as e:
        logger.warning(f"Could not count stored documents for stats report: {e}")
        document_count = None
    return {
        "timestamp": datetime.datetime.now(datetime.timezone.utc).isoformat(),
        "stats": stats.snapshot().model_dump(),
        "store": {"documentCount": document_count},
        "stream": {"connectedClients": hub.client_count()},
    }


class StatsReporter:
    """Logs a combined stats record every `interval` seconds until stopped."""

    def __init__(
        self,
        stats: StatsAggregator,
        event_index: EventIndex,
        hub: BroadcastHub,
        interval: float = settings.STATS_REPORT_INTERVAL_SECONDS,
    ):
        self.stats = stats
        self.event_index = event_index
        self.hub = hub
        self.interval = interval
        self._task: Optional[asyncio.Task] = None

    async def report_once(self) -> Dict[str, Any]:
        report = await collect_report(self.stats, self.event_index, self.hub)
        # The log record carries its own timestamp.
        logger.info("ingestion_stats", extra={key: value for key, value in report.items() if key != "timestamp"})
        return report

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            await self.report_once()

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
