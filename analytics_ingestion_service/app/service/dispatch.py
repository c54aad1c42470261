# Delivers flushed windows to optional downstream handlers
import asyncio
import inspect
import logging
from typing import Awaitable, Callable, List, Optional, Sequence, Union

from analytics_ingestion_service.app.config import settings
from analytics_ingestion_service.app.models import ProcessedEvent

logger = logging.getLogger(__name__)

FlushHandler = Callable[[Sequence[ProcessedEvent]], Union[None, Awaitable[None]]]


class FlushDispatcher:
    """
    Queue between the pipeline and its flush handlers (e.g. live broadcast).

    submit() never blocks and never raises: a full queue drops the window.
    Handlers run one window at a time on a dedicated task, in submission
    order, and their exceptions are logged and swallowed there.
    """

    def __init__(self, max_pending: int = settings.DISPATCH_QUEUE_SIZE):
        self._handlers: List[FlushHandler] = []
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_pending)
        self._task: Optional[asyncio.Task] = None
        self.dropped = 0

    def add_handler(self, handler: FlushHandler) -> None:
        self._handlers.append(handler)

    def submit(self, events: Sequence[ProcessedEvent]) -> bool:
        if not self._handlers or not events:
            return False
        try:
            self._queue.put_nowait(list(events))
            return True
        except asyncio.QueueFull:
            self.dropped += len(events)
            logger.warning(f"Flush dispatch queue full, dropping {len(events)} events for live handlers.")
            return False

    async def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run())

    async def _run(self) -> None:
        while True:
            events = await self._queue.get()
            try:
                await self._notify(events)
            finally:
                self._queue.task_done()

    async def _notify(self, events: List[ProcessedEvent]) -> None:
        for handler in self._handlers:
            try:
                result = handler(events)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Flush handler {getattr(handler, '__name__', handler)} failed: {e}", exc_info=True)

    async def drain(self) -> None:
        """Waits until every submitted window has been handled."""
        await self._queue.join()

    async def stop(self, drain_timeout: float = 1.0) -> None:
        """Gives pending windows up to `drain_timeout` seconds to be handled, then stops the task."""
        if self._task is None:
            return
        try:
            await asyncio.wait_for(self._queue.join(), timeout=drain_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Stopping flush dispatcher with {self._queue.qsize()} windows not yet handled.")
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
