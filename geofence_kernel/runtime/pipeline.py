"""
Event Pipeline — inbound queue of raw events feeding a pool of workers.

Each worker takes one event, runs the handler to completion in a thread,
then takes the next. Ordering across regions is not preserved; per-region
exclusion lives in the transition state store, not here.
"""

import asyncio
from typing import Callable, List, Optional

from geofence_kernel.models.transition import RawEvent
from geofence_kernel.observability.logging import get_logger

logger = get_logger(__name__)

EventHandler = Callable[[RawEvent], object]


class EventPipeline:
    """Bounded asyncio queue plus `worker_count` consumer tasks."""

    def __init__(
        self,
        handler: EventHandler,
        worker_count: int = 4,
        queue_maxsize: int = 1000,
    ):
        self.handler = handler
        self.worker_count = worker_count
        self.queue_maxsize = queue_maxsize
        self._queue: Optional[asyncio.Queue] = None
        self._workers: List[asyncio.Task] = []
        self._processed = 0
        self._dropped = 0

    @property
    def status(self) -> str:
        return "running" if self._workers else "stopped"

    @property
    def processed(self) -> int:
        return self._processed

    @property
    def dropped(self) -> int:
        return self._dropped

    async def start(self) -> None:
        """Create the queue and spawn workers on the running loop."""
        if self._workers:
            return
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.queue_maxsize)
        self._queue = queue
        self._workers = [
            asyncio.create_task(self._worker(i, queue), name=f"geofence-worker-{i}")
            for i in range(self.worker_count)
        ]
        logger.info("Event pipeline started", workers=self.worker_count)

    def submit(self, event: RawEvent) -> bool:
        """
        Enqueue without blocking. Returns False if the event was dropped.
        Must be called from the thread running the event loop.
        """
        if self._queue is None:
            logger.warning("Pipeline not started; event dropped", region_id=event.region_id)
            self._dropped += 1
            return False
        try:
            self._queue.put_nowait(event)
            return True
        except asyncio.QueueFull:
            logger.warning(
                "Event queue full; event dropped",
                region_id=event.region_id,
                event_type=event.event_type.value,
            )
            self._dropped += 1
            return False

    async def join(self) -> None:
        """Wait until every queued event has been processed."""
        if self._queue is not None:
            await self._queue.join()

    async def stop(self) -> None:
        """Drain the queue, then cancel the workers."""
        if not self._workers:
            return
        await self.join()
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        self._queue = None
        logger.info("Event pipeline stopped", processed=self._processed)

    async def _worker(self, index: int, queue: asyncio.Queue) -> None:
        while True:
            event = await queue.get()
            try:
                await asyncio.to_thread(self.handler, event)
                self._processed += 1
            except Exception:
                logger.exception(
                    "Event handler failed",
                    worker=index,
                    region_id=event.region_id,
                )
            finally:
                queue.task_done()
