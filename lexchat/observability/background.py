"""
Bounded fire-and-forget work queue.

Cost records, persistence and prefetch hooks never block the response
stream. When the queue is full, new work is dropped with a warning;
failures are logged and never reach the request.
"""

import asyncio
from typing import Awaitable, Callable, List, Optional, Tuple

import structlog

logger = structlog.get_logger(__name__)

Job = Callable[[], Awaitable[None]]


class BackgroundTaskQueue:
    """Bounded queue drained by a small pool of asyncio worker tasks."""

    def __init__(self, maxsize: int = 100, workers: int = 2):
        self.maxsize = maxsize
        self.worker_count = max(1, workers)
        self._queue: Optional[asyncio.Queue] = None
        self._workers: List[asyncio.Task] = []
        self.dropped = 0
        self.failed = 0

    @property
    def running(self) -> bool:
        return bool(self._workers)

    def start(self) -> None:
        """Start workers on the running event loop (idempotent)."""
        if self._workers:
            return
        if self._queue is None:
            self._queue = asyncio.Queue(maxsize=self.maxsize)
        self._workers = [
            asyncio.create_task(self._worker(i), name=f"background-worker-{i}")
            for i in range(self.worker_count)
        ]
        logger.info("Background queue started", workers=self.worker_count, maxsize=self.maxsize)

    def submit(self, name: str, job: Job) -> bool:
        """
        Enqueue a job without blocking.

        Returns:
            False if the job was dropped because the queue is full
        """
        if not self._workers:
            try:
                self.start()
            except RuntimeError:
                logger.warning("Background job dropped, no running loop", job=name)
                self.dropped += 1
                return False

        try:
            self._queue.put_nowait((name, job))
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning("Background queue full, dropping job", job=name, dropped=self.dropped)
            return False
        return True

    async def join(self) -> None:
        """Wait until every queued job has finished."""
        if self._queue is not None:
            await self._queue.join()

    async def stop(self) -> None:
        """Drain outstanding work, then stop workers."""
        if not self._workers:
            return
        await self.join()
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        logger.info("Background queue stopped", dropped=self.dropped, failed=self.failed)

    async def _worker(self, index: int) -> None:
        while True:
            item: Tuple[str, Job] = await self._queue.get()
            name, job = item
            try:
                await job()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.failed += 1
                logger.error("Background job failed", job=name, worker=index, error=str(e))
            finally:
                self._queue.task_done()
