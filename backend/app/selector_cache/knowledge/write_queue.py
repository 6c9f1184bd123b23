"""
Write-behind queue for durable store mutations

Callers update the memory tiers, submit the store write here and return.
A single drainer task applies writes in submission order.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Tuple

logger = logging.getLogger(__name__)

StoreOp = Callable[[], Awaitable[object]]


class WriteBehindQueue:
    """
    FIFO of pending store writes drained by one background task.

    A failing write is logged and dropped; it never stops the drainer.
    """

    def __init__(self, name: str = "selector-store"):
        self.name = name
        self._queue: "asyncio.Queue[Tuple[str, StoreOp]]" = asyncio.Queue()
        self._task: Optional[asyncio.Task] = None
        self._stopped = False
        self.completed = 0
        self.failed = 0

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self):
        """Spawn the drainer on the running loop"""
        if self.running:
            return
        self._stopped = False
        self._task = asyncio.get_running_loop().create_task(self._drain(), name=f"{self.name}-writer")

    def submit(self, label: str, op: StoreOp):
        """Queue a write and return immediately"""
        if self._stopped:
            logger.debug(f"[WRITE-QUEUE] {self.name} stopped, dropping '{label}'")
            return
        self._queue.put_nowait((label, op))

    async def flush(self):
        """Wait until everything submitted so far has been applied"""
        if not self.running:
            return
        await self._queue.join()

    async def stop(self):
        """Flush, then shut the drainer down"""
        await self.flush()
        self._stopped = True
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _drain(self):
        while True:
            label, op = await self._queue.get()
            try:
                await op()
                self.completed += 1
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.failed += 1
                logger.error(f"[WRITE-QUEUE] {self.name} write '{label}' failed: {e}")
            finally:
                self._queue.task_done()
