"""
Serial execution of mutating operations.

SerialTaskQueue runs submitted tasks one at a time, in submission order, on
the running asyncio event loop.  A task does not start until the previous
one has finished (successfully or not), and every task gets its own result:
a failure is delivered to that task's submitter and never blocks the tasks
queued behind it.  Running tasks are not cancelled or timed out.  If the
queue is interrupted (cancellation or another BaseException), the current
submitter receives the interruption and every task still waiting is
cancelled, so no submitter is left hanging.

ShopQueues hands out one queue per shop, or a single shared queue when
per-shop isolation is turned off.  Either way, operations on one shop's
documents never interleave.
"""
import asyncio
import inspect
import logging
from collections import deque
from typing import Any, Awaitable, Callable, Optional, TypeVar, Union

from .document_store import sanitize_shop

logger = logging.getLogger(__name__)

T = TypeVar("T")

Task = Callable[[], Union[T, Awaitable[T]]]


class SerialTaskQueue:
    """First-in-first-out runner for async (or plain) zero-argument callables."""

    def __init__(self, name: str = "default") -> None:
        self.name = name
        self._pending: deque = deque()
        self._processing = False
        self._drainer: Optional[asyncio.Task] = None

    @property
    def pending(self) -> int:
        """Number of tasks waiting to start."""
        return len(self._pending)

    @property
    def busy(self) -> bool:
        return self._processing

    async def submit(self, task: Task) -> Any:
        """Queue *task* and wait for its own result (or exception)."""
        loop = asyncio.get_running_loop()
        future = loop.create_future()
        self._pending.append((task, future))
        if not self._processing:
            self._processing = True
            self._drainer = loop.create_task(self._drain())
        return await future

    async def _drain(self) -> None:
        try:
            while self._pending:
                task, future = self._pending.popleft()
                try:
                    result = task()
                    if inspect.isawaitable(result):
                        result = await result
                except asyncio.CancelledError:
                    if not future.done():
                        future.cancel()
                    raise
                except BaseException as exc:
                    logger.debug("Queue %s: task failed: %s", self.name, exc)
                    if not future.done():
                        future.set_exception(exc)
                    if not isinstance(exc, Exception):
                        raise
                else:
                    if not future.done():
                        future.set_result(result)
        finally:
            # The drainer stopped early: nothing will run what is left
            while self._pending:
                _, future = self._pending.popleft()
                if not future.done():
                    future.cancel()
            self._processing = False
            self._drainer = None


class ShopQueues:
    """Registry of serial queues keyed by shop."""

    def __init__(self, per_shop: bool = True) -> None:
        self.per_shop = per_shop
        self._queues: dict[str, SerialTaskQueue] = {}

    def for_shop(self, shop: str) -> SerialTaskQueue:
        key = sanitize_shop(shop) if self.per_shop else "*"
        queue = self._queues.get(key)
        if queue is None:
            queue = self._queues[key] = SerialTaskQueue(name=key)
        return queue

    async def run(self, shop: str, task: Task) -> Any:
        return await self.for_shop(shop).submit(task)
