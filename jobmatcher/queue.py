"""
Bounded-concurrency scheduling for provider calls.

``ConcurrencyQueue`` caps how many coroutines run at once and spaces out
their start times. The module-level operation queue serializes whole match
runs when a provider cannot take concurrent load.
"""

import asyncio
import time
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from .logger import get_logger

logger = get_logger()


class ConcurrencyQueue:
    """
    Run coroutine functions with at most ``concurrency`` in flight.

    Successive dispatches are spaced at least ``min_interval`` seconds apart.
    """

    def __init__(self, concurrency: int, min_interval: float = 0.0):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.concurrency = concurrency
        self.min_interval = max(0.0, min_interval)

        self._semaphore = asyncio.Semaphore(concurrency)
        self._spacing_lock = asyncio.Lock()
        self._last_dispatch: Optional[float] = None
        self._tasks: Set[asyncio.Task] = set()
        self._running = 0
        self._waiting = 0

    @property
    def pending(self) -> int:
        """Number of callables currently running."""
        return self._running

    @property
    def size(self) -> int:
        """Number of callables waiting for a slot."""
        return self._waiting

    def add(self, fn: Callable[[], Awaitable[Any]]) -> asyncio.Task:
        """Schedule ``fn`` and return the task that will hold its result."""
        self._waiting += 1
        task = asyncio.ensure_future(self._run(fn))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, fn: Callable[[], Awaitable[Any]]) -> Any:
        started = False
        try:
            async with self._semaphore:
                await self._wait_for_spacing()
                self._waiting -= 1
                self._running += 1
                started = True
                try:
                    return await fn()
                finally:
                    self._running -= 1
        finally:
            if not started:
                self._waiting -= 1

    async def _wait_for_spacing(self) -> None:
        if self.min_interval <= 0:
            return
        async with self._spacing_lock:
            if self._last_dispatch is not None:
                remaining = self.min_interval - (time.monotonic() - self._last_dispatch)
                if remaining > 0:
                    await asyncio.sleep(remaining)
            self._last_dispatch = time.monotonic()

    async def on_idle(self) -> None:
        """Wait until every scheduled callable has settled."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def clear(self) -> None:
        """Cancel every callable that has not finished."""
        for task in list(self._tasks):
            if not task.done():
                task.cancel()


QueueFactory = Callable[[int, float], ConcurrencyQueue]


# Serialized match operations

_operation_queue: Optional[ConcurrencyQueue] = None
_operation_queue_loop: Optional[asyncio.AbstractEventLoop] = None


def _get_operation_queue() -> ConcurrencyQueue:
    """Return the operation queue for the running event loop, rebuilding it on a new loop."""
    global _operation_queue, _operation_queue_loop
    loop = asyncio.get_running_loop()
    if _operation_queue is None or _operation_queue_loop is not loop:
        if _operation_queue is not None:
            logger.debug("Event loop changed, rebuilding operation queue")
        _operation_queue = ConcurrencyQueue(1)
        _operation_queue_loop = loop
    return _operation_queue


async def with_queue(
    config,
    fn: Callable[[], Awaitable[Any]],
    on_queue_position: Optional[Callable[[int], None]] = None,
) -> Any:
    """
    Run a match operation, one at a time when ``serialize_operations`` is on.

    Args:
        config: MatcherConfig for the run
        fn: Zero-argument coroutine function performing the operation
        on_queue_position: Optional callback receiving the 1-based position
            in the queue at submission time (0 means running immediately)

    Returns:
        Whatever ``fn`` returns
    """
    if not config.serialize_operations:
        return await fn()

    queue = _get_operation_queue()
    position = queue.pending + queue.size
    if on_queue_position:
        on_queue_position(position)
    if position > 0:
        logger.info("Match operation queued", position=position)

    return await queue.add(fn)


def get_queue_position(config) -> int:
    """Position a newly submitted operation would take; 0 when it runs right away."""
    if not config.serialize_operations or _operation_queue is None:
        return 0
    return _operation_queue.pending + _operation_queue.size


def get_queue_status(config) -> Dict[str, Any]:
    if not config.serialize_operations or _operation_queue is None:
        return {"enabled": config.serialize_operations, "pending": 0, "size": 0}
    return {
        "enabled": True,
        "pending": _operation_queue.pending,
        "size": _operation_queue.size,
    }


def reset_queue() -> None:
    """Drop the operation queue, cancelling anything still waiting."""
    global _operation_queue, _operation_queue_loop
    if _operation_queue is not None:
        _operation_queue.clear()
    _operation_queue = None
    _operation_queue_loop = None
