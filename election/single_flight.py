import asyncio
import logging
from typing import Awaitable, Callable, Dict, Hashable, Tuple, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SingleFlight:
    """
    Serializes operations per key and collapses concurrent calls of the same
    operation into one in-flight task whose result every caller shares.
    """

    def __init__(self):
        self._locks: Dict[Hashable, asyncio.Lock] = {}
        self._inflight: Dict[Tuple[Hashable, str], asyncio.Future] = {}

    async def _serialized(self, key: Hashable, fn: Callable[[], Awaitable[T]]) -> T:
        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            return await fn()

    async def run(self, key: Hashable, operation: str,
                  fn: Callable[[], Awaitable[T]]) -> T:
        flight_key = (key, operation)
        task = self._inflight.get(flight_key)
        if task is None:
            task = asyncio.ensure_future(self._serialized(key, fn))
            self._inflight[flight_key] = task

            def _done(t: asyncio.Future, k=flight_key):
                if self._inflight.get(k) is t:
                    del self._inflight[k]
                if not t.cancelled() and t.exception() is not None:
                    logger.debug(f"{k[1]} for {k[0]} failed: {t.exception()}")

            task.add_done_callback(_done)
        else:
            logger.info(f"{operation} already in flight for {key}, joining")
        return await asyncio.shield(task)

    def in_flight(self, key: Hashable, operation: str) -> bool:
        return (key, operation) in self._inflight
