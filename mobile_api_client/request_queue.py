import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Deque

from .exceptions import RequestDiscardedError
from .pipeline import RequestDescriptor

logger = logging.getLogger(__name__)

Dispatcher = Callable[[RequestDescriptor], Awaitable[Any]]


@dataclass
class QueuedRequest:
    request: RequestDescriptor
    future: asyncio.Future


class RequestQueue:
    """
    FIFO holding area for requests issued while offline.

    Entries are dispatched one at a time in the order they were enqueued, and
    each outcome lands on the entry's own future.
    """

    def __init__(self):
        self._pending: Deque[QueuedRequest] = deque()
        self._draining = False

    def __len__(self) -> int:
        return len(self._pending)

    @property
    def is_draining(self) -> bool:
        return self._draining

    def enqueue(self, request: RequestDescriptor) -> asyncio.Future:
        future = asyncio.get_running_loop().create_future()
        self._pending.append(QueuedRequest(request=request, future=future))
        logger.debug(f"Queued {request.method} {request.path} ({len(self._pending)} pending)")
        return future

    async def drain(self, dispatcher: Dispatcher) -> int:
        """Dispatch everything pending, in order. Returns how many were sent."""
        if self._draining or not self._pending:
            return 0

        self._draining = True
        processed = 0
        logger.info(f"Draining {len(self._pending)} queued requests")
        try:
            while self._pending:
                entry = self._pending.popleft()
                if entry.future.done():
                    # Caller gave up waiting
                    continue

                try:
                    result = await dispatcher(entry.request)
                except asyncio.CancelledError:
                    # The entry was already popped, so nobody else will settle it
                    if not entry.future.done():
                        entry.future.set_exception(RequestDiscardedError(entry.request.method, entry.request.path))
                    raise
                except Exception as e:
                    if not entry.future.done():
                        entry.future.set_exception(e)
                else:
                    if not entry.future.done():
                        entry.future.set_result(result)
                processed += 1
        finally:
            self._draining = False

        return processed

    def clear(self) -> int:
        """Discard every pending entry, rejecting its future."""
        discarded = 0
        while self._pending:
            entry = self._pending.popleft()
            if not entry.future.done():
                entry.future.set_exception(RequestDiscardedError(entry.request.method, entry.request.path))
                discarded += 1
        if discarded:
            logger.info(f"Discarded {discarded} queued requests")
        return discarded
