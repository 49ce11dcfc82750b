"""Request-scoped memoization of expensive async derivations."""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Hashable

logger = logging.getLogger("kumamirror.cache")


class RequestCache:
    """Memoizes coroutine results for the lifetime of one request.

    Entries are keyed by the exact input that produced them. Concurrent
    callers asking for the same key await one shared task; different keys
    never wait on each other. A failed computation is evicted so a later
    call in the same request may retry.
    """

    def __init__(self):
        self._tasks: dict[Hashable, asyncio.Task] = {}

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, key: Hashable) -> bool:
        return key in self._tasks

    async def get_or_compute(
        self, key: Hashable, factory: Callable[[], Awaitable[Any]]
    ) -> Any:
        task = self._tasks.get(key)
        if task is None:
            task = asyncio.ensure_future(factory())
            self._tasks[key] = task
        else:
            logger.debug("Reusing memoized result for %r", key)

        try:
            # shield: one cancelled waiter must not cancel the shared task
            return await asyncio.shield(task)
        except Exception:
            if self._tasks.get(key) is task:
                del self._tasks[key]
            raise

    def clear(self) -> None:
        self._tasks.clear()
