"""Async single-flight: at most one in-progress call per key.

Callers that arrive while a call for their key is running await its result
instead of starting another one. Used for adapter construction so a burst of
requests with the same configuration builds one SDK client.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any, Generic, TypeVar

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

K = TypeVar("K")
T = TypeVar("T")


def _mark_retrieved(fut: asyncio.Future[Any]) -> None:
    # Waiters may all be gone; keep asyncio from reporting the exception.
    if not fut.cancelled():
        fut.exception()


class SingleFlight(Generic[K, T]):
    """Deduplicates concurrent coroutine calls by key."""

    def __init__(self) -> None:
        self._calls: dict[K, asyncio.Future[T]] = {}

    def __len__(self) -> int:
        return len(self._calls)

    def __contains__(self, key: object) -> bool:
        return key in self._calls

    async def do(self, key: K, work: Callable[[], Awaitable[T]]) -> T:
        """Run *work* for *key*, or join the call already running for it.

        A failure reaches every caller of that flight and is not remembered:
        the next call for the key starts fresh.
        """
        pending = self._calls.get(key)
        if pending is not None:
            # A waiter being cancelled must not cancel the shared call.
            return await asyncio.shield(pending)

        fut: asyncio.Future[T] = asyncio.get_running_loop().create_future()
        fut.add_done_callback(_mark_retrieved)
        self._calls[key] = fut
        try:
            value = await work()
        except asyncio.CancelledError:
            fut.cancel()
            raise
        except Exception as e:
            fut.set_exception(e)
            raise
        finally:
            if self._calls.get(key) is fut:
                del self._calls[key]
        fut.set_result(value)
        return value

    def forget(self) -> None:
        """Detach running calls; later callers start new ones.

        Callers already waiting still receive their flight's result.
        """
        self._calls.clear()
