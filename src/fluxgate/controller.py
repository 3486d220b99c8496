"""Request controller: one task per request, cancellation, emission gating."""

from __future__ import annotations

import asyncio
from contextlib import aclosing
from dataclasses import dataclass
from functools import partial
import inspect
import logging
from typing import TYPE_CHECKING, Any
import uuid

from fluxgate.adapters._errors import classify_error
from fluxgate.errors import ConfigurationError, MalformedResponseError, RequestCancelled
from fluxgate.events import DoneEvent, ErrorEvent, is_terminal
from fluxgate.registry import ProviderRegistry
from fluxgate.session import AdapterState, RequestSession

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable

    from fluxgate.events import StreamEvent
    from fluxgate.types import ChatRequest

    EventSink = Callable[[StreamEvent], Awaitable[Any] | None]

log = logging.getLogger(__name__)

_END = object()

# Unclaimed sink failures kept for a later wait(); oldest dropped first.
_MAX_UNCLAIMED_FAILURES = 256


class _SinkFailed(Exception):
    """Internal marker: the caller's sink raised."""

    def __init__(self, error: Exception) -> None:
        super().__init__(str(error))
        self.error = error


@dataclass
class _Active:
    session: RequestSession
    task: asyncio.Task[None]


class RequestController:
    """Runs concurrent requests, each isolated in its own task.

    Every event passes through one gate: nothing is delivered after the
    request is cancelled or after its terminal event, and a request that
    ends without a terminal event gets an ``UpstreamMalformed`` error.
    """

    def __init__(self, registry: ProviderRegistry | None = None) -> None:
        self.registry = registry if registry is not None else ProviderRegistry()
        self._active: dict[str, _Active] = {}
        self._failures: dict[str, BaseException] = {}

    @property
    def active(self) -> list[str]:
        """Ids of requests that have not finished."""
        return [rid for rid, a in self._active.items() if not a.task.done()]

    def start(
        self,
        request: ChatRequest,
        sink: EventSink,
        request_id: str | None = None,
    ) -> str:
        """Validate *request* and start streaming it to *sink*.

        Raises ``ConfigurationError`` synchronously for invalid requests;
        every later failure arrives at *sink* as an ``error`` event.
        """
        self.registry.check(request.config)
        request_id = request_id or uuid.uuid4().hex
        if request_id in self._active:
            raise ConfigurationError(f"Request id already active: {request_id!r}")
        self._failures.pop(request_id, None)
        session = RequestSession(request_id)
        task = asyncio.get_running_loop().create_task(
            self._run(request, session, sink), name=f"fluxgate-{request_id}"
        )
        self._active[request_id] = _Active(session, task)
        task.add_done_callback(partial(self._finished, request_id))
        log.info(
            "request %s: started (%s/%s)",
            request_id,
            request.config.vendor,
            request.config.model,
        )
        return request_id

    def cancel(self, request_id: str) -> bool:
        """Cancel one request. Unknown, finished or already-cancelled ids are a no-op."""
        active = self._active.get(request_id)
        if active is None or active.task.done() or active.session.cancelled:
            return False
        active.session.token.cancel()
        active.session.transition(AdapterState.CANCELLED)
        # Releases a read that is blocked on a stalled upstream.
        active.task.cancel()
        log.info("request %s: cancelled", request_id)
        return True

    def cancel_all(self) -> int:
        """Cancel every active request; return how many were cancelled."""
        return sum(self.cancel(rid) for rid in list(self._active))

    async def wait(self, request_id: str) -> None:
        """Wait for a request to finish; re-raise a sink failure.

        The failure is kept until it is waited on, so it is raised even when
        the request finished before this call.
        """
        active = self._active.get(request_id)
        if active is not None:
            await asyncio.wait([active.task])
        error = self._failures.pop(request_id, None)
        if error is not None:
            raise error

    async def run(self, request: ChatRequest, sink: EventSink) -> str:
        """Start *request* and wait for it to finish."""
        request_id = self.start(request, sink)
        await self.wait(request_id)
        return request_id

    async def stream(self, request: ChatRequest) -> AsyncIterator[StreamEvent]:
        """Iterate a request's events. Leaving the loop early cancels it."""
        queue: asyncio.Queue[Any] = asyncio.Queue()
        request_id = self.start(request, queue.put_nowait)
        task = self._active[request_id].task
        task.add_done_callback(lambda _: queue.put_nowait(_END))
        try:
            while True:
                item = await queue.get()
                if item is _END:
                    break
                yield item
                if is_terminal(item):
                    break
        finally:
            self.cancel(request_id)

    async def complete(self, request: ChatRequest) -> DoneEvent:
        """Collect a request to completion without streaming.

        Raises the classified error on failure and ``RequestCancelled`` when
        the request was cancelled before finishing.
        """
        async for event in self.stream(request):
            if isinstance(event, DoneEvent):
                return event
            if isinstance(event, ErrorEvent):
                raise event.error
        raise RequestCancelled("Request was cancelled", vendor=request.config.vendor)

    async def aclose(self) -> None:
        """Cancel everything, wait for tasks to unwind, close adapters."""
        tasks = [a.task for a in self._active.values()]
        self.cancel_all()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        await self.registry.aclose()

    async def _run(
        self, request: ChatRequest, session: RequestSession, sink: EventSink
    ) -> None:
        vendor = request.config.vendor

        async def emit(event: StreamEvent) -> None:
            if session.cancelled or session.terminated:
                return
            if is_terminal(event):
                session.terminated = True
            try:
                result = sink(event)
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception as e:
                raise _SinkFailed(e) from e

        try:
            # Shielded: a cancelled request must not cancel a shared construction.
            adapter = await asyncio.shield(self.registry.get(request.config))
            async with aclosing(adapter.stream(request, session)) as events:
                async for event in events:
                    if session.cancelled:
                        break
                    await emit(event)
                    if session.terminated:
                        break
            if not session.terminated and not session.cancelled:
                await emit(
                    ErrorEvent(
                        MalformedResponseError(
                            f"{vendor} stream ended without a terminal event",
                            vendor=vendor,
                        )
                    )
                )
        except asyncio.CancelledError:
            if session.cancelled:
                return
            raise
        except _SinkFailed as e:
            log.debug("request %s: sink failed", session.request_id)
            raise e.error from None
        except Exception as exc:
            if session.cancelled:
                return
            session.transition(AdapterState.ERRORED)
            try:
                await emit(ErrorEvent(classify_error(exc, vendor=vendor)))
            except _SinkFailed as e:
                raise e.error from None

    def _finished(self, request_id: str, task: asyncio.Task[None]) -> None:
        active = self._active.pop(request_id, None)
        state = active.session.state.value if active is not None else "unknown"
        if task.cancelled():
            log.info("request %s: finished (cancelled)", request_id)
            return
        exc = task.exception()
        if exc is not None:
            log.error("request %s: aborted by sink error", request_id, exc_info=exc)
            self._failures[request_id] = exc
            if len(self._failures) > _MAX_UNCLAIMED_FAILURES:
                del self._failures[next(iter(self._failures))]
            return
        log.info("request %s: finished (%s)", request_id, state)

