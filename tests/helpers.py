"""Test helpers (small, reusable doubles).

Keep this file tiny and purpose-built: it exists to prevent test suites from
growing lots of one-off adapter subclasses as coverage expands.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from fluxgate.adapters._stream import drive
from fluxgate.adapters.base import AdapterCapabilities
from fluxgate.session import AdapterState

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Sequence

    from fluxgate.events import StreamEvent
    from fluxgate.session import RequestSession
    from fluxgate.types import ChatRequest, Message, ToolDefinition


class FakeStream:
    """Async-iterable stand-in for an SDK stream, recording ``close``.

    With ``stall=True`` it blocks forever after the scripted items, like an
    upstream that stopped sending without closing the connection.
    """

    def __init__(self, items: Sequence[Any], *, stall: bool = False) -> None:
        self.items = list(items)
        self.stall = stall
        self.closed = False
        self.delivered = 0

    def __aiter__(self) -> AsyncIterator[Any]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[Any]:
        for item in self.items:
            self.delivered += 1
            if isinstance(item, BaseException):
                raise item
            yield item
        if self.stall:
            await asyncio.Event().wait()

    async def close(self) -> None:
        self.closed = True

    aclose = close


@dataclass
class ScriptedAdapter:
    """Adapter whose body yields a scripted list of events or raises.

    Items are built lazily from ``(kind, value)`` tuples so each request's
    session records them: ``("text", "hi")``, ``("reasoning", "..")``,
    ``("raise", exc)``.
    """

    script: list[tuple[str, Any]] = field(default_factory=list)
    vendor: str = "mock"
    calls: int = 0
    closed: bool = False

    @property
    def capabilities(self) -> AdapterCapabilities:
        return AdapterCapabilities()

    def translate_messages(
        self, messages: Sequence[Message], system_prompt: str | None = None
    ) -> list[Any]:
        return list(messages)

    def translate_tools(self, tools: Sequence[ToolDefinition]) -> list[Any]:
        return list(tools)

    def stream(
        self, request: ChatRequest, session: RequestSession
    ) -> AsyncIterator[StreamEvent]:
        self.calls += 1
        return drive(self.vendor, session, self._body(session))

    async def _body(self, session: RequestSession) -> AsyncIterator[StreamEvent]:
        session.transition(AdapterState.STREAMING)
        for kind, value in self.script:
            if kind == "raise":
                raise value
            if kind == "text":
                yield session.text(value)
            elif kind == "reasoning":
                yield session.reasoning(value)
            await asyncio.sleep(0)

    async def aclose(self) -> None:
        self.closed = True


@dataclass
class GateAdapter(ScriptedAdapter):
    """ScriptedAdapter that blocks after its script until ``release`` is set."""

    started: asyncio.Event = field(default_factory=asyncio.Event)
    release: asyncio.Event = field(default_factory=asyncio.Event)
    upstream_closed: int = 0

    async def _body(self, session: RequestSession) -> AsyncIterator[StreamEvent]:
        try:
            async for event in super()._body(session):
                yield event
            self.started.set()
            await self.release.wait()
            yield session.text(" after release")
        finally:
            self.upstream_closed += 1


class RawAdapter(ScriptedAdapter):
    """Bypasses the shared driver: yields the scripted events verbatim."""

    def stream(
        self, request: ChatRequest, session: RequestSession
    ) -> AsyncIterator[StreamEvent]:
        self.calls += 1
        return self._raw()

    async def _raw(self) -> AsyncIterator[StreamEvent]:
        for _, event in self.script:
            yield event


class Collector:
    """Event sink that records everything it receives."""

    def __init__(self) -> None:
        self.events: list[StreamEvent] = []

    def __call__(self, event: StreamEvent) -> None:
        self.events.append(event)

    @property
    def types(self) -> list[str]:
        return [e.type for e in self.events]

    def text(self) -> str:
        return "".join(e.content for e in self.events if e.type == "text")
