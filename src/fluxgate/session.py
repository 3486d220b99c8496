"""Per-request mutable state: cancellation token, text, fragment buffers."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
import logging
from typing import TYPE_CHECKING

from fluxgate.assembler import FragmentAssembler
from fluxgate.events import DoneEvent, ReasoningEvent, TextEvent, ToolCallEvent

if TYPE_CHECKING:
    from collections.abc import Iterable

    from fluxgate.types import ToolCall, Usage

log = logging.getLogger(__name__)


class AdapterState(str, Enum):
    """Lifecycle of one request's upstream stream."""

    IDLE = "idle"
    CONNECTING = "connecting"
    STREAMING = "streaming"
    COMPLETED = "completed"
    ERRORED = "errored"
    CANCELLED = "cancelled"


class CancellationToken:
    """Cooperative cancellation signal for a single request."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        """Whether cancellation was requested."""
        return self._event.is_set()

    def cancel(self) -> None:
        """Request cancellation. Idempotent."""
        self._event.set()


@dataclass
class RequestSession:
    """State owned by exactly one request's processing routine."""

    request_id: str
    token: CancellationToken = field(default_factory=CancellationToken)
    assembler: FragmentAssembler = field(default_factory=FragmentAssembler)
    state: AdapterState = AdapterState.IDLE
    terminated: bool = False
    #: Last usage the vendor reported, if any.
    usage: Usage | None = None
    _text: list[str] = field(default_factory=list)
    _reasoning: list[str] = field(default_factory=list)

    @property
    def cancelled(self) -> bool:
        """Whether the request's token was cancelled."""
        return self.token.cancelled

    @property
    def content(self) -> str:
        """All text emitted so far."""
        return "".join(self._text)

    @property
    def reasoning_content(self) -> str:
        """All reasoning emitted so far."""
        return "".join(self._reasoning)

    def transition(self, state: AdapterState) -> None:
        """Move to *state* (terminal states are sticky)."""
        if self.state in (
            AdapterState.COMPLETED,
            AdapterState.ERRORED,
            AdapterState.CANCELLED,
        ):
            return
        log.debug("request %s: %s -> %s", self.request_id, self.state.value, state.value)
        self.state = state

    def text(self, delta: str) -> TextEvent:
        """Record a text delta and return its event."""
        self._text.append(delta)
        return TextEvent(delta)

    def reasoning(self, delta: str) -> ReasoningEvent:
        """Record a reasoning delta and return its event."""
        self._reasoning.append(delta)
        return ReasoningEvent(delta)

    @staticmethod
    def tool_events(calls: Iterable[ToolCall | None]) -> list[ToolCallEvent]:
        """Wrap freshly sealed calls as events, skipping ``None``."""
        return [ToolCallEvent(call) for call in calls if call is not None]

    def done(self) -> DoneEvent:
        """Build the terminal event from everything accumulated."""
        calls = self.assembler.sealed
        reasoning = self.reasoning_content
        return DoneEvent(
            content=self.content,
            tool_calls=tuple(calls) if calls else None,
            usage=self.usage,
            reasoning=reasoning or None,
        )
