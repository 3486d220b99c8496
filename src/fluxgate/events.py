"""Normalized stream events emitted for every request, whatever the vendor."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, ClassVar, Literal

if TYPE_CHECKING:
    from fluxgate.errors import GatewayError
    from fluxgate.types import ToolCall, Usage


@dataclass(frozen=True)
class TextEvent:
    """A visible text delta."""

    content: str
    type: ClassVar[Literal["text"]] = "text"


@dataclass(frozen=True)
class ReasoningEvent:
    """A vendor-native reasoning (thinking) delta."""

    content: str
    type: ClassVar[Literal["reasoning"]] = "reasoning"


@dataclass(frozen=True)
class ToolCallDeltaEvent:
    """Progress marker while a tool call is still accumulating.

    For display only: arguments are incomplete and must not be executed.
    """

    index: int
    id: str | None = None
    name: str | None = None
    arguments_delta: str = ""
    type: ClassVar[Literal["tool_call_delta"]] = "tool_call_delta"


@dataclass(frozen=True)
class ToolCallEvent:
    """A sealed tool call, emitted exactly once per call."""

    tool_call: ToolCall
    type: ClassVar[Literal["tool_call"]] = "tool_call"


@dataclass(frozen=True)
class DoneEvent:
    """Terminal success event.

    ``tool_calls`` is ``None`` rather than empty when the turn had no calls.
    """

    content: str
    tool_calls: tuple[ToolCall, ...] | None = None
    usage: Usage | None = None
    reasoning: str | None = None
    type: ClassVar[Literal["done"]] = "done"


@dataclass(frozen=True)
class ErrorEvent:
    """Terminal failure event carrying a classified error."""

    error: GatewayError
    type: ClassVar[Literal["error"]] = "error"


StreamEvent = (
    TextEvent
    | ReasoningEvent
    | ToolCallDeltaEvent
    | ToolCallEvent
    | DoneEvent
    | ErrorEvent
)


def is_terminal(event: StreamEvent) -> bool:
    """Whether *event* ends the request's stream."""
    return isinstance(event, (DoneEvent, ErrorEvent))
