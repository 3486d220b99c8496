"""Adapter protocol: the one contract every vendor adapter implements."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Sequence

    from fluxgate.events import StreamEvent
    from fluxgate.session import RequestSession
    from fluxgate.types import ChatRequest, Message, ToolDefinition


@dataclass(frozen=True)
class AdapterCapabilities:
    """Feature flags exposed by adapters."""

    tools: bool = True
    reasoning: bool = False
    images: bool = False
    #: Tool-call arguments arrive as fragments rather than whole calls.
    fragmented_tool_calls: bool = False
    #: Whether a system message is a dedicated field rather than a turn.
    system_field: bool = False


@runtime_checkable
class Adapter(Protocol):
    """Translate a ``ChatRequest`` to one vendor and stream normalized events.

    Adapters are shared by every request with the same cache key; all
    per-request state lives on the ``RequestSession`` passed to ``stream``.
    """

    @property
    def vendor(self) -> str:
        """The vendor identifier this adapter serves."""
        ...

    @property
    def capabilities(self) -> AdapterCapabilities:
        """Feature capabilities of the vendor."""
        ...

    def translate_messages(
        self, messages: Sequence[Message], system_prompt: str | None = None
    ) -> Any:
        """Convert abstract history into the vendor's request shape."""
        ...

    def translate_tools(self, tools: Sequence[ToolDefinition]) -> Any:
        """Convert tool definitions into the vendor's declaration shape."""
        ...

    def stream(
        self, request: ChatRequest, session: RequestSession
    ) -> AsyncIterator[StreamEvent]:
        """Yield events for *request*, ending with exactly one terminal event.

        Must stop silently once ``session.cancelled`` is set.
        """
        ...

    async def aclose(self) -> None:
        """Release the underlying SDK client."""
        ...
