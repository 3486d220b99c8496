"""Mock adapter for demos and tests without API calls."""

from __future__ import annotations

import asyncio
import re
from typing import TYPE_CHECKING

from fluxgate.adapters._stream import drive
from fluxgate.adapters._translate import content_text, fold_system, normalize_history
from fluxgate.adapters.base import AdapterCapabilities
from fluxgate.session import AdapterState
from fluxgate.types import Usage

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Sequence

    from fluxgate.events import StreamEvent
    from fluxgate.session import RequestSession
    from fluxgate.types import ChatRequest, Message, ToolDefinition

_WORD_RE = re.compile(r"\S+\s*")


class MockAdapter:
    """Echoes the last user message word by word.

    ``delay`` (seconds) is slept between words so cancellation can be
    exercised deterministically.
    """

    def __init__(self, *, delay: float = 0.0) -> None:
        self.delay = delay
        self.closed = False

    @property
    def vendor(self) -> str:
        """Always ``"mock"``."""
        return "mock"

    @property
    def capabilities(self) -> AdapterCapabilities:
        """Text only; tool definitions are accepted but never called."""
        return AdapterCapabilities(tools=False)

    def translate_messages(
        self, messages: Sequence[Message], system_prompt: str | None = None
    ) -> list[dict[str, str]]:
        """Flatten to ``{"role", "content"}`` pairs."""
        out: list[dict[str, str]] = []
        system = fold_system(messages, system_prompt)
        if system:
            out.append({"role": "system", "content": system})
        for message in normalize_history(messages).turns:
            out.append({"role": message.role, "content": content_text(message.content)})
        return out

    def translate_tools(self, tools: Sequence[ToolDefinition]) -> list[str]:
        """Tool names only."""
        return [tool.name for tool in tools]

    def stream(
        self, request: ChatRequest, session: RequestSession
    ) -> AsyncIterator[StreamEvent]:
        """Stream ``echo: <last user message>`` one word at a time."""
        return drive(self.vendor, session, self._body(request, session))

    async def _body(
        self, request: ChatRequest, session: RequestSession
    ) -> AsyncIterator[StreamEvent]:
        turns = self.translate_messages(request.messages, request.system_prompt)
        prompt = next(
            (t["content"] for t in reversed(turns) if t["role"] == "user"), ""
        )
        text = f"echo: {prompt}"
        session.transition(AdapterState.STREAMING)
        words = _WORD_RE.findall(text)
        for word in words:
            if self.delay:
                await asyncio.sleep(self.delay)
            yield session.text(word)
        session.usage = Usage.of(len(prompt.split()), len(words))

    async def aclose(self) -> None:
        """Mark the adapter closed."""
        self.closed = True
