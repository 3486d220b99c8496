"""Vendor-neutral domain models: messages, tools, tool calls, usage, requests."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Literal

from fluxgate.errors import ConfigurationError

if TYPE_CHECKING:
    from fluxgate.config import ChatConfig

Role = Literal["user", "assistant", "system", "tool"]
ImageEncoding = Literal["base64", "url"]

_ROLES = frozenset({"user", "assistant", "system", "tool"})


@dataclass(frozen=True)
class TextPart:
    """A text segment of multi-part content."""

    text: str


@dataclass(frozen=True)
class ImagePart:
    """An image segment: base64 payload or a URL, per ``encoding``."""

    data: str
    media_type: str | None = None
    encoding: ImageEncoding = "base64"

    def as_data_uri(self) -> str:
        """Return a ``data:`` URI for base64 images, or the URL as-is."""
        if self.encoding == "url":
            return self.data
        return f"data:{self.media_type or 'image/png'};base64,{self.data}"


ContentPart = TextPart | ImagePart
Content = str | Sequence[ContentPart]


@dataclass(frozen=True)
class ToolCall:
    """A tool call requested by the model, with materialized arguments."""

    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Message:
    """One conversational turn.

    Tool invocation history comes in two shapes: the legacy single-call form
    (assistant message with ``tool_name``/``tool_call_id`` whose ``content`` is
    the raw argument JSON) and the multi-call form (``tool_calls``).
    """

    role: Role
    content: Content | None = ""
    tool_call_id: str | None = None
    tool_name: str | None = None
    tool_calls: Sequence[ToolCall] | None = None

    def __post_init__(self) -> None:
        """Reject roles outside the closed set."""
        if self.role not in _ROLES:
            raise ConfigurationError(
                f"Unknown message role: {self.role!r}",
                hint="Use one of: assistant, system, tool, user.",
            )
        if isinstance(self.content, list):
            object.__setattr__(self, "content", tuple(self.content))
        if isinstance(self.tool_calls, list):
            object.__setattr__(self, "tool_calls", tuple(self.tool_calls))

    @property
    def is_tool_invocation(self) -> bool:
        """Whether this assistant turn invokes one or more tools."""
        if self.role != "assistant":
            return False
        return bool(self.tool_calls) or bool(self.tool_name and self.tool_call_id)

    @property
    def is_legacy_invocation(self) -> bool:
        """Whether this is the single-call form carrying raw argument text."""
        return (
            self.role == "assistant"
            and not self.tool_calls
            and bool(self.tool_name and self.tool_call_id)
        )


@dataclass(frozen=True)
class ToolDefinition:
    """A tool the model may call: name, description, JSON-schema parameters."""

    name: str
    description: str = ""
    parameters: dict[str, Any] = field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )


@dataclass(frozen=True)
class Usage:
    """Token accounting reported by the vendor."""

    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0

    @classmethod
    def of(cls, input_tokens: int, output_tokens: int, total: int | None = None) -> Usage:
        """Build usage, deriving the total when the vendor omits it."""
        return cls(
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            total_tokens=total if total else input_tokens + output_tokens,
        )


@dataclass(frozen=True)
class ChatRequest:
    """A single abstract chat request, independent of vendor."""

    config: ChatConfig
    messages: Sequence[Message]
    tools: Sequence[ToolDefinition] | None = None
    system_prompt: str | None = None

    def __post_init__(self) -> None:
        """Freeze sequences and enforce unique tool names."""
        object.__setattr__(self, "messages", tuple(self.messages))
        if self.tools is not None:
            tools = tuple(self.tools)
            object.__setattr__(self, "tools", tools)
            seen: set[str] = set()
            for tool in tools:
                if tool.name in seen:
                    raise ConfigurationError(
                        f"Duplicate tool name: {tool.name!r}",
                        hint="Tool names must be unique within a request.",
                    )
                seen.add(tool.name)
