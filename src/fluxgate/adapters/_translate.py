"""Vendor-neutral helpers shared by the message translators."""

from __future__ import annotations

from dataclasses import dataclass
import json
import logging
from typing import TYPE_CHECKING, Any

from fluxgate._json import parse_arguments
from fluxgate.types import ImagePart, Message, TextPart, ToolCall

if TYPE_CHECKING:
    from collections.abc import Sequence

    from fluxgate.types import Content

log = logging.getLogger(__name__)

CONTINUE_CONVERSATION = "Continue the conversation."
CONTINUE = "Continue."
IMAGE_PLACEHOLDER = "[image]"


def fold_system(messages: Sequence[Message], system_prompt: str | None) -> str | None:
    """Merge the explicit prompt and every system message into one string.

    The explicit prompt comes first, then system messages in encounter order,
    joined with a blank line. Returns ``None`` when nothing is left.
    """
    pieces: list[str] = []
    if system_prompt and system_prompt.strip():
        pieces.append(system_prompt)
    for message in messages:
        if message.role != "system":
            continue
        text = content_text(message.content)
        if text.strip():
            pieces.append(text)
    return "\n\n".join(pieces) if pieces else None


def content_text(content: Content | None, image_placeholder: str = IMAGE_PLACEHOLDER) -> str:
    """Flatten content to text; images become *image_placeholder*."""
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    chunks: list[str] = []
    for part in content:
        if isinstance(part, TextPart):
            chunks.append(part.text)
        elif isinstance(part, ImagePart) and image_placeholder:
            chunks.append(image_placeholder)
    return "\n".join(chunks)


def has_content(content: Content | None) -> bool:
    """Whether *content* carries any text or image."""
    if content is None:
        return False
    if isinstance(content, str):
        return bool(content.strip())
    return any(
        isinstance(part, ImagePart) or (isinstance(part, TextPart) and part.text)
        for part in content
    )


def invocation_calls(message: Message) -> list[ToolCall]:
    """Tool calls of an assistant turn, in either history form."""
    if message.tool_calls:
        return list(message.tool_calls)
    if message.is_legacy_invocation:
        raw = message.content if isinstance(message.content, str) else ""
        return [
            ToolCall(
                id=message.tool_call_id or "",
                name=message.tool_name or "",
                arguments=parse_arguments(raw),
            )
        ]
    return []


def invocation_text(message: Message) -> str:
    """Visible text accompanying a tool invocation (none for the legacy form)."""
    if message.is_legacy_invocation:
        return ""
    return content_text(message.content)


def arguments_json(arguments: dict[str, Any]) -> str:
    """Serialize arguments for vendors that want a JSON string."""
    return json.dumps(arguments, ensure_ascii=False)


@dataclass(frozen=True)
class History:
    """Conversation turns with system messages removed and orphans dropped.

    ``call_names`` maps every tool-call id seen in an assistant invocation to
    the tool's name, for vendors that address results by name.
    """

    turns: tuple[Message, ...]
    call_names: dict[str, str]


def normalize_history(messages: Sequence[Message]) -> History:
    """Drop system turns, empty turns, and tool results without a matching call."""
    turns: list[Message] = []
    call_names: dict[str, str] = {}
    for message in messages:
        if message.role == "system":
            continue
        if message.role == "tool":
            if not message.tool_call_id or message.tool_call_id not in call_names:
                log.warning(
                    "Dropping tool result with unknown tool_call_id=%r",
                    message.tool_call_id,
                )
                continue
            turns.append(message)
            continue
        if message.role == "assistant" and message.is_tool_invocation:
            for call in invocation_calls(message):
                if call.id:
                    call_names[call.id] = call.name
            turns.append(message)
            continue
        if not has_content(message.content):
            log.debug("Skipping empty %s message", message.role)
            continue
        turns.append(message)
    return History(turns=tuple(turns), call_names=call_names)


def ensure_user_first(
    turns: list[dict[str, Any]],
    make_user: Any,
    *,
    role_key: str = "role",
    user_role: str = "user",
) -> list[dict[str, Any]]:
    """Prepend a synthetic user turn when the first turn is not the user's.

    ``make_user`` builds a vendor-shaped user turn from text.
    """
    if not turns or _role_of(turns[0], role_key) != user_role:
        turns.insert(0, make_user(CONTINUE_CONVERSATION))
    return turns


def _role_of(turn: Any, role_key: str) -> Any:
    if isinstance(turn, dict):
        return turn.get(role_key)
    return getattr(turn, role_key, None)
