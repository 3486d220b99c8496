"""Anthropic Messages API adapter."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from fluxgate.adapters._errors import DECODE_ERRORS, malformed
from fluxgate.adapters._stream import drive
from fluxgate.adapters._translate import (
    IMAGE_PLACEHOLDER,
    content_text,
    ensure_user_first,
    fold_system,
    invocation_calls,
    invocation_text,
    normalize_history,
)
from fluxgate.adapters.base import AdapterCapabilities
from fluxgate.errors import ConfigurationError
from fluxgate.events import ToolCallDeltaEvent
from fluxgate.profiles import BUILTIN_PROFILES
from fluxgate.session import AdapterState
from fluxgate.types import ImagePart, TextPart, Usage

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Sequence

    from fluxgate.config import AuthStyle
    from fluxgate.events import StreamEvent
    from fluxgate.profiles import AdapterProfile
    from fluxgate.session import RequestSession
    from fluxgate.types import ChatRequest, Content, Message, ToolDefinition

log = logging.getLogger(__name__)

_ANTHROPIC_MAX_TOKENS = 8192
_INTERLEAVED_THINKING_BETA_HEADER = "interleaved-thinking-2025-05-14"


class AnthropicAdapter:
    """Streams raw Messages API events and normalizes them."""

    def __init__(
        self,
        *,
        api_key: str | None,
        base_url: str | None = None,
        timeout: float = 60.0,
        headers: dict[str, str] | None = None,
        auth_style: AuthStyle | None = None,
        profile: AdapterProfile | None = None,
    ) -> None:
        """Initialize with credentials, endpoint and auth style."""
        self.api_key = api_key
        self.base_url = _strip_version(base_url)
        self.timeout = timeout
        self.headers = dict(headers or {})
        self.auth_style: AuthStyle = resolve_auth_style(auth_style, base_url)
        self.profile = profile
        self._client: Any = None

    def _get_client(self) -> Any:
        """Lazily initialize and return the async Anthropic client."""
        if self._client is None:
            try:
                from anthropic import AsyncAnthropic
            except ImportError as e:
                raise ConfigurationError(
                    "anthropic package not installed",
                    hint="pip install anthropic",
                ) from e
            headers = {"anthropic-beta": _INTERLEAVED_THINKING_BETA_HEADER, **self.headers}
            credentials: dict[str, Any] = (
                {"auth_token": self.api_key}
                if self.auth_style == "bearer"
                else {"api_key": self.api_key}
            )
            self._client = AsyncAnthropic(
                **credentials,
                base_url=self.base_url,
                timeout=self.timeout,
                max_retries=0,
                default_headers=headers,
            )
        return self._client

    @property
    def vendor(self) -> str:
        """The vendor identifier this adapter serves."""
        return "anthropic"

    @property
    def capabilities(self) -> AdapterCapabilities:
        """Return supported feature flags."""
        return AdapterCapabilities(
            tools=True,
            reasoning=True,
            images=True,
            fragmented_tool_calls=True,
            system_field=True,
        )

    def translate_tools(self, tools: Sequence[ToolDefinition]) -> list[dict[str, Any]]:
        """Convert tool definitions to Anthropic format (parameters -> input_schema)."""
        profile = self.profile or BUILTIN_PROFILES["anthropic"]
        return profile.convert_tools(tools)

    def translate_messages(
        self, messages: Sequence[Message], system_prompt: str | None = None
    ) -> tuple[str | None, list[dict[str, Any]]]:
        """Return ``(system, messages)`` with strict user/assistant alternation."""
        system = fold_system(messages, system_prompt)
        out: list[dict[str, Any]] = []
        for message in normalize_history(messages).turns:
            if message.role == "tool":
                _append_message(
                    out,
                    {
                        "role": "user",
                        "content": [
                            {
                                "type": "tool_result",
                                "tool_use_id": message.tool_call_id,
                                "content": content_text(message.content),
                            }
                        ],
                    },
                )
            elif message.is_tool_invocation:
                blocks: list[dict[str, Any]] = []
                text = invocation_text(message)
                if text:
                    blocks.append({"type": "text", "text": text})
                for call in invocation_calls(message):
                    blocks.append(
                        {
                            "type": "tool_use",
                            "id": call.id,
                            "name": call.name,
                            "input": call.arguments,
                        }
                    )
                _append_message(out, {"role": "assistant", "content": blocks})
            elif message.role == "assistant":
                _append_message(
                    out, {"role": "assistant", "content": content_text(message.content)}
                )
            else:
                _append_message(
                    out, {"role": "user", "content": _user_blocks(message.content)}
                )
        ensure_user_first(out, lambda text: {"role": "user", "content": text})
        return system, out

    def stream(
        self, request: ChatRequest, session: RequestSession
    ) -> AsyncIterator[StreamEvent]:
        """Stream one request's events."""
        return drive(self.vendor, session, self._body(request, session))

    def _params(self, request: ChatRequest) -> dict[str, Any]:
        config = request.config
        system, messages = self.translate_messages(request.messages, request.system_prompt)
        params: dict[str, Any] = {
            "model": config.model,
            "messages": messages,
            "max_tokens": config.max_tokens or _ANTHROPIC_MAX_TOKENS,
            "stream": True,
        }
        if system:
            params["system"] = system
        if request.tools:
            params["tools"] = self.translate_tools(request.tools)

        extras = self.profile.body_extras() if self.profile is not None else {}
        # Extended thinking rejects sampling overrides.
        if "thinking" not in extras:
            if config.temperature is not None:
                params["temperature"] = config.temperature
            if config.top_p is not None:
                params["top_p"] = config.top_p
        extra_body = {k: v for k, v in extras.items() if k not in params}
        if extra_body:
            params["extra_body"] = extra_body
        if self.profile is not None and self.profile.request.extra_headers:
            params["extra_headers"] = dict(self.profile.request.extra_headers)
        return params

    async def _body(
        self, request: ChatRequest, session: RequestSession
    ) -> AsyncIterator[StreamEvent]:
        client = self._get_client()
        params = self._params(request)
        log.info(
            "request %s: anthropic stream for model %s (auth=%s)",
            session.request_id,
            request.config.model,
            self.auth_style,
        )
        stream = await client.messages.create(**params)
        session.transition(AdapterState.STREAMING)
        try:
            async for event in stream:
                if session.cancelled:
                    return
                try:
                    decoded = self._decode(event, session)
                except DECODE_ERRORS as e:
                    etype = getattr(event, "type", None)
                    raise malformed(self.vendor, f"bad {etype} event: {e!r}") from e
                for out in decoded:
                    yield out
        finally:
            await stream.close()

    def _decode(self, event: Any, session: RequestSession) -> list[StreamEvent]:
        etype = getattr(event, "type", None)
        events: list[StreamEvent] = []
        if etype == "message_start":
            usage = getattr(getattr(event, "message", None), "usage", None)
            if usage is not None:
                session.usage = Usage.of(getattr(usage, "input_tokens", 0) or 0, 0)
        elif etype == "content_block_start":
            block = event.content_block
            if getattr(block, "type", None) == "tool_use":
                events.extend(
                    session.tool_events(session.assembler.start(event.index, block.id, block.name))
                )
                events.append(ToolCallDeltaEvent(index=event.index, id=block.id, name=block.name))
        elif etype == "content_block_delta":
            delta = event.delta
            dtype = getattr(delta, "type", None)
            if dtype == "text_delta" and delta.text:
                events.append(session.text(delta.text))
            elif dtype == "thinking_delta" and delta.thinking:
                events.append(session.reasoning(delta.thinking))
            elif dtype == "input_json_delta":
                partial = delta.partial_json or ""
                session.assembler.append(event.index, partial)
                events.append(ToolCallDeltaEvent(index=event.index, arguments_delta=partial))
        elif etype == "content_block_stop":
            if session.assembler.is_open(event.index):
                events.extend(session.tool_events([session.assembler.complete(event.index)]))
        elif etype == "message_delta":
            usage = getattr(event, "usage", None)
            output_tokens = getattr(usage, "output_tokens", None) if usage is not None else None
            if output_tokens is not None:
                input_tokens = session.usage.input_tokens if session.usage else 0
                session.usage = Usage.of(input_tokens, output_tokens)
        return events

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        client = self._client
        self._client = None
        if client is not None:
            await client.close()


def resolve_auth_style(auth_style: AuthStyle | None, base_url: str | None) -> AuthStyle:
    """Explicit style wins; otherwise a custom endpoint implies bearer auth."""
    if auth_style is not None:
        return auth_style
    return "bearer" if base_url else "api-key"


def _strip_version(base_url: str | None) -> str | None:
    # The SDK appends /v1/messages itself.
    if not base_url:
        return None
    trimmed = base_url.rstrip("/")
    if trimmed.endswith("/v1"):
        trimmed = trimmed[: -len("/v1")]
    return trimmed


def _user_blocks(content: Content | None) -> str | list[dict[str, Any]]:
    if content is None or isinstance(content, str):
        return content or ""
    blocks: list[dict[str, Any]] = []
    for part in content:
        if isinstance(part, TextPart):
            if part.text:
                blocks.append({"type": "text", "text": part.text})
        elif isinstance(part, ImagePart):
            if part.encoding == "base64":
                blocks.append(
                    {
                        "type": "image",
                        "source": {
                            "type": "base64",
                            "media_type": part.media_type or "image/png",
                            "data": part.data,
                        },
                    }
                )
            else:
                blocks.append({"type": "text", "text": IMAGE_PLACEHOLDER})
    return blocks


def _append_message(messages: list[dict[str, Any]], msg: dict[str, Any]) -> None:
    """Append *msg*, merging into the previous message when roles match.

    Anthropic requires strict user/assistant alternation. When consecutive
    messages share a role (tool results followed by a user turn, or two
    assistant turns in history) their content blocks are merged.
    """
    if messages and messages[-1]["role"] == msg["role"]:
        prev = messages[-1]
        prev_content = prev["content"]
        new_content = msg["content"]
        if isinstance(prev_content, str):
            prev_content = [{"type": "text", "text": prev_content}]
        if isinstance(new_content, str):
            new_content = [{"type": "text", "text": new_content}]
        prev["content"] = prev_content + new_content
    else:
        messages.append(msg)
