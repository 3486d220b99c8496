"""OpenAI Chat Completions adapter (OpenAI and OpenAI-compatible vendors)."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from fluxgate.adapters._errors import DECODE_ERRORS, malformed
from fluxgate.adapters._stream import drive
from fluxgate.adapters._translate import (
    arguments_json,
    content_text,
    fold_system,
    invocation_calls,
    invocation_text,
    normalize_history,
)
from fluxgate.adapters.base import AdapterCapabilities
from fluxgate.errors import ConfigurationError
from fluxgate.events import ToolCallDeltaEvent, ToolCallEvent
from fluxgate.profiles import BUILTIN_PROFILES
from fluxgate.session import AdapterState
from fluxgate.types import ImagePart, TextPart, Usage

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Sequence

    from fluxgate.events import StreamEvent
    from fluxgate.profiles import AdapterProfile
    from fluxgate.session import RequestSession
    from fluxgate.types import ChatRequest, Message, ToolDefinition

log = logging.getLogger(__name__)

# Delta fields OpenAI-compatible vendors use for reasoning text.
_REASONING_FIELDS = ("reasoning_content", "reasoning")


class OpenAIAdapter:
    """Streams Chat Completions from OpenAI or any compatible endpoint."""

    def __init__(
        self,
        *,
        api_key: str | None,
        vendor: str = "openai",
        base_url: str | None = None,
        timeout: float = 60.0,
        headers: dict[str, str] | None = None,
        profile: AdapterProfile | None = None,
    ) -> None:
        """Initialize with credentials, endpoint and an optional profile."""
        self.api_key = api_key
        self.base_url = base_url
        self.timeout = timeout
        self.headers = dict(headers or {})
        self.profile = profile
        self._vendor = vendor
        self._client: Any = None

    def _get_client(self) -> Any:
        """Lazily initialize and return the async OpenAI client."""
        if self._client is None:
            try:
                from openai import AsyncOpenAI
            except ImportError as e:
                raise ConfigurationError(
                    "openai package not installed",
                    hint="pip install openai",
                ) from e
            self._client = AsyncOpenAI(
                api_key=self.api_key,
                base_url=self.base_url,
                timeout=self.timeout,
                max_retries=0,
                default_headers=self.headers or None,
            )
        return self._client

    @property
    def vendor(self) -> str:
        """The vendor identifier this adapter serves."""
        return self._vendor

    @property
    def capabilities(self) -> AdapterCapabilities:
        """Return supported feature flags."""
        return AdapterCapabilities(
            tools=True,
            reasoning=True,
            images=True,
            fragmented_tool_calls=True,
            system_field=False,
        )

    @property
    def _tool_results_as_user(self) -> bool:
        return self.profile is not None and self.profile.messages.tool_result_role == "user"

    def translate_tools(self, tools: Sequence[ToolDefinition]) -> list[dict[str, Any]]:
        """Convert tool definitions to function declarations (or the profile's shape)."""
        profile = self.profile or BUILTIN_PROFILES["openai"]
        return profile.convert_tools(tools)

    def translate_messages(
        self, messages: Sequence[Message], system_prompt: str | None = None
    ) -> list[dict[str, Any]]:
        """Build the ``messages`` array.

        Consecutive tool invocations are merged into one assistant turn so
        each ``tool`` result follows the assistant message that issued it.
        """
        out: list[dict[str, Any]] = []
        system = fold_system(messages, system_prompt)
        if system:
            out.append({"role": "system", "content": system})

        history = normalize_history(messages)
        for message in history.turns:
            if message.role == "tool":
                out.append(self._tool_result(message))
            elif message.is_tool_invocation:
                self._append_invocation(out, message)
            elif message.role == "assistant":
                out.append({"role": "assistant", "content": content_text(message.content)})
            else:
                out.append({"role": "user", "content": _user_content(message)})
        return out

    def _append_invocation(self, out: list[dict[str, Any]], message: Message) -> None:
        calls = invocation_calls(message)
        text = invocation_text(message)
        if self._tool_results_as_user:
            rendered = "\n".join(
                _render_text_call(self.profile, call.name, call.arguments) for call in calls
            )
            out.append(
                {"role": "assistant", "content": f"{text}\n{rendered}" if text else rendered}
            )
            return
        wire_calls = [
            {
                "id": call.id,
                "type": "function",
                "function": {"name": call.name, "arguments": arguments_json(call.arguments)},
            }
            for call in calls
        ]
        prev = out[-1] if out else None
        if prev is not None and prev["role"] == "assistant" and prev.get("tool_calls"):
            prev["tool_calls"].extend(wire_calls)
            if text:
                prev["content"] = f"{prev.get('content') or ''}{text}"
            return
        out.append({"role": "assistant", "content": text or None, "tool_calls": wire_calls})

    def _tool_result(self, message: Message) -> dict[str, Any]:
        text = content_text(message.content)
        if not self._tool_results_as_user:
            return {"role": "tool", "tool_call_id": message.tool_call_id, "content": text}
        wrapper = self.profile.messages.tool_result_wrapper if self.profile else None
        if wrapper:
            text = f'<{wrapper} tool_use_id="{message.tool_call_id}">\n{text}\n</{wrapper}>'
        return {"role": "user", "content": text}

    def stream(
        self, request: ChatRequest, session: RequestSession
    ) -> AsyncIterator[StreamEvent]:
        """Stream one request's events."""
        return drive(self.vendor, session, self._body(request, session))

    def _params(self, request: ChatRequest) -> dict[str, Any]:
        config = request.config
        params: dict[str, Any] = {
            "model": config.model,
            "messages": self.translate_messages(request.messages, request.system_prompt),
            "stream": True,
        }
        if request.tools:
            params["tools"] = self.translate_tools(request.tools)
        if config.temperature is not None:
            params["temperature"] = config.temperature
        if config.top_p is not None:
            params["top_p"] = config.top_p
        # Usage in the stream is only reliably supported by the native endpoint.
        if self.vendor == "openai" and not self.base_url:
            params["stream_options"] = {"include_usage": True}

        extra_body: dict[str, Any] = {}
        if config.max_tokens is not None:
            tokens_param = (
                self.profile.request.max_tokens_param if self.profile else "max_tokens"
            )
            if tokens_param == "max_tokens":
                params["max_tokens"] = config.max_tokens
            else:
                extra_body[tokens_param] = config.max_tokens
        if self.profile is not None:
            for key, value in self.profile.body_extras().items():
                if key not in params:
                    extra_body[key] = value
            if self.profile.request.extra_headers:
                params["extra_headers"] = dict(self.profile.request.extra_headers)
        if extra_body:
            params["extra_body"] = extra_body
        return params

    async def _body(
        self, request: ChatRequest, session: RequestSession
    ) -> AsyncIterator[StreamEvent]:
        client = self._get_client()
        params = self._params(request)
        log.info(
            "request %s: %s stream for model %s",
            session.request_id,
            self.vendor,
            request.config.model,
        )
        stream = await client.chat.completions.create(**params)
        session.transition(AdapterState.STREAMING)
        try:
            async for chunk in stream:
                if session.cancelled:
                    return
                try:
                    decoded = self._decode(chunk, session)
                except DECODE_ERRORS as e:
                    raise malformed(self.vendor, f"bad chunk: {e!r}") from e
                for event in decoded:
                    yield event
        finally:
            await stream.close()

        if self.profile is not None and self.profile.parses_text_tool_calls:
            assembler = session.assembler
            if not assembler.sealed and not assembler.has_open:
                for call_id, name, args in self.profile.parse_text_tool_calls(session.content):
                    call = assembler.add_complete(call_id, name, args)
                    if call is not None:
                        yield ToolCallEvent(call)

    def _decode(self, chunk: Any, session: RequestSession) -> list[StreamEvent]:
        events: list[StreamEvent] = []
        usage = getattr(chunk, "usage", None)
        if usage is not None:
            session.usage = Usage.of(
                getattr(usage, "prompt_tokens", 0) or 0,
                getattr(usage, "completion_tokens", 0) or 0,
                getattr(usage, "total_tokens", None),
            )
        choices = getattr(chunk, "choices", None) or []
        if not choices:
            return events
        choice = choices[0]
        delta = getattr(choice, "delta", None)
        if delta is not None:
            reasoning = self._reasoning_of(delta)
            if reasoning:
                events.append(session.reasoning(reasoning))
            content = getattr(delta, "content", None)
            if content:
                events.append(session.text(content))
            for tc in getattr(delta, "tool_calls", None) or []:
                events.extend(self._fragment(tc, session))
        if getattr(choice, "finish_reason", None):
            events.extend(session.tool_events(session.assembler.finish()))
        return events

    def _fragment(self, tc: Any, session: RequestSession) -> list[StreamEvent]:
        index = tc.index if getattr(tc, "index", None) is not None else 0
        function = getattr(tc, "function", None)
        name = getattr(function, "name", None) if function is not None else None
        arguments = getattr(function, "arguments", None) if function is not None else None
        # GLM-style vendors send an argument object instead of text.
        if arguments is not None and not isinstance(arguments, str):
            arguments = json.dumps(arguments, ensure_ascii=False)
        call_id = getattr(tc, "id", None)

        events: list[StreamEvent] = []
        if call_id or not session.assembler.is_open(index):
            events.extend(session.tool_events(session.assembler.start(index, call_id, name)))
        session.assembler.append(index, arguments or "", name=name)
        events.append(
            ToolCallDeltaEvent(
                index=index, id=call_id, name=name, arguments_delta=arguments or ""
            )
        )
        return events

    def _reasoning_of(self, delta: Any) -> str | None:
        fields: tuple[str, ...] = _REASONING_FIELDS
        if self.profile is not None and self.profile.stream.reasoning_field:
            fields = (self.profile.stream.reasoning_field, *fields)
        for name in fields:
            value = getattr(delta, name, None)
            if value is None:
                extra = getattr(delta, "model_extra", None)
                if isinstance(extra, dict):
                    value = extra.get(name)
            if isinstance(value, str) and value:
                return value
        return None

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        client = self._client
        self._client = None
        if client is not None:
            await client.close()


def _user_content(message: Message) -> str | list[dict[str, Any]]:
    content = message.content
    if content is None or isinstance(content, str):
        return content or ""
    if not any(isinstance(part, ImagePart) for part in content):
        return content_text(content)
    parts: list[dict[str, Any]] = []
    for part in content:
        if isinstance(part, TextPart):
            parts.append({"type": "text", "text": part.text})
        elif isinstance(part, ImagePart):
            parts.append({"type": "image_url", "image_url": {"url": part.as_data_uri()}})
    return parts


def _render_text_call(profile: AdapterProfile | None, name: str, arguments: dict[str, Any]) -> str:
    xml = profile.response.xml if profile is not None else None
    tag = xml.tool_call_tag if xml else "tool_call"
    name_tag = xml.name_source if xml and not xml.name_source.startswith("@") else "name"
    args_tag = xml.args_tag if xml else "arguments"
    return (
        f"<{tag}><{name_tag}>{name}</{name_tag}>"
        f"<{args_tag}>{arguments_json(arguments)}</{args_tag}></{tag}>"
    )
