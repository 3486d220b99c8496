"""Gemini adapter (google-genai streaming)."""

from __future__ import annotations

import base64
import binascii
import json
import logging
from typing import TYPE_CHECKING, Any

from fluxgate.adapters._errors import DECODE_ERRORS, malformed
from fluxgate.adapters._stream import drive
from fluxgate.adapters._translate import (
    CONTINUE,
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
from fluxgate.session import AdapterState
from fluxgate.types import ImagePart, TextPart, Usage

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Sequence

    from fluxgate.events import StreamEvent
    from fluxgate.profiles import AdapterProfile
    from fluxgate.session import RequestSession
    from fluxgate.types import ChatRequest, Content, Message, ToolDefinition

log = logging.getLogger(__name__)


def _types() -> Any:
    try:
        from google.genai import types
    except ImportError as e:
        raise ConfigurationError(
            "google-genai package not installed",
            hint="pip install google-genai",
        ) from e
    return types


class GeminiAdapter:
    """Google Gemini streaming adapter."""

    def __init__(
        self,
        *,
        api_key: str | None,
        base_url: str | None = None,
        timeout: float = 60.0,
        headers: dict[str, str] | None = None,
        profile: AdapterProfile | None = None,
    ) -> None:
        """Create adapter with an API key and optional endpoint."""
        self.api_key = api_key
        self.base_url = base_url
        self.timeout = timeout
        self.headers = dict(headers or {})
        self.profile = profile
        self._client: Any = None

    def _get_client(self) -> Any:
        """Lazy-initialize the Gemini client."""
        if self._client is None:
            try:
                from google import genai
            except ImportError as e:
                raise ConfigurationError(
                    "google-genai package not installed",
                    hint="pip install google-genai",
                ) from e
            types = _types()
            # HttpOptions.timeout is in milliseconds.
            http_options = types.HttpOptions(
                base_url=self.base_url,
                headers=self.headers or None,
                timeout=int(self.timeout * 1000),
            )
            self._client = genai.Client(api_key=self.api_key, http_options=http_options)
        return self._client

    @property
    def vendor(self) -> str:
        """The vendor identifier this adapter serves."""
        return "gemini"

    @property
    def capabilities(self) -> AdapterCapabilities:
        """Return supported feature flags."""
        return AdapterCapabilities(
            tools=True,
            reasoning=True,
            images=True,
            fragmented_tool_calls=False,
            system_field=True,
        )

    def translate_tools(self, tools: Sequence[ToolDefinition]) -> list[Any]:
        """Wrap all tools as function declarations of a single ``Tool``."""
        if not tools:
            return []
        types = _types()
        declarations = [
            types.FunctionDeclaration(
                name=tool.name,
                description=tool.description,
                parameters=tool.parameters,
            )
            for tool in tools
        ]
        return [types.Tool(function_declarations=declarations)]

    def translate_messages(
        self, messages: Sequence[Message], system_prompt: str | None = None
    ) -> tuple[str | None, list[Any]]:
        """Return ``(system_instruction, contents)``.

        Tool results are addressed by function name, recovered from the call
        id of the originating invocation. Gemini requires the first turn to be
        the user's and the last turn not to be the model's.
        """
        types = _types()
        system = fold_system(messages, system_prompt)
        history = normalize_history(messages)
        contents: list[Any] = []
        for message in history.turns:
            if message.role == "tool":
                name = history.call_names.get(message.tool_call_id or "", "unknown_tool")
                part = types.Part.from_function_response(
                    name=name, response=_tool_response(content_text(message.content))
                )
                _append_content(contents, types.Content(role="user", parts=[part]))
            elif message.is_tool_invocation:
                parts: list[Any] = []
                text = invocation_text(message)
                if text:
                    parts.append(types.Part.from_text(text=text))
                for call in invocation_calls(message):
                    parts.append(
                        types.Part.from_function_call(name=call.name, args=call.arguments)
                    )
                _append_content(contents, types.Content(role="model", parts=parts))
            elif message.role == "assistant":
                part = types.Part.from_text(text=content_text(message.content))
                _append_content(contents, types.Content(role="model", parts=[part]))
            else:
                _append_content(
                    contents,
                    types.Content(role="user", parts=_user_parts(types, message.content)),
                )

        def user(text: str) -> Any:
            return types.Content(role="user", parts=[types.Part.from_text(text=text)])

        ensure_user_first(contents, user)
        if contents[-1].role == "model":
            contents.append(user(CONTINUE))
        return system, contents

    def stream(
        self, request: ChatRequest, session: RequestSession
    ) -> AsyncIterator[StreamEvent]:
        """Stream one request's events."""
        return drive(self.vendor, session, self._body(request, session))

    def _generation_config(self, request: ChatRequest, system: str | None) -> Any:
        types = _types()
        config = request.config
        config_kwargs: dict[str, Any] = {}
        if system:
            config_kwargs["system_instruction"] = system
        if request.tools:
            config_kwargs["tools"] = self.translate_tools(request.tools)
        if config.max_tokens is not None:
            config_kwargs["max_output_tokens"] = config.max_tokens
        if config.temperature is not None:
            config_kwargs["temperature"] = config.temperature
        if config.top_p is not None:
            config_kwargs["top_p"] = config.top_p
        if self.profile is not None:
            known = types.GenerateContentConfig.model_fields
            for key, value in self.profile.body_extras().items():
                if key in known and key not in config_kwargs:
                    config_kwargs[key] = value
            if self.profile.request.extra_headers:
                config_kwargs["http_options"] = types.HttpOptions(
                    headers=dict(self.profile.request.extra_headers)
                )
        return types.GenerateContentConfig(**config_kwargs)

    async def _body(
        self, request: ChatRequest, session: RequestSession
    ) -> AsyncIterator[StreamEvent]:
        client = self._get_client()
        system, contents = self.translate_messages(request.messages, request.system_prompt)
        generation_config = self._generation_config(request, system)
        log.info("request %s: gemini stream for model %s", session.request_id, request.config.model)
        stream = await client.aio.models.generate_content_stream(
            model=request.config.model,
            contents=contents,
            config=generation_config,
        )
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
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()

    def _decode(self, chunk: Any, session: RequestSession) -> list[StreamEvent]:
        events: list[StreamEvent] = []
        um = getattr(chunk, "usage_metadata", None)
        if um is not None:
            session.usage = Usage.of(
                getattr(um, "prompt_token_count", 0) or 0,
                getattr(um, "candidates_token_count", 0) or 0,
                getattr(um, "total_token_count", None),
            )
        candidates = getattr(chunk, "candidates", None) or []
        if not candidates:
            return events
        content = getattr(candidates[0], "content", None)
        for part in getattr(content, "parts", None) or []:
            function_call = getattr(part, "function_call", None)
            if function_call is not None:
                call = session.assembler.add_complete(
                    getattr(function_call, "id", None),
                    function_call.name or "",
                    function_call.args or {},
                )
                events.extend(session.tool_events([call]))
                continue
            text = getattr(part, "text", None)
            if not text:
                continue
            if getattr(part, "thought", False):
                events.append(session.reasoning(text))
            else:
                events.append(session.text(text))
        return events

    async def aclose(self) -> None:
        """Close the underlying async client."""
        client = self._client
        self._client = None
        # Older google-genai releases have no async close.
        aclose = getattr(getattr(client, "aio", None), "aclose", None)
        if aclose is not None:
            await aclose()


def _append_content(contents: list[Any], content: Any) -> None:
    # Consecutive same-role turns (parallel tool results) share one Content.
    if contents and contents[-1].role == content.role:
        contents[-1].parts.extend(content.parts)
    else:
        contents.append(content)


def _tool_response(text: str) -> dict[str, Any]:
    if text:
        try:
            parsed = json.loads(text)
        except ValueError:
            return {"result": text}
        if isinstance(parsed, dict):
            return parsed
    return {"result": text}


def _user_parts(types: Any, content: Content | None) -> list[Any]:
    if content is None or isinstance(content, str):
        return [types.Part.from_text(text=content or "")]
    parts: list[Any] = []
    for part in content:
        if isinstance(part, TextPart):
            if part.text:
                parts.append(types.Part.from_text(text=part.text))
        elif isinstance(part, ImagePart):
            data = _decode_image(part)
            if data is None:
                parts.append(types.Part.from_text(text=IMAGE_PLACEHOLDER))
            else:
                parts.append(
                    types.Part.from_bytes(data=data, mime_type=part.media_type or "image/png")
                )
    return parts


def _decode_image(part: ImagePart) -> bytes | None:
    if part.encoding != "base64":
        return None
    try:
        return base64.b64decode(part.data, validate=True)
    except (binascii.Error, ValueError):
        log.warning("Replacing undecodable base64 image with a placeholder")
        return None
