"""Adapter profiles: declarative wire-format tweaks for non-native vendors.

A profile remaps tool declarations, tool-result turns, request body extras
and stream field names so a proxy or OpenAI-compatible vendor can be driven
without changing the core translators. Profiles are validated with pydantic
so user-supplied JSON fails early with a precise message.
"""

from __future__ import annotations

import hashlib
import re
from typing import TYPE_CHECKING, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from fluxgate._json import parse_arguments
from fluxgate.assembler import synthesize_call_id
from fluxgate.errors import ConfigurationError

if TYPE_CHECKING:
    from collections.abc import Sequence

    from fluxgate.types import ToolDefinition

# Body keys owned by the adapter; profile templates never override them.
CORE_BODY_KEYS = frozenset(
    {"model", "messages", "system", "systemInstruction", "tools", "stream"}
)


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class ToolFormat(_Frozen):
    """How tool declarations are shaped."""

    wrap_mode: Literal["none", "function", "tool"] = "function"
    wrap_field: str | None = "function"
    parameter_field: Literal["parameters", "input_schema", "schema"] = "parameters"
    include_type: bool = True


class XmlToolCallFormat(_Frozen):
    """Tag layout for vendors that emit tool calls as XML in text."""

    tool_call_tag: str = "tool_call"
    name_source: str = "name"
    args_tag: str = "arguments"
    args_format: Literal["json", "xml", "key-value"] = "json"


class ResponseFormat(_Frozen):
    """How tool calls are found in the vendor's output."""

    response_format: Literal["json", "xml", "mixed"] = "json"
    xml: XmlToolCallFormat | None = None


class MessageFormat(_Frozen):
    """How tool results are addressed back to the vendor."""

    tool_result_role: Literal["tool", "user"] = "tool"
    tool_result_wrapper: str | None = None


class RequestFormat(_Frozen):
    """Extra request body parameters and headers."""

    extra_params: dict[str, Any] = Field(default_factory=dict)
    extra_headers: dict[str, str] = Field(default_factory=dict)
    max_tokens_param: str = "max_tokens"


class StreamFormat(_Frozen):
    """Stream field names that differ between vendors."""

    reasoning_field: str | None = None


class AdapterProfile(_Frozen):
    """A complete, named wire-format profile."""

    id: str = Field(min_length=1)
    name: str = ""
    description: str = ""
    builtin: bool = False
    tool_format: ToolFormat = Field(default_factory=ToolFormat)
    response: ResponseFormat = Field(default_factory=ResponseFormat)
    messages: MessageFormat = Field(default_factory=MessageFormat)
    request: RequestFormat = Field(default_factory=RequestFormat)
    stream: StreamFormat = Field(default_factory=StreamFormat)

    @classmethod
    def parse(cls, data: dict[str, Any]) -> AdapterProfile:
        """Validate a user-supplied mapping into a profile."""
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise ConfigurationError(
                f"Invalid adapter profile: {e.error_count()} validation error(s)",
                hint=str(e),
            ) from e

    @property
    def fingerprint(self) -> str:
        """Identity of this profile's content, for cache keys."""
        digest = hashlib.sha256(self.model_dump_json().encode()).hexdigest()[:16]
        return f"{self.id}:{digest}"

    def convert_tools(self, tools: Sequence[ToolDefinition]) -> list[dict[str, Any]]:
        """Shape tool declarations per ``tool_format``."""
        fmt = self.tool_format
        converted: list[dict[str, Any]] = []
        for tool in tools:
            tool_def: dict[str, Any] = {
                "name": tool.name,
                "description": tool.description,
                fmt.parameter_field: tool.parameters,
            }
            if fmt.wrap_mode == "function" and fmt.wrap_field:
                wrapped: dict[str, Any] = {fmt.wrap_field: tool_def}
                if fmt.include_type:
                    wrapped["type"] = "function"
                converted.append(wrapped)
            elif fmt.wrap_mode == "tool" and fmt.include_type:
                converted.append({"type": "tool", **tool_def})
            else:
                converted.append(tool_def)
        return converted

    def body_extras(self) -> dict[str, Any]:
        """Template parameters safe to merge into a request body."""
        extras: dict[str, Any] = {}
        for key, value in self.request.extra_params.items():
            if key in CORE_BODY_KEYS:
                continue
            if isinstance(value, str) and value.startswith("{{"):
                continue
            extras[key] = value
        return extras

    @property
    def parses_text_tool_calls(self) -> bool:
        """Whether tool calls may be embedded in text output."""
        return self.response.response_format in ("xml", "mixed") and (
            self.response.xml is not None
        )

    def parse_text_tool_calls(self, text: str) -> list[tuple[str, str, dict[str, Any]]]:
        """Extract ``(id, name, arguments)`` triples from XML-tagged text."""
        xml = self.response.xml
        if xml is None or not text:
            return []
        tag = re.escape(xml.tool_call_tag)
        pattern = re.compile(rf"<{tag}([^>]*)>([\s\S]*?)</{tag}>", re.IGNORECASE)
        found: list[tuple[str, str, dict[str, Any]]] = []
        for match in pattern.finditer(text):
            attrs, inner = match.group(1), match.group(2)
            name = _xml_name(xml.name_source, attrs, inner)
            if not name:
                continue
            args = _xml_args(xml, inner)
            found.append((synthesize_call_id(), name, args))
        return found


def _xml_name(name_source: str, attrs: str, inner: str) -> str:
    if name_source.startswith("@"):
        attr = re.escape(name_source[1:])
        m = re.search(rf"{attr}=[\"']([^\"']+)[\"']", attrs)
        return m.group(1).strip() if m else ""
    tag = re.escape(name_source)
    m = re.search(rf"<{tag}>([^<]+)</{tag}>", inner)
    return m.group(1).strip() if m else ""


def _xml_args(xml: XmlToolCallFormat, inner: str) -> dict[str, Any]:
    tag = re.escape(xml.args_tag)
    m = re.search(rf"<{tag}>([\s\S]*?)</{tag}>", inner)
    if m is None:
        return {}
    body = m.group(1).strip()
    if xml.args_format == "json":
        return parse_arguments(body)
    return {k: v for k, v in re.findall(r"<(\w+)>([^<]*)</\1>", body)}


_OPENAI_WIRE: dict[str, Any] = {
    "tool_format": {
        "wrap_mode": "function",
        "wrap_field": "function",
        "parameter_field": "parameters",
        "include_type": True,
    },
}
_XML_DEFAULT = {
    "tool_call_tag": "tool_call",
    "name_source": "name",
    "args_tag": "arguments",
    "args_format": "json",
}

BUILTIN_PROFILES: dict[str, AdapterProfile] = {
    p.id: p
    for p in (
        AdapterProfile(
            id="openai",
            name="OpenAI",
            description="OpenAI GPT models (standard format)",
            builtin=True,
            **_OPENAI_WIRE,
        ),
        AdapterProfile(
            id="anthropic",
            name="Anthropic",
            description="Claude models with tool_use content blocks",
            builtin=True,
            tool_format=ToolFormat(
                wrap_mode="none", wrap_field=None, parameter_field="input_schema",
                include_type=False,
            ),
            messages=MessageFormat(
                tool_result_role="user", tool_result_wrapper="tool_result"
            ),
        ),
        AdapterProfile(
            id="gemini",
            name="Gemini",
            description="Google Gemini function declarations",
            builtin=True,
            tool_format=ToolFormat(
                wrap_mode="none", wrap_field=None, include_type=False
            ),
        ),
        AdapterProfile(
            id="qwen",
            name="Qwen",
            description="Alibaba Qwen models",
            builtin=True,
            **_OPENAI_WIRE,
        ),
        AdapterProfile(
            id="glm",
            name="GLM",
            description="Zhipu GLM-4 models",
            builtin=True,
            **_OPENAI_WIRE,
        ),
        AdapterProfile(
            id="deepseek",
            name="DeepSeek",
            description="DeepSeek models (OpenAI compatible, supports reasoning)",
            builtin=True,
            stream=StreamFormat(reasoning_field="reasoning_content"),
            **_OPENAI_WIRE,
        ),
        AdapterProfile(
            id="xml-generic",
            name="XML Format",
            description="Models using XML tool call format",
            builtin=True,
            response=ResponseFormat(
                response_format="xml",
                xml=XmlToolCallFormat(**_XML_DEFAULT),
            ),
            messages=MessageFormat(
                tool_result_role="user", tool_result_wrapper="tool_result"
            ),
            **_OPENAI_WIRE,
        ),
        AdapterProfile(
            id="mixed",
            name="Mixed Format",
            description="Native tool calls first, XML in text as fallback",
            builtin=True,
            response=ResponseFormat(
                response_format="mixed",
                xml=XmlToolCallFormat(**_XML_DEFAULT),
            ),
            **_OPENAI_WIRE,
        ),
    )
}


class ProfileCatalog:
    """Built-in profiles plus user-registered custom ones."""

    def __init__(self) -> None:
        self._custom: dict[str, AdapterProfile] = {}

    def get(self, profile_id: str) -> AdapterProfile | None:
        """Return the profile for *profile_id*, custom ones first."""
        return self._custom.get(profile_id) or BUILTIN_PROFILES.get(profile_id)

    def require(self, profile_id: str) -> AdapterProfile:
        """Return the profile or raise ``ConfigurationError``."""
        profile = self.get(profile_id)
        if profile is None:
            known = ", ".join(sorted({*BUILTIN_PROFILES, *self._custom}))
            raise ConfigurationError(
                f"Unknown adapter profile: {profile_id!r}",
                hint=f"Known profiles: {known}.",
            )
        return profile

    def register(self, profile: AdapterProfile | dict[str, Any]) -> AdapterProfile:
        """Add or replace a custom profile."""
        if isinstance(profile, dict):
            profile = AdapterProfile.parse(profile)
        self._custom[profile.id] = profile
        return profile

    def remove(self, profile_id: str) -> bool:
        """Remove a custom profile. Built-ins cannot be removed."""
        return self._custom.pop(profile_id, None) is not None

    def all(self) -> list[AdapterProfile]:
        """Every known profile, built-ins first."""
        merged = dict(BUILTIN_PROFILES)
        merged.update(self._custom)
        return list(merged.values())
