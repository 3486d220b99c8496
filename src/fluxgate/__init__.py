"""Fluxgate: one streaming chat contract over many LLM vendors."""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version
import logging

from fluxgate.adapters import Adapter, AdapterCapabilities
from fluxgate.config import ChatConfig
from fluxgate.controller import RequestController
from fluxgate.errors import (
    AuthenticationError,
    ConfigurationError,
    ErrorKind,
    FluxgateError,
    GatewayError,
    MalformedResponseError,
    NetworkError,
    RateLimitError,
    RequestCancelled,
)
from fluxgate.events import (
    DoneEvent,
    ErrorEvent,
    ReasoningEvent,
    StreamEvent,
    TextEvent,
    ToolCallDeltaEvent,
    ToolCallEvent,
)
from fluxgate.profiles import AdapterProfile, ProfileCatalog
from fluxgate.registry import ProviderRegistry
from fluxgate.session import AdapterState, CancellationToken, RequestSession
from fluxgate.types import (
    ChatRequest,
    ImagePart,
    Message,
    TextPart,
    ToolCall,
    ToolDefinition,
    Usage,
)

try:
    __version__ = version("fluxgate")
except PackageNotFoundError:
    __version__ = "0.0.0+unknown"

__all__ = [
    "Adapter",
    "AdapterCapabilities",
    "AdapterProfile",
    "AdapterState",
    "AuthenticationError",
    "CancellationToken",
    "ChatConfig",
    "ChatRequest",
    "ConfigurationError",
    "DoneEvent",
    "ErrorEvent",
    "ErrorKind",
    "FluxgateError",
    "GatewayError",
    "ImagePart",
    "MalformedResponseError",
    "Message",
    "NetworkError",
    "ProfileCatalog",
    "ProviderRegistry",
    "RateLimitError",
    "ReasoningEvent",
    "RequestCancelled",
    "RequestController",
    "RequestSession",
    "StreamEvent",
    "TextEvent",
    "TextPart",
    "ToolCall",
    "ToolCallDeltaEvent",
    "ToolCallEvent",
    "ToolDefinition",
    "Usage",
]

# Library: no handlers beyond NullHandler; applications configure logging.
logging.getLogger("fluxgate").addHandler(logging.NullHandler())
