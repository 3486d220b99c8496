"""Configuration: frozen ChatConfig with credential resolution."""

from __future__ import annotations

from dataclasses import dataclass, field
import os
from typing import Any, Literal

from dotenv import load_dotenv

from fluxgate.errors import ConfigurationError
from fluxgate.profiles import AdapterProfile

load_dotenv()

AuthStyle = Literal["api-key", "bearer"]

# Vendor-specific API key environment variable names
API_KEY_ENV_VARS: dict[str, str] = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "deepseek": "DEEPSEEK_API_KEY",
    "groq": "GROQ_API_KEY",
    "mistral": "MISTRAL_API_KEY",
}


@dataclass(frozen=True)
class ChatConfig:
    """Immutable per-request vendor configuration.

    Vendor and model are required. API keys are auto-resolved from the
    vendor's standard environment variable when not passed explicitly.
    Whether the vendor itself is known is checked by the registry.

    Example:
        config = ChatConfig(vendor="anthropic", model="claude-sonnet-4-5")
        # API key is resolved from ANTHROPIC_API_KEY
    """

    vendor: str
    model: str
    api_key: str | None = None
    base_url: str | None = None
    #: Seconds; applies to connect and read.
    timeout: float = 60.0
    #: Excluded from the hash, as is ``adapter_profile``; equality still compares them.
    headers: dict[str, str] = field(default_factory=dict, hash=False)
    #: Anthropic only. ``None`` picks bearer for custom endpoints.
    auth_style: AuthStyle | None = None
    adapter_id: str | None = None
    adapter_profile: AdapterProfile | None = field(default=None, hash=False)
    max_tokens: int | None = None
    temperature: float | None = None
    top_p: float | None = None

    def __post_init__(self) -> None:
        """Validate shape and auto-resolve the API key."""
        if not isinstance(self.vendor, str) or not self.vendor.strip():
            raise ConfigurationError(
                "vendor is required",
                hint="Pass vendor='openai', 'anthropic', 'gemini', ...",
            )
        if not isinstance(self.model, str) or not self.model.strip():
            raise ConfigurationError(
                f"model is required for {self.vendor}",
                hint="Pass the vendor's model identifier, e.g. model='gpt-4o'.",
            )
        if self.timeout <= 0:
            raise ConfigurationError(
                f"timeout must be > 0, got {self.timeout}",
                hint="This is the per-request timeout in seconds.",
            )
        if self.auth_style not in (None, "api-key", "bearer"):
            raise ConfigurationError(
                f"Unknown auth_style: {self.auth_style!r}",
                hint="Use 'api-key', 'bearer', or leave it unset.",
            )
        if self.max_tokens is not None and self.max_tokens < 1:
            raise ConfigurationError(
                f"max_tokens must be >= 1, got {self.max_tokens}"
            )

        if isinstance(self.adapter_profile, dict):
            profile: Any = AdapterProfile.parse(self.adapter_profile)
            object.__setattr__(self, "adapter_profile", profile)
        object.__setattr__(self, "headers", dict(self.headers or {}))
        if self.base_url:
            object.__setattr__(self, "base_url", self.base_url.rstrip("/"))

        # Auto-resolve API key from environment if not provided
        if self.api_key is None:
            env_var = API_KEY_ENV_VARS.get(self.vendor)
            if env_var is not None:
                object.__setattr__(self, "api_key", os.environ.get(env_var))

    @property
    def env_var(self) -> str | None:
        """The environment variable consulted for this vendor's key."""
        return API_KEY_ENV_VARS.get(self.vendor)

    def __str__(self) -> str:
        """Return a redacted, developer-friendly representation."""
        return (
            f"ChatConfig(vendor={self.vendor!r}, model={self.model!r}, "
            f"api_key={'[REDACTED]' if self.api_key else None}, "
            f"base_url={self.base_url!r}, timeout={self.timeout})"
        )

    __repr__ = __str__
