"""Provider registry: one shared adapter per distinct configuration."""

from __future__ import annotations

from dataclasses import dataclass
import hashlib
import json
import logging
from typing import TYPE_CHECKING

from fluxgate._singleflight import SingleFlight
from fluxgate.adapters.anthropic import AnthropicAdapter, resolve_auth_style
from fluxgate.adapters.gemini import GeminiAdapter
from fluxgate.adapters.mock import MockAdapter
from fluxgate.adapters.openai import OpenAIAdapter
from fluxgate.errors import ConfigurationError
from fluxgate.profiles import ProfileCatalog

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from fluxgate.adapters.base import Adapter
    from fluxgate.config import ChatConfig
    from fluxgate.profiles import AdapterProfile

    AdapterFactory = Callable[[ChatConfig, VendorSpec, AdapterProfile | None], Adapter]

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class VendorSpec:
    """Static facts about one vendor identifier."""

    name: str
    family: str
    default_base_url: str | None = None
    requires_key: bool = True
    placeholder_key: str | None = None


VENDORS: dict[str, VendorSpec] = {
    v.name: v
    for v in (
        VendorSpec("openai", "openai"),
        VendorSpec("custom", "openai"),
        VendorSpec("deepseek", "openai", "https://api.deepseek.com"),
        VendorSpec("groq", "openai", "https://api.groq.com/openai/v1"),
        VendorSpec("mistral", "openai", "https://api.mistral.ai/v1"),
        VendorSpec(
            "ollama",
            "openai",
            "http://localhost:11434/v1",
            requires_key=False,
            placeholder_key="ollama",
        ),
        VendorSpec("anthropic", "anthropic"),
        VendorSpec("gemini", "gemini"),
        VendorSpec("mock", "mock", requires_key=False),
    )
}


def _openai_factory(
    config: ChatConfig, spec: VendorSpec, profile: AdapterProfile | None
) -> Adapter:
    return OpenAIAdapter(
        vendor=spec.name,
        api_key=config.api_key or spec.placeholder_key,
        base_url=config.base_url or spec.default_base_url,
        timeout=config.timeout,
        headers=config.headers,
        profile=profile,
    )


def _anthropic_factory(
    config: ChatConfig, spec: VendorSpec, profile: AdapterProfile | None  # noqa: ARG001
) -> Adapter:
    return AnthropicAdapter(
        api_key=config.api_key,
        base_url=config.base_url,
        timeout=config.timeout,
        headers=config.headers,
        auth_style=config.auth_style,
        profile=profile,
    )


def _gemini_factory(
    config: ChatConfig, spec: VendorSpec, profile: AdapterProfile | None  # noqa: ARG001
) -> Adapter:
    return GeminiAdapter(
        api_key=config.api_key,
        base_url=config.base_url,
        timeout=config.timeout,
        headers=config.headers,
        profile=profile,
    )


def _mock_factory(
    config: ChatConfig, spec: VendorSpec, profile: AdapterProfile | None  # noqa: ARG001
) -> Adapter:
    return MockAdapter()


DEFAULT_FACTORIES: dict[str, AdapterFactory] = {
    "openai": _openai_factory,
    "anthropic": _anthropic_factory,
    "gemini": _gemini_factory,
    "mock": _mock_factory,
}


class ProviderRegistry:
    """Cache of constructed adapters keyed by configuration fingerprint.

    ``get`` builds each adapter once under single-flight: concurrent callers
    for the same key share one construction, while callers for other keys
    proceed independently.
    """

    def __init__(
        self,
        factories: Mapping[str, AdapterFactory] | None = None,
        profiles: ProfileCatalog | None = None,
    ) -> None:
        self._factories: dict[str, AdapterFactory] = dict(DEFAULT_FACTORIES)
        if factories:
            self._factories.update(factories)
        self.profiles = profiles if profiles is not None else ProfileCatalog()
        self._adapters: dict[str, Adapter] = {}
        self._vendors: dict[str, str] = {}
        self._flights: SingleFlight[str, Adapter] = SingleFlight()
        self._generation = 0

    def __len__(self) -> int:
        return len(self._adapters)

    def check(self, config: ChatConfig) -> VendorSpec:
        """Validate *config* synchronously, before any adapter or network work."""
        spec = VENDORS.get(config.vendor)
        if spec is None:
            raise ConfigurationError(
                f"Unknown vendor: {config.vendor!r}",
                hint=f"Supported vendors: {', '.join(sorted(VENDORS))}.",
                vendor=config.vendor,
            )
        if spec.family not in self._factories:
            raise ConfigurationError(
                f"No adapter factory registered for {spec.family!r}",
                vendor=config.vendor,
            )
        if config.adapter_id and config.adapter_profile is None:
            self.profiles.require(config.adapter_id)
        if spec.requires_key and not config.api_key:
            env_hint = f"Set {config.env_var} or pass" if config.env_var else "Pass"
            raise ConfigurationError(
                f"API key required for {config.vendor}",
                hint=f"{env_hint} api_key=...",
                vendor=config.vendor,
            )
        return spec

    def profile_for(self, config: ChatConfig) -> AdapterProfile | None:
        """The adapter profile for *config*: inline first, then by id."""
        if config.adapter_profile is not None:
            return config.adapter_profile
        if config.adapter_id:
            return self.profiles.require(config.adapter_id)
        return None

    def key(self, config: ChatConfig) -> str:
        """Fingerprint of everything that changes how an adapter is built."""
        spec = self.check(config)
        profile = self.profile_for(config)
        auth_style = (
            resolve_auth_style(config.auth_style, config.base_url)
            if spec.family == "anthropic"
            else config.auth_style
        )
        material = {
            "vendor": config.vendor,
            "api_key": config.api_key or "",
            "base_url": config.base_url or spec.default_base_url or "",
            "timeout": config.timeout,
            "auth_style": auth_style or "",
            "headers": sorted(config.headers.items()),
            "profile": profile.fingerprint if profile is not None else "",
        }
        encoded = json.dumps(material, sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(encoded.encode()).hexdigest()

    def peek(self, config: ChatConfig) -> Adapter | None:
        """Return the cached adapter for *config* without building one."""
        return self._adapters.get(self.key(config))

    async def get(self, config: ChatConfig) -> Adapter:
        """Return the shared adapter for *config*, building it on first use."""
        key = self.key(config)
        cached = self._adapters.get(key)
        if cached is not None:
            return cached
        generation = self._generation

        async def build() -> Adapter:
            spec = VENDORS[config.vendor]
            factory = self._factories[spec.family]
            adapter = factory(config, spec, self.profile_for(config))
            log.info("Constructed %s adapter for vendor %s", spec.family, config.vendor)
            if generation != self._generation:
                log.debug("Registry cleared during construction; not caching %s", config.vendor)
            else:
                self._adapters[key] = adapter
                self._vendors[key] = config.vendor
            return adapter

        return await self._flights.do(key, build)

    def invalidate(self, vendor: str) -> int:
        """Drop every cached adapter of *vendor*; return how many were dropped.

        Dropped adapters are not closed: in-flight requests may still hold them.
        """
        doomed = [k for k, v in self._vendors.items() if v == vendor]
        for k in doomed:
            self._adapters.pop(k, None)
            self._vendors.pop(k, None)
        if doomed:
            log.info("Invalidated %d %s adapter(s)", len(doomed), vendor)
        return len(doomed)

    def clear(self) -> None:
        """Drop every cached adapter (configuration reload)."""
        self._generation += 1
        self._adapters.clear()
        self._vendors.clear()
        self._flights.forget()

    async def aclose(self) -> None:
        """Close every cached adapter's client and clear the cache."""
        adapters = list(self._adapters.values())
        self.clear()
        for adapter in adapters:
            await adapter.aclose()
