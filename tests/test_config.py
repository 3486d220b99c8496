"""ChatConfig validation and credential resolution."""

from __future__ import annotations

import pytest

from fluxgate.config import ChatConfig
from fluxgate.errors import ConfigurationError, ErrorKind
from fluxgate.profiles import AdapterProfile
from tests.conftest import ANTHROPIC_MODEL, OPENAI_MODEL

pytestmark = pytest.mark.unit


def test_api_key_resolved_from_vendor_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ANTHROPIC_API_KEY", "from-env")
    config = ChatConfig(vendor="anthropic", model=ANTHROPIC_MODEL)
    assert config.api_key == "from-env"


def test_explicit_api_key_wins(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("OPENAI_API_KEY", "from-env")
    config = ChatConfig(vendor="openai", model=OPENAI_MODEL, api_key="explicit")
    assert config.api_key == "explicit"


def test_missing_key_is_left_for_the_registry_to_reject() -> None:
    config = ChatConfig(vendor="openai", model=OPENAI_MODEL)
    assert config.api_key is None
    assert config.env_var == "OPENAI_API_KEY"


@pytest.mark.parametrize(
    "kwargs",
    [
        {"model": ""},
        {"model": "m", "timeout": 0},
        {"model": "m", "timeout": -1.5},
        {"model": "m", "auth_style": "basic"},
        {"model": "m", "max_tokens": 0},
    ],
)
def test_invalid_shapes_raise_invalid_request(kwargs: dict) -> None:
    with pytest.raises(ConfigurationError) as exc_info:
        ChatConfig(vendor="openai", api_key="k", **kwargs)
    assert exc_info.value.kind is ErrorKind.INVALID_REQUEST


def test_repr_redacts_the_key() -> None:
    config = ChatConfig(vendor="openai", model=OPENAI_MODEL, api_key="sk-secret")
    assert "sk-secret" not in repr(config)
    assert "[REDACTED]" in str(config)


def test_base_url_trailing_slash_is_trimmed() -> None:
    config = ChatConfig(
        vendor="custom", model="m", api_key="k", base_url="https://proxy.test/v1/"
    )
    assert config.base_url == "https://proxy.test/v1"


def test_inline_profile_mapping_is_validated() -> None:
    config = ChatConfig(
        vendor="custom",
        model="m",
        api_key="k",
        adapter_profile={"id": "mine", "stream": {"reasoning_field": "thinking"}},
    )
    assert isinstance(config.adapter_profile, AdapterProfile)
    assert config.adapter_profile.stream.reasoning_field == "thinking"


def test_inline_profile_with_unknown_fields_is_rejected() -> None:
    with pytest.raises(ConfigurationError, match="Invalid adapter profile"):
        ChatConfig(
            vendor="custom",
            model="m",
            api_key="k",
            adapter_profile={"id": "mine", "surprise": True},
        )


def test_configs_with_headers_are_hashable() -> None:
    a = ChatConfig(vendor="openai", model=OPENAI_MODEL, api_key="k", headers={"x-team": "a"})
    b = ChatConfig(vendor="openai", model=OPENAI_MODEL, api_key="k", headers={"x-team": "a"})
    c = ChatConfig(
        vendor="custom",
        model="m",
        api_key="k",
        adapter_profile={"id": "mine", "stream": {"reasoning_field": "thinking"}},
    )

    assert hash(a) == hash(b)
    assert {a, b, c} == {a, c}
