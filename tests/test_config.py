"""Configuration boundary tests."""

from __future__ import annotations

import pytest

from switchboard.config import ConfigTarget, RegistryConfig
from switchboard.errors import ConfigurationError
from switchboard.providers._utils import require_credentials

pytestmark = pytest.mark.unit


def test_target_auto_resolves_api_key_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """API key should be auto-resolved from the provider's env var."""
    monkeypatch.setenv("ANTHROPIC_API_KEY", "env-key")

    target = ConfigTarget(provider="anthropic", model="claude-x")

    assert target.api_key == "env-key"


def test_explicit_api_key_takes_precedence(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("OPENAI_API_KEY", "env-key")

    target = ConfigTarget(provider="openai", model="gpt-4o", api_key="explicit-key")

    assert target.api_key == "explicit-key"


def test_unknown_provider_leaves_key_empty() -> None:
    """Providers without a known env var (e.g. test doubles) need no key."""
    assert ConfigTarget(provider="fake", model="m").api_key == ""


def test_repr_redacts_the_api_key() -> None:
    target = ConfigTarget(provider="openai", model="gpt-4o", api_key="sk-secret")

    assert "sk-secret" not in repr(target)
    assert "sk-secret" not in str(target)
    assert "[REDACTED]" in repr(target)


@pytest.mark.parametrize(
    "kwargs",
    [
        {"provider": "", "model": "m"},
        {"provider": "openai", "model": "m", "request_timeout": 0},
        {"provider": "openai", "model": "m", "max_tokens": 0},
    ],
)
def test_invalid_targets_raise_configuration_error(kwargs: dict) -> None:
    with pytest.raises(ConfigurationError):
        ConfigTarget(**kwargs)


def test_missing_api_key_fails_clearly_at_model_creation() -> None:
    """Adapters, not the target, reject a missing key with an env var hint."""
    target = ConfigTarget(provider="gemini", model="gemini-2.5-flash")

    with pytest.raises(ConfigurationError, match="API key required") as exc:
        require_credentials(target, provider="gemini")
    assert exc.value.hint is not None
    assert "GEMINI_API_KEY" in exc.value.hint


def test_missing_model_fails_clearly_at_model_creation() -> None:
    target = ConfigTarget(provider="openai", model="", api_key="k")

    with pytest.raises(ConfigurationError, match="Model name required"):
        require_credentials(target, provider="openai")


# =============================================================================
# Mappings
# =============================================================================


def test_from_mapping_rejects_unknown_keys() -> None:
    with pytest.raises(ConfigurationError, match="Unknown model config keys") as exc:
        ConfigTarget.from_mapping({"provider": "openai", "model": "m", "modle": "x"})
    assert exc.value.hint is not None
    assert "model" in exc.value.hint


def test_from_mapping_requires_provider_and_model() -> None:
    with pytest.raises(ConfigurationError):
        ConfigTarget.from_mapping({"provider": "openai"})


def test_registry_config_accepts_wrapped_and_bare_mappings() -> None:
    entry = {"provider": "openai", "model": "gpt-4o", "api_key": "k"}

    wrapped = RegistryConfig.from_mapping({"targets": {"default": entry}})
    bare = RegistryConfig.from_mapping({"default": entry})

    assert wrapped == bare
    assert wrapped.targets["default"].model == "gpt-4o"


def test_registry_config_keeps_insertion_order() -> None:
    config = RegistryConfig.from_mapping(
        {
            "b": {"provider": "mock", "model": "m1"},
            "a": {"provider": "mock", "model": "m2"},
        }
    )
    assert list(config.targets) == ["b", "a"]


def test_registry_config_rejects_non_mapping_entries() -> None:
    with pytest.raises(ConfigurationError):
        RegistryConfig.from_mapping({"targets": {"default": "openai/gpt-4o"}})
