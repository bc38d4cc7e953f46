"""Model configuration: frozen targets with environment key resolution."""

from __future__ import annotations

from dataclasses import dataclass, field, fields
import os
from typing import TYPE_CHECKING, Any

from dotenv import load_dotenv

from switchboard.errors import ConfigurationError

if TYPE_CHECKING:
    from collections.abc import Mapping

load_dotenv()

# Provider-specific API key environment variable names
API_KEY_ENV_VARS: dict[str, str] = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "gemini": "GEMINI_API_KEY",
}

DEFAULT_MAX_TOKENS = 8192


@dataclass(frozen=True)
class ConfigTarget:
    """How to build one model instance.

    Read once when the model is added to a registry; there is no hot reload.
    An empty ``api_key`` is resolved from the provider's environment variable
    (``OPENAI_API_KEY``, ``ANTHROPIC_API_KEY``, ``GEMINI_API_KEY``). Adapters,
    not this class, reject a missing key, so test doubles need none.

    Example:
        target = ConfigTarget(provider="openai", model="gpt-4o")
    """

    provider: str
    model: str
    api_key: str = ""
    base_url: str | None = None
    #: Per-request timeout in seconds, enforced by the vendor's HTTP transport.
    request_timeout: float | None = None
    #: Default output cap for vendors that require one (Anthropic).
    max_tokens: int = DEFAULT_MAX_TOKENS
    #: Default sampling temperature when a request sets none.
    temperature: float | None = None
    #: Reasoning-effort thresholds for vendors that take an effort level
    #: (OpenAI). ``None`` uses the defaults in ``providers._utils``.
    low_effort_max_budget: int | None = None
    high_effort_min_budget: int | None = None
    #: Google Cloud project and region for the Vertex AI backend.
    project_id: str = ""
    location: str = ""

    def __post_init__(self) -> None:
        """Validate fields and auto-resolve the API key."""
        if not isinstance(self.provider, str) or not self.provider:
            raise ConfigurationError(
                "provider is required",
                hint="Set provider='openai', 'anthropic', 'gemini' or 'vertexai'.",
            )
        if self.request_timeout is not None and self.request_timeout <= 0:
            raise ConfigurationError(
                f"request_timeout must be > 0, got {self.request_timeout}",
                hint="Omit request_timeout to use the vendor SDK default.",
            )
        if self.max_tokens <= 0:
            raise ConfigurationError(
                f"max_tokens must be > 0, got {self.max_tokens}",
            )
        if (
            self.low_effort_max_budget is not None
            and self.high_effort_min_budget is not None
            and self.low_effort_max_budget >= self.high_effort_min_budget
        ):
            raise ConfigurationError(
                "low_effort_max_budget must be below high_effort_min_budget",
                hint="For example low_effort_max_budget=1000, "
                "high_effort_min_budget=10000.",
            )

        if not self.api_key:
            env_var = API_KEY_ENV_VARS.get(self.provider)
            if env_var is not None:
                object.__setattr__(self, "api_key", os.environ.get(env_var, ""))

    def __str__(self) -> str:
        """Return a redacted, developer-friendly representation."""
        return (
            f"ConfigTarget(provider={self.provider!r}, model={self.model!r}, "
            f"api_key={'[REDACTED]' if self.api_key else None}, "
            f"base_url={self.base_url!r})"
        )

    __repr__ = __str__

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> ConfigTarget:
        """Build a target from a plain mapping, rejecting unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigurationError(
                f"Unknown model config keys: {', '.join(unknown)}",
                hint=f"Allowed keys: {', '.join(sorted(known))}.",
            )
        if "provider" not in data or "model" not in data:
            raise ConfigurationError(
                "Model config needs 'provider' and 'model'",
            )
        return cls(**dict(data))


@dataclass(frozen=True)
class RegistryConfig:
    """Named model targets to load into a registry."""

    targets: dict[str, ConfigTarget] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> RegistryConfig:
        """Build from ``{"targets": {name: {...}}}`` or ``{name: {...}}``."""
        raw_targets = data.get("targets", data)
        if not isinstance(raw_targets, dict):
            raise ConfigurationError(
                "targets must be a mapping of model name to config",
                hint="Use {'targets': {'default': {'provider': ..., 'model': ...}}}.",
            )
        targets: dict[str, ConfigTarget] = {}
        for name, raw in raw_targets.items():
            if isinstance(raw, ConfigTarget):
                targets[name] = raw
            elif isinstance(raw, dict):
                targets[name] = ConfigTarget.from_mapping(raw)
            else:
                raise ConfigurationError(
                    f"Config for model {name!r} must be a mapping",
                )
        return cls(targets=targets)
