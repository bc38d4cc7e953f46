"""Shared utilities for provider implementations."""

from __future__ import annotations

from copy import deepcopy
from datetime import UTC, datetime
import json
from typing import TYPE_CHECKING, Any

from switchboard.config import API_KEY_ENV_VARS
from switchboard.errors import ConfigurationError, ValidationError

if TYPE_CHECKING:
    from switchboard.config import ConfigTarget

#: Thinking budgets at or below this map to "low" effort.
LOW_EFFORT_MAX_BUDGET = 1000
#: Thinking budgets at or above this map to "high" effort.
HIGH_EFFORT_MIN_BUDGET = 10000


def effort_for_budget(
    budget: int,
    *,
    low_max: int | None = None,
    high_min: int | None = None,
) -> str:
    """Map a thinking-token budget onto a three-tier effort level.

    The thresholds are heuristics, not vendor-documented values:
    ``budget <= low_max`` is ``"low"``, ``budget >= high_min`` is ``"high"``,
    anything between is ``"medium"``. Omitted thresholds fall back to
    ``LOW_EFFORT_MAX_BUDGET`` and ``HIGH_EFFORT_MIN_BUDGET`` as they are at
    call time.
    """
    if low_max is None:
        low_max = LOW_EFFORT_MAX_BUDGET
    if high_min is None:
        high_min = HIGH_EFFORT_MIN_BUDGET
    if budget <= low_max:
        return "low"
    if budget >= high_min:
        return "high"
    return "medium"


def require_credentials(config: ConfigTarget, *, provider: str) -> None:
    """Reject targets without an API key or model name."""
    if not config.api_key:
        env_var = API_KEY_ENV_VARS.get(provider, "the provider API key")
        raise ConfigurationError(
            f"API key required for {provider}",
            hint=f"Set {env_var} environment variable or pass api_key=...",
        )
    if not config.model:
        raise ConfigurationError(
            f"Model name required for {provider}",
            hint="Set model=... on the ConfigTarget.",
        )


def to_strict_schema(schema: dict[str, Any]) -> dict[str, Any]:
    """Normalize a JSON schema for strict structured-output requirements.

    Ensures that for all 'object' types:
    1. additionalProperties is False
    2. All defined properties are listed in 'required'
    """
    normalized = deepcopy(schema)

    def walk(node: Any) -> Any:
        if isinstance(node, list):
            return [walk(item) for item in node]
        if not isinstance(node, dict):
            return node

        updated: dict[str, Any] = {}
        for key, value in node.items():
            updated[key] = walk(value)

        if updated.get("type") == "object" or "properties" in updated:
            properties = updated.get("properties", {})
            if isinstance(properties, dict):
                updated["additionalProperties"] = False
                if "required" not in updated:
                    updated["required"] = list(properties.keys())

        return updated

    result = walk(normalized)
    if not isinstance(result, dict):
        raise ValidationError("Invalid response schema: expected object schema")
    return result


def decode_tool_arguments(arguments: str) -> dict[str, Any]:
    """Decode tool-call arguments for vendors that want an object, not text."""
    if not arguments:
        return {}
    try:
        decoded = json.loads(arguments)
    except json.JSONDecodeError as e:
        raise ValidationError(f"Malformed tool call arguments: {arguments!r}") from e
    if not isinstance(decoded, dict):
        raise ValidationError("Tool call arguments must decode to a JSON object")
    return decoded


def to_epoch_datetime(value: Any) -> datetime | None:
    """Convert epoch seconds to an aware UTC datetime; pass datetimes through."""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    if isinstance(value, (int, float)) and value > 0:
        return datetime.fromtimestamp(value, tz=UTC)
    return None
