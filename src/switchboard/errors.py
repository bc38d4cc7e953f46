"""Exception hierarchy for Switchboard."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator, Mapping


class SwitchboardError(Exception):
    """Base exception for all Switchboard errors."""

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        super().__init__(message)
        self.hint = hint


class ConfigurationError(SwitchboardError):
    """Configuration validation or resolution failed."""


class ValidationError(SwitchboardError):
    """A protocol value (message, content block, option) is malformed."""


class InternalError(SwitchboardError):
    """A Switchboard internal error (bug) or invariant violation."""


# =============================================================================
# Registry
# =============================================================================


class RegistryError(SwitchboardError):
    """A registry operation failed."""


class ModelAlreadyExistsError(RegistryError):
    """A model with the requested name is already registered."""


class ModelNotFoundError(RegistryError):
    """No model is registered under the requested name."""


class UnsupportedProviderError(RegistryError):
    """No factory is registered for the requested provider."""


class ModelCreationError(RegistryError):
    """A provider factory failed to construct a model."""


class ModelLoadError(RegistryError):
    """Bulk loading models from configuration failed."""


class ClientTypeError(RegistryError):
    """The raw vendor client is missing or not of the expected type."""


class ModelCloseError(RegistryError):
    """One or more models failed to close.

    ``failures`` maps each model name to its error and ``errors`` lists the
    errors alone; the message names every failing model.
    """

    def __init__(self, failures: Mapping[str, BaseException]) -> None:
        self.failures = dict(failures)
        self.errors = list(self.failures.values())
        joined = "; ".join(f"{name!r}: {e}" for name, e in self.failures.items())
        super().__init__(f"failed to close models: {joined}")


# =============================================================================
# Provider calls
# =============================================================================


class APIError(SwitchboardError):
    """A vendor call failed.

    Adapters attach the provider, the failing phase (``create``,
    ``generate``, ``stream``, ``batch``) and any HTTP metadata so callers can
    classify failures without importing vendor SDKs.
    """

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        retryable: bool | None = None,
        status_code: int | None = None,
        retry_after_s: float | None = None,
        provider: str | None = None,
        phase: str | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.retryable = retryable
        self.status_code = status_code
        self.retry_after_s = retry_after_s
        self.provider = provider
        self.phase = phase


class RateLimitError(APIError):
    """Rate limit exceeded (HTTP 429)."""


class AuthenticationError(APIError):
    """Credentials were rejected (HTTP 401/403)."""


class InsufficientCreditsError(APIError):
    """The account has no remaining credit (HTTP 402)."""


class BadRequestError(APIError):
    """The vendor rejected the request as malformed (HTTP 400)."""


class ServiceUnavailableError(APIError):
    """The vendor is unavailable, overloaded, or the call timed out."""


def _walk_exception_chain(exc: BaseException) -> Iterator[BaseException]:
    """Yield *exc* and its ``__cause__``/``__context__`` chain, skipping cycles."""
    seen: set[int] = set()
    stack: list[BaseException] = [exc]
    while stack:
        cur = stack.pop()
        if id(cur) in seen:
            continue
        seen.add(id(cur))
        yield cur

        cause = cur.__cause__
        if isinstance(cause, BaseException):
            stack.append(cause)
        context = cur.__context__
        if isinstance(context, BaseException):
            stack.append(context)
