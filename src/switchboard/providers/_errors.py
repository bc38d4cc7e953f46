"""Shared provider-side error helpers.

Adapters wrap SDK exceptions with ``wrap_provider_error`` so callers can
classify failures (rate limit, auth, bad request, ...) by exception type
without importing vendor SDKs.
"""

from __future__ import annotations

import asyncio
from typing import Any

import httpx

from switchboard.config import API_KEY_ENV_VARS
from switchboard.errors import (
    APIError,
    AuthenticationError,
    BadRequestError,
    InsufficientCreditsError,
    RateLimitError,
    ServiceUnavailableError,
    _walk_exception_chain,
)

RETRYABLE_STATUS_CODES: frozenset[int] = frozenset(
    {408, 409, 429, 500, 502, 503, 504, 529}
)

_STATUS_CLASSES: dict[int, type[APIError]] = {
    400: BadRequestError,
    401: AuthenticationError,
    402: InsufficientCreditsError,
    403: AuthenticationError,
    429: RateLimitError,
    500: ServiceUnavailableError,
    503: ServiceUnavailableError,
    529: ServiceUnavailableError,
}


def extract_status_code(exc: BaseException) -> int | None:
    """Walk the exception chain to find an HTTP status code."""
    for e in _walk_exception_chain(exc):
        for attr in ("status_code", "status", "code"):
            value = getattr(e, attr, None)
            if isinstance(value, int) and 100 <= value <= 599:
                return value
        response = getattr(e, "response", None)
        value = getattr(response, "status_code", None)
        if isinstance(value, int) and 100 <= value <= 599:
            return value
    return None


def extract_retry_after_s(exc: BaseException) -> float | None:
    """Walk the exception chain to find a Retry-After delay in seconds."""
    for e in _walk_exception_chain(exc):
        value = getattr(e, "retry_after", None)
        if isinstance(value, (int, float)) and value >= 0:
            return float(value)

        response = getattr(e, "response", None)
        headers: Any = getattr(response, "headers", None)
        if headers is None:
            continue
        try:
            raw = headers.get("Retry-After")
        except Exception:
            raw = None
        if isinstance(raw, str) and raw.strip():
            try:
                seconds = float(raw)
            except ValueError:
                continue
            if seconds >= 0:
                return seconds
    return None


def _is_timeout(exc: BaseException) -> bool:
    for e in _walk_exception_chain(exc):
        if isinstance(e, (TimeoutError, httpx.TimeoutException)):
            return True
    return False


def _auth_hint(provider: str, status_code: int | None) -> str | None:
    if status_code not in {401, 403}:
        return None
    env_var = API_KEY_ENV_VARS.get(provider, "the provider API key")
    return f"Check credentials/permissions (try setting {env_var} or api_key=...)."


def wrap_provider_error(
    exc: BaseException,
    *,
    provider: str,
    phase: str,
    message: str | None = None,
    hint: str | None = None,
) -> APIError:
    """Map a vendor SDK exception into an ``APIError`` subclass.

    The subclass follows the HTTP status (429 → ``RateLimitError``, 401/403 →
    ``AuthenticationError``, 402 → ``InsufficientCreditsError``, 400 →
    ``BadRequestError``, 500/503/529 → ``ServiceUnavailableError``); timeouts
    become ``ServiceUnavailableError``. Cancellation is re-raised.
    """
    if isinstance(exc, asyncio.CancelledError):
        raise exc

    # Already wrapped: fill in missing context only.
    if isinstance(exc, APIError):
        if exc.provider is None:
            exc.provider = provider
        if exc.phase is None:
            exc.phase = phase
        if hint is not None and exc.hint is None:
            exc.hint = hint
        return exc

    status_code = extract_status_code(exc)
    retry_after_s = extract_retry_after_s(exc)

    err_cls: type[APIError] = APIError
    if isinstance(status_code, int) and status_code in _STATUS_CLASSES:
        err_cls = _STATUS_CLASSES[status_code]
    elif status_code is None and _is_timeout(exc):
        err_cls = ServiceUnavailableError

    retryable = retry_after_s is not None or err_cls is ServiceUnavailableError
    if isinstance(status_code, int) and status_code in RETRYABLE_STATUS_CODES:
        retryable = True
    elif any(isinstance(e, httpx.RequestError) for e in _walk_exception_chain(exc)):
        retryable = True

    msg = message or f"{provider} {phase} failed"
    status_note = f" (status={status_code})" if isinstance(status_code, int) else ""
    cause = str(exc)
    return err_cls(
        f"{msg}{status_note}: {cause}" if cause else f"{msg}{status_note}",
        hint=hint if hint is not None else _auth_hint(provider, status_code),
        retryable=retryable,
        status_code=status_code,
        retry_after_s=retry_after_s,
        provider=provider,
        phase=phase,
    )
