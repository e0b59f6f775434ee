"""Shared provider-side error helpers.

Providers map SDK and transport exceptions into classified APIErrors so the
dispatcher can log and count failures without brittle substring matching.
"""

from __future__ import annotations

import asyncio

from aster.errors import APIError, RateLimitError, TransientError, _walk_exception_chain


def extract_status_code(exc: BaseException) -> int | None:
    """Walk the exception chain to find an HTTP status code."""
    for e in _walk_exception_chain(exc):
        for attr in ("status_code", "code", "status"):
            value = getattr(e, attr, None)
            if isinstance(value, int) and 100 <= value <= 599:
                return value
        response = getattr(e, "response", None)
        value = getattr(response, "status_code", None)
        if isinstance(value, int) and 100 <= value <= 599:
            return value
    return None



def _auth_hint(provider: str, status_code: int | None, cause_message: str) -> str | None:
    """Generate a hint for auth errors where naming the env var is useful."""
    cause_lower = cause_message.lower()
    if status_code in {401, 403} or (
        status_code == 400 and ("api key" in cause_lower or "api_key" in cause_lower)
    ):
        env_var = "OPENAI_API_KEY" if provider == "openai" else "GEMINI_API_KEY"
        return f"Check credentials/permissions (try setting {env_var} or api_key=...)."
    return None


def wrap_provider_error(
    exc: BaseException,
    *,
    provider: str,
    phase: str = "generate",
    message: str | None = None,
) -> APIError:
    """Map provider SDK and transport exceptions into a classified APIError."""
    if isinstance(exc, asyncio.CancelledError):
        raise exc

    # Already classified: fill in missing context only.
    if isinstance(exc, APIError):
        if exc.provider is None:
            exc.provider = provider
        if exc.phase is None:
            exc.phase = phase
        return exc

    status_code = extract_status_code(exc)
    cause = str(exc) or type(exc).__name__

    err_cls: type[APIError] = RateLimitError if status_code == 429 else TransientError
    msg = message or f"{provider} {phase} failed"
    status_note = f" (status={status_code})" if isinstance(status_code, int) else ""
    return err_cls(
        f"{msg}{status_note}: {cause}",
        hint=_auth_hint(provider, status_code, cause),
        status_code=status_code,
        provider=provider,
        phase=phase,
    )
