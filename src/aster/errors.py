"""Exception hierarchy for Aster."""

from __future__ import annotations

from typing import TYPE_CHECKING, Literal

if TYPE_CHECKING:
    from collections.abc import Iterator

FailureKind = Literal["transient", "safety", "no_content"]


class AsterError(Exception):
    """Base exception for all Aster errors."""

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        super().__init__(message)
        self.hint = hint


class ConfigurationError(AsterError):
    """Configuration validation or resolution failed."""


class ValidationError(AsterError):
    """Batch input was rejected before any generation call was made."""


class APIError(AsterError):
    """A generation call failed.

    Providers raise one of the classified subclasses so the dispatcher can log
    and count failures without inspecting messages.
    """

    kind: FailureKind = "transient"

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        status_code: int | None = None,
        provider: str | None = None,
        phase: str | None = None,
        slot: int | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.status_code = status_code
        self.provider = provider
        self.phase = phase
        self.slot = slot


class TransientError(APIError):
    """HTTP, transport or envelope failure."""

    kind: FailureKind = "transient"


class RateLimitError(TransientError):
    """Rate limit exceeded (HTTP 429)."""


class SafetyBlockedError(APIError):
    """The provider refused the request on content-policy grounds."""

    kind: FailureKind = "safety"


class NoContentError(APIError):
    """A well-formed response carried neither image nor text."""

    kind: FailureKind = "no_content"


class BatchCancelled(AsterError):
    """Raised inside workers when the batch's cancel token has fired.

    Never escapes ``run_batch``; cancellation produces silence, not errors.
    """

    def __init__(self, message: str = "batch cancelled") -> None:
        super().__init__(message)


def _walk_exception_chain(exc: BaseException) -> Iterator[BaseException]:
    """Yield *exc* and its ``__cause__``/``__context__`` chain, with cycle protection."""
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
