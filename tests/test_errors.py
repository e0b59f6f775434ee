from __future__ import annotations

import pytest

from aster.errors import (
    APIError,
    AsterError,
    BatchCancelled,
    NoContentError,
    RateLimitError,
    SafetyBlockedError,
    TransientError,
)

pytestmark = pytest.mark.unit


def test_api_error_structured_metadata() -> None:
    err = APIError(
        "boom",
        hint="do this",
        status_code=429,
        provider="gemini",
        phase="generate",
        slot=3,
    )

    assert str(err) == "boom"
    assert err.hint == "do this"
    assert err.status_code == 429
    assert err.provider == "gemini"
    assert err.phase == "generate"
    assert err.slot == 3


def test_api_error_defaults_to_none() -> None:
    err = APIError("fail")
    assert err.hint is None
    assert err.status_code is None
    assert err.provider is None
    assert err.phase is None
    assert err.slot is None


@pytest.mark.parametrize(
    ("cls", "kind"),
    [
        (TransientError, "transient"),
        (RateLimitError, "transient"),
        (SafetyBlockedError, "safety"),
        (NoContentError, "no_content"),
    ],
)
def test_failure_kinds(cls: type[APIError], kind: str) -> None:
    err = cls("x")
    assert err.kind == kind
    assert isinstance(err, APIError)
    assert isinstance(err, AsterError)


def test_rate_limit_is_transient() -> None:
    assert isinstance(RateLimitError("slow down", status_code=429), TransientError)


def test_batch_cancelled_is_not_an_api_error() -> None:
    err = BatchCancelled()
    assert str(err) == "batch cancelled"
    assert not isinstance(err, APIError)
