"""Provider protocol: minimal interface for image generation APIs."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from aster.providers.models import ProviderRequest, ProviderResponse


@runtime_checkable
class Provider(Protocol):
    """One generation call per ``generate``; failures raise classified APIErrors.

    Implementations raise ``SafetyBlockedError`` for content-policy refusals,
    ``NoContentError`` when a response carries neither image nor text, and
    ``TransientError`` for HTTP, transport and envelope failures.
    """

    async def generate(self, request: ProviderRequest) -> ProviderResponse:
        """Generate images (and/or text) for one task slot."""
        ...

    async def aclose(self) -> None:
        """Release client resources."""
        ...
