"""Mock provider for offline runs and tests."""

from __future__ import annotations

import base64

from aster.providers.models import InlineImage, ProviderRequest, ProviderResponse

# 1x1 transparent PNG.
_PIXEL_PNG = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=="
)


class MockProvider:
    """Mock provider returning one deterministic image per call."""

    def __init__(self) -> None:
        self.calls = 0

    async def generate(self, request: ProviderRequest) -> ProviderResponse:
        """Return a 1x1 PNG, echoing the prompt text when there is one."""
        self.calls += 1
        text = next((p for p in request.parts if isinstance(p, str)), "")
        return ProviderResponse(
            images=[InlineImage(data=_PIXEL_PNG, mime_type="image/png")],
            texts=[f"echo: {text[:100]}"] if text else [],
            finish_reason="STOP",
        )

    async def aclose(self) -> None:
        """Nothing to release."""
