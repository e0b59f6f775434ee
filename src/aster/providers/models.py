"""Domain models for the provider transport layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from aster.request import Part


@dataclass(frozen=True)
class ProviderRequest:
    """A unified request payload for one image generation call."""

    model: str
    parts: tuple[Part, ...]
    aspect_ratio: str | None = None
    resolution: str | None = None


@dataclass(frozen=True)
class InlineImage:
    """A generated image returned inline by the provider."""

    data: bytes
    mime_type: str


@dataclass
class ProviderResponse:
    """A standardized response from one generation call."""

    images: list[InlineImage] = field(default_factory=list)
    texts: list[str] = field(default_factory=list)
    finish_reason: str | None = None

    @property
    def has_content(self) -> bool:
        return bool(self.images or self.texts)
