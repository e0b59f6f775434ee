"""Test helpers (small, reusable doubles).

Keep this file tiny and purpose-built: it exists to prevent test suites from
growing lots of one-off provider subclasses as coverage expands.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

from aster.cancel import CancelToken
from aster.config import ProviderConfig, Settings
from aster.dispatch import BatchEvents
from aster.models import GeneratedImage
from aster.providers.models import InlineImage, ProviderRequest, ProviderResponse
from aster.request import BatchRequest, normalize_request


def image_response(n: int = 1, *, text: str | None = None) -> ProviderResponse:
    """A successful response carrying *n* tiny PNG images."""
    return ProviderResponse(
        images=[InlineImage(data=b"\x89PNG" + bytes([i]), mime_type="image/png") for i in range(n)],
        texts=[text] if text else [],
        finish_reason="STOP",
    )


def make_request(batch_size: int = 1, prompt: str = "a red bicycle") -> BatchRequest:
    settings = Settings(ProviderConfig(use_mock=True), batch_size=batch_size)
    return normalize_request(prompt, [], None, settings)


@dataclass
class ScriptedProvider:
    """Provider that returns a scripted sequence of results/exceptions.

    Once the script runs out, every call returns ``default`` (or raises it).
    """

    script: list[ProviderResponse | BaseException] = field(default_factory=list)
    default: ProviderResponse | BaseException | None = None
    generate_calls: int = 0
    requests: list[ProviderRequest] = field(default_factory=list)
    closed: bool = False

    async def generate(self, request: ProviderRequest) -> ProviderResponse:
        self.generate_calls += 1
        self.requests.append(request)
        item = self.script.pop(0) if self.script else self.default
        if item is None:
            item = image_response()
        if isinstance(item, BaseException):
            raise item
        return item

    async def aclose(self) -> None:
        self.closed = True


@dataclass
class GateProvider:
    """Provider whose calls block until released, for concurrency tests.

    The first ``free_calls`` calls return immediately; later calls wait on
    ``release``. ``in_flight``/``max_in_flight`` track concurrent calls.
    """

    free_calls: int = 0
    release: asyncio.Event = field(default_factory=asyncio.Event)
    started: asyncio.Event = field(default_factory=asyncio.Event)
    generate_calls: int = 0
    cancelled_calls: int = 0
    in_flight: int = 0
    max_in_flight: int = 0

    async def generate(self, request: ProviderRequest) -> ProviderResponse:
        _ = request
        self.generate_calls += 1
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.generate_calls > self.free_calls:
                self.started.set()
                await self.release.wait()
            else:
                # Yield so other workers interleave.
                await asyncio.sleep(0)
            return image_response()
        except asyncio.CancelledError:
            self.cancelled_calls += 1
            raise
        finally:
            self.in_flight -= 1

    async def aclose(self) -> None:
        return None


class InstantToken(CancelToken):
    """CancelToken whose backoff sleeps return immediately and are recorded."""

    def __init__(self) -> None:
        super().__init__()
        self.delays: list[float] = []

    async def sleep(self, delay: float) -> None:
        self.raise_if_cancelled()
        self.delays.append(delay)
        await asyncio.sleep(0)
        self.raise_if_cancelled()


@dataclass
class RecordingEvents:
    """Collects everything a batch streams out."""

    images: list[GeneratedImage] = field(default_factory=list)
    texts: list[str] = field(default_factory=list)
    progress: list[tuple[int, int]] = field(default_factory=list)

    def on_image(self, image: GeneratedImage) -> None:
        self.images.append(image)

    def on_text(self, text: str) -> None:
        self.texts.append(text)

    def on_progress(self, completed: int, total: int) -> None:
        self.progress.append((completed, total))

    def events(self) -> BatchEvents:
        return BatchEvents(
            on_image=self.on_image,
            on_text=self.on_text,
            on_progress=self.on_progress,
        )
