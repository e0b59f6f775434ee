"""Aster: batch image generation with bounded concurrency.

Public API:
    - start_batch(): Stream one batch's results to callbacks
    - generate_images(): Run a batch and collect its results
    - Settings / ProviderConfig: Configuration dataclasses
    - CancelToken: Cooperative cancellation for a running batch
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import logging
from typing import TYPE_CHECKING

from aster.cancel import CancelToken
from aster.config import ProviderConfig, Settings
from aster.dispatch import BatchEvents, BatchSummary, run_batch
from aster.errors import (
    APIError,
    AsterError,
    ConfigurationError,
    NoContentError,
    RateLimitError,
    SafetyBlockedError,
    TransientError,
    ValidationError,
)
from aster.images import ImageInput
from aster.models import GeneratedImage, Message, UploadedImage
from aster.request import normalize_request
from aster.retry import RetryPolicy

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from aster.providers.base import Provider
    from aster.request import FreshImage

try:
    from importlib.metadata import PackageNotFoundError, version

    __version__ = version("aster-imagegen")
except PackageNotFoundError:
    __version__ = "0.0.0+unknown"

# Library-level NullHandler: stay silent unless the consumer configures logging.
logging.getLogger("aster").addHandler(logging.NullHandler())

logger = logging.getLogger(__name__)


@dataclass
class BatchResult:
    """Everything one batch produced, in arrival order."""

    images: list[GeneratedImage] = field(default_factory=list)
    texts: list[str] = field(default_factory=list)
    summary: BatchSummary | None = None

    @property
    def successes(self) -> list[GeneratedImage]:
        return [img for img in self.images if img.ok]


async def start_batch(
    api_key: str | None,
    prompt: str | None,
    prior_messages: Sequence[Message],
    settings: Settings,
    fresh_images: Iterable[FreshImage] | None,
    events: BatchEvents,
    cancel: CancelToken | None = None,
    *,
    policy: RetryPolicy | None = None,
) -> BatchSummary:
    """Generate ``settings.batch_size`` images, streaming results to *events*.

    Args:
        api_key: Key for this batch. Takes precedence over the configured or
            environment key, and may be the only key supplied.
        prompt: Optional prompt text.
        prior_messages: Earlier turns; selected model images become context.
        settings: Batch size, aspect ratio, resolution and provider config.
        fresh_images: Images attached to this prompt.
        events: ``on_image`` / ``on_text`` / ``on_progress`` callbacks.
        cancel: Token to stop the batch early.
        policy: Retry policy override.

    Returns:
        BatchSummary with per-outcome counts and final state.

    Raises:
        ValidationError: Before any call is made, when inputs are unusable.
        ConfigurationError: When no API key is available for a real provider.

    Example:
        settings = Settings(ProviderConfig(provider="gemini"), batch_size=4)
        summary = await start_batch(
            user_api_key, "A lighthouse at dusk", [], settings, None,
            BatchEvents(on_image=print),
        )
    """
    provider_config = settings.provider_config.with_api_key(api_key)
    if provider_config is not settings.provider_config:
        settings = Settings(
            provider_config=provider_config,
            batch_size=settings.batch_size,
            aspect_ratio=settings.aspect_ratio,
            resolution=settings.resolution,
        )

    request = normalize_request(prompt, prior_messages, fresh_images, settings)
    provider = _get_provider(provider_config)

    try:
        return await run_batch(request, provider, events, cancel=cancel, policy=policy)
    finally:
        try:
            await provider.aclose()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            # Cleanup should never mask the primary failure.
            logger.warning("Provider cleanup failed: %s", exc)


async def generate_images(
    prompt: str | None = None,
    *,
    settings: Settings,
    fresh_images: Iterable[FreshImage] | None = None,
    prior_messages: Sequence[Message] = (),
    cancel: CancelToken | None = None,
    policy: RetryPolicy | None = None,
) -> BatchResult:
    """Run one batch and collect every event into a BatchResult.

    Example:
        settings = Settings(ProviderConfig(use_mock=True), batch_size=3)
        result = await generate_images("A red bicycle", settings=settings)
        print(len(result.successes))
    """
    result = BatchResult()
    events = BatchEvents(on_image=result.images.append, on_text=result.texts.append)
    result.summary = await start_batch(
        None,
        prompt,
        prior_messages,
        settings,
        fresh_images,
        events,
        cancel,
        policy=policy,
    )
    return result


def _get_provider(config: ProviderConfig) -> Provider:
    """Get the appropriate provider based on configuration."""
    if config.use_mock:
        from aster.providers.mock import MockProvider

        return MockProvider()

    api_key = config.require_api_key()

    if config.provider == "openai":
        from aster.providers.openai import OpenAICompatibleProvider

        return OpenAICompatibleProvider(api_key, base_url=config.base_url)

    from aster.providers.gemini import GeminiProvider

    return GeminiProvider(api_key, base_url=config.base_url)


__all__ = [
    "APIError",
    "AsterError",
    "BatchEvents",
    "BatchResult",
    "BatchSummary",
    "CancelToken",
    "ConfigurationError",
    "GeneratedImage",
    "ImageInput",
    "Message",
    "NoContentError",
    "ProviderConfig",
    "RateLimitError",
    "RetryPolicy",
    "SafetyBlockedError",
    "Settings",
    "TransientError",
    "UploadedImage",
    "ValidationError",
    "generate_images",
    "start_batch",
]
