"""OpenAI-compatible provider implementation.

Talks to any chat-completions endpoint that can return images, passing
image options through ``extra_body`` since they are outside the standard
chat schema.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
import re
from typing import Any

import httpx

from aster.errors import APIError, NoContentError, SafetyBlockedError, TransientError
from aster.images import ImageInput
from aster.providers._errors import wrap_provider_error
from aster.providers.models import InlineImage, ProviderRequest, ProviderResponse

logger = logging.getLogger(__name__)

SAFETY_FINISH_REASONS = frozenset({"content_filter"})
IMAGE_FETCH_TIMEOUT_S = 60.0

_DATA_URI_RE = re.compile(r"data:(image/[^;,\s]+);base64,([A-Za-z0-9+/=]+)")


class OpenAICompatibleProvider:
    """Chat-completions provider for OpenAI-compatible image endpoints."""

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize with an API key and an optional custom base URL."""
        self.api_key = api_key
        self.base_url = base_url
        self._transport = transport
        self._client: Any = None

    def _get_client(self) -> Any:
        """Lazily initialize and return the OpenAI client."""
        if self._client is None:
            try:
                from openai import AsyncOpenAI
            except ImportError as e:
                raise APIError(
                    "openai package not installed",
                    hint="pip install openai",
                ) from e
            self._client = AsyncOpenAI(api_key=self.api_key, base_url=self.base_url)
        return self._client

    async def generate(self, request: ProviderRequest) -> ProviderResponse:
        """Run one chat completion and classify the outcome."""
        client = self._get_client()
        try:
            response = await client.chat.completions.create(
                model=request.model,
                messages=build_messages(request),
                extra_body=build_extra_body(request),
            )
            return await self._parse_response(response)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise wrap_provider_error(
                e,
                provider="openai",
                phase="generate",
                message="OpenAI-compatible generate failed",
            ) from e

    async def _parse_response(self, response: Any) -> ProviderResponse:
        """Extract images and text from the three known content shapes."""
        choices = getattr(response, "choices", None)
        if not choices:
            raise NoContentError("No choice returned from API", provider="openai")

        choice = choices[0]
        finish_reason = _get(choice, "finish_reason")
        if isinstance(finish_reason, str) and finish_reason.lower() in SAFETY_FINISH_REASONS:
            raise SafetyBlockedError(
                "Content blocked by safety filters (finish_reason=content_filter)",
                provider="openai",
            )

        message = _get(choice, "message")
        content = _get(message, "content") if message is not None else None

        images: list[InlineImage] = []
        texts: list[str] = []
        if isinstance(content, str):
            images.extend(_images_from_text(content))
            if not images and content.strip():
                texts.append(content)
        elif isinstance(content, list):
            for part in content:
                image_url = _get(part, "image_url")
                if image_url:
                    url = image_url if isinstance(image_url, str) else _get(image_url, "url")
                    if isinstance(url, str) and url:
                        images.append(await self._load_image(url))
                    continue
                text = _get(part, "text")
                if isinstance(text, str) and text:
                    texts.append(text)

        result = ProviderResponse(
            images=images,
            texts=texts,
            finish_reason=finish_reason if isinstance(finish_reason, str) else None,
        )
        if not result.has_content:
            raise NoContentError("No content in response", provider="openai")
        return result

    async def _load_image(self, url: str) -> InlineImage:
        """Decode a data URI, or download a remote image URL."""
        if url.startswith("data:"):
            found = _images_from_text(url)
            if not found:
                raise TransientError("Malformed image data URI in response", provider="openai")
            return found[0]

        async with httpx.AsyncClient(
            timeout=IMAGE_FETCH_TIMEOUT_S, transport=self._transport
        ) as client:
            resp = await client.get(url)
        if not resp.is_success:
            raise TransientError(
                f"Image download failed with HTTP {resp.status_code}",
                status_code=resp.status_code,
                provider="openai",
            )
        mime_type = resp.headers.get("content-type", "image/png").split(";")[0].strip()
        return InlineImage(data=resp.content, mime_type=mime_type or "image/png")

    async def aclose(self) -> None:
        """Close underlying async client resources."""
        client = self._client
        if client is None:
            return
        self._client = None
        await client.close()


def build_messages(request: ProviderRequest) -> list[dict[str, Any]]:
    """Build a single user message of mixed text and image_url parts."""
    content: list[dict[str, Any]] = []
    for p in request.parts:
        if isinstance(p, ImageInput):
            content.append({"type": "image_url", "image_url": {"url": p.to_data_uri()}})
        else:
            content.append({"type": "text", "text": p})
    return [{"role": "user", "content": content}]


def build_extra_body(request: ProviderRequest) -> dict[str, Any]:
    """Image options carried outside the standard chat schema."""
    extra: dict[str, Any] = {"modalities": ["image"]}
    if request.aspect_ratio and request.aspect_ratio != "Auto":
        extra["aspect_ratio"] = request.aspect_ratio
    if request.resolution:
        extra["resolution"] = request.resolution
    return extra


def _images_from_text(text: str) -> list[InlineImage]:
    images: list[InlineImage] = []
    for m in _DATA_URI_RE.finditer(text):
        try:
            data = base64.b64decode(m.group(2), validate=True)
        except (binascii.Error, ValueError):
            logger.debug("Skipping undecodable data URI in response text")
            continue
        images.append(InlineImage(data=data, mime_type=m.group(1)))
    return images


def _get(obj: Any, key: str) -> Any:
    """Read *key* from SDK objects and raw dicts alike."""
    if isinstance(obj, dict):
        return obj.get(key)
    return getattr(obj, key, None)
