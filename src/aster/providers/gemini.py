"""Gemini provider implementation.

Two transports share one wire shape: the google-genai SDK, and a raw
``:generateContent`` POST via httpx when a proxy base URL is configured.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
from enum import Enum
import json
import logging
from typing import Any
from urllib.parse import urlsplit, urlunsplit

import httpx

from aster.errors import APIError, NoContentError, SafetyBlockedError, TransientError
from aster.images import ImageInput
from aster.providers._errors import wrap_provider_error
from aster.providers.models import InlineImage, ProviderRequest, ProviderResponse

logger = logging.getLogger(__name__)

SAFETY_FINISH_REASONS = frozenset({"SAFETY", "IMAGE_SAFETY"})
DEFAULT_API_VERSION = "v1beta"
PROXY_TIMEOUT_S = 300.0


class GeminiProvider:
    """Google Gemini image generation provider."""

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout_s: float = PROXY_TIMEOUT_S,
    ) -> None:
        """Create provider with an API key and an optional proxy base URL."""
        self.api_key = api_key
        self.base_url = base_url.strip() if base_url and base_url.strip() else None
        self._transport = transport
        self._timeout_s = timeout_s
        self._client: Any = None

    @property
    def uses_proxy(self) -> bool:
        return self.base_url is not None

    def _get_client(self) -> Any:
        """Lazy-initialize the Gemini SDK client."""
        if self._client is None:
            try:
                from google import genai
            except ImportError as e:
                raise APIError(
                    "google-genai package not installed",
                    hint="pip install google-genai",
                ) from e
            self._client = genai.Client(api_key=self.api_key)
        return self._client

    async def generate(self, request: ProviderRequest) -> ProviderResponse:
        """Run one generateContent call and classify the outcome."""
        try:
            if self.base_url is not None:
                return await self._generate_via_proxy(request, self.base_url)
            return await self._generate_via_sdk(request)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise wrap_provider_error(
                e,
                provider="gemini",
                phase="generate",
                message="Gemini generate failed",
            ) from e

    async def _generate_via_sdk(self, request: ProviderRequest) -> ProviderResponse:
        client = self._get_client()
        from google.genai import types

        parts: list[Any] = []
        for p in request.parts:
            if isinstance(p, ImageInput):
                parts.append(types.Part.from_bytes(data=p.raw_bytes(), mime_type=p.mime_type))
            else:
                parts.append(types.Part.from_text(text=p))

        image_config = build_image_config(request)
        config = (
            types.GenerateContentConfig(
                image_config=types.ImageConfig(
                    aspect_ratio=image_config.get("aspectRatio"),
                    image_size=image_config.get("imageSize"),
                )
            )
            if image_config
            else None
        )

        response = await client.aio.models.generate_content(
            model=request.model,
            contents=[types.Content(role="user", parts=parts)],
            config=config,
        )
        return self._parse_response(response)

    async def _generate_via_proxy(
        self, request: ProviderRequest, base_url: str
    ) -> ProviderResponse:
        url = build_proxy_endpoint(base_url, request.model)
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
            "x-goog-api-key": self.api_key,
        }
        body = build_wire_body(request)
        logger.debug("Gemini proxy generate: %s", url)

        async with httpx.AsyncClient(
            timeout=self._timeout_s, transport=self._transport
        ) as client:
            resp = await client.post(url, params={"key": self.api_key}, headers=headers, json=body)

        if not resp.is_success:
            raise TransientError(
                f"Gemini proxy returned HTTP {resp.status_code}: {_error_message(resp)}",
                status_code=resp.status_code,
                provider="gemini",
                phase="generate",
            )
        try:
            payload = resp.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise TransientError(
                "Gemini proxy returned malformed JSON",
                status_code=resp.status_code,
                provider="gemini",
                phase="generate",
            ) from e
        return self._parse_payload(payload)

    def _parse_response(self, response: Any) -> ProviderResponse:
        """Parse an SDK ``GenerateContentResponse``."""
        candidates = getattr(response, "candidates", None) or []
        if not candidates:
            feedback = getattr(response, "prompt_feedback", None)
            block_reason = _enum_name(getattr(feedback, "block_reason", None))
            if block_reason:
                raise SafetyBlockedError(
                    f"Prompt blocked by safety filters ({block_reason})",
                    provider="gemini",
                )
            raise NoContentError("No candidate returned from Gemini", provider="gemini")

        candidate = candidates[0]
        finish_reason = _enum_name(getattr(candidate, "finish_reason", None))
        _raise_for_safety(finish_reason)

        images: list[InlineImage] = []
        texts: list[str] = []
        content = getattr(candidate, "content", None)
        for part in getattr(content, "parts", None) or []:
            if getattr(part, "thought", False):
                continue
            inline = getattr(part, "inline_data", None)
            data = getattr(inline, "data", None) if inline is not None else None
            if data:
                if isinstance(data, str):
                    data = base64.b64decode(data)
                images.append(
                    InlineImage(data=bytes(data), mime_type=inline.mime_type or "image/png")
                )
                continue
            text = getattr(part, "text", None)
            if isinstance(text, str) and text:
                texts.append(text)

        return _finish(images, texts, finish_reason)

    def _parse_payload(self, payload: Any) -> ProviderResponse:
        """Parse a REST ``generateContent`` JSON envelope."""
        if not isinstance(payload, dict):
            raise TransientError(
                "Gemini proxy returned an unexpected JSON envelope", provider="gemini"
            )
        if isinstance(payload.get("error"), dict):
            err = payload["error"]
            status = err.get("code")
            raise TransientError(
                f"Gemini proxy error: {err.get('message', 'unknown error')}",
                status_code=status if isinstance(status, int) else None,
                provider="gemini",
            )

        candidates = payload.get("candidates")
        if not isinstance(candidates, list) or not candidates:
            feedback = payload.get("promptFeedback")
            block_reason = feedback.get("blockReason") if isinstance(feedback, dict) else None
            if block_reason:
                raise SafetyBlockedError(
                    f"Prompt blocked by safety filters ({block_reason})",
                    provider="gemini",
                )
            raise NoContentError("No candidate returned from Gemini", provider="gemini")

        candidate = candidates[0] if isinstance(candidates[0], dict) else {}
        finish_reason = candidate.get("finishReason")
        finish_reason = finish_reason if isinstance(finish_reason, str) else None
        _raise_for_safety(finish_reason)

        images: list[InlineImage] = []
        texts: list[str] = []
        content = candidate.get("content")
        parts = content.get("parts") if isinstance(content, dict) else None
        for part in parts if isinstance(parts, list) else []:
            if not isinstance(part, dict) or part.get("thought"):
                continue
            inline = part.get("inlineData") or part.get("inline_data")
            if isinstance(inline, dict) and inline.get("data"):
                try:
                    data = base64.b64decode(inline["data"], validate=True)
                except (binascii.Error, ValueError, TypeError) as e:
                    raise TransientError(
                        "Gemini proxy returned undecodable image data", provider="gemini"
                    ) from e
                mime_type = inline.get("mimeType") or inline.get("mime_type") or "image/png"
                images.append(InlineImage(data=data, mime_type=mime_type))
                continue
            text = part.get("text")
            if isinstance(text, str) and text:
                texts.append(text)

        return _finish(images, texts, finish_reason)

    async def aclose(self) -> None:
        """Close underlying SDK client resources."""
        client = self._client
        if client is None:
            return
        self._client = None
        aclose = getattr(getattr(client, "aio", None), "aclose", None)
        if callable(aclose):
            await aclose()


def build_image_config(request: ProviderRequest) -> dict[str, str]:
    """Return REST-style image options, omitting defaults."""
    image_config: dict[str, str] = {}
    if request.aspect_ratio and request.aspect_ratio != "Auto":
        image_config["aspectRatio"] = request.aspect_ratio
    if request.resolution in ("1K", "2K", "4K"):
        image_config["imageSize"] = request.resolution
    return image_config


def build_wire_body(request: ProviderRequest) -> dict[str, Any]:
    """Build the REST ``generateContent`` body for *request*."""
    parts: list[dict[str, Any]] = []
    for p in request.parts:
        if isinstance(p, ImageInput):
            parts.append({"inlineData": {"mimeType": p.mime_type, "data": p.data}})
        else:
            parts.append({"text": p})

    generation_config: dict[str, Any] = {}
    image_config = build_image_config(request)
    if image_config:
        generation_config["imageConfig"] = image_config

    return {
        "contents": [{"role": "user", "parts": parts}],
        "generationConfig": generation_config,
    }


def build_proxy_endpoint(base_url: str, model: str) -> str:
    """Normalize a proxy base URL into a full ``:generateContent`` endpoint.

    - ``.../models/{m}:generateContent`` is used unchanged.
    - A path already naming a model gets ``:generateContent`` appended.
    - Anything else gets ``/models/{model}:generateContent`` appended, with
      ``/v1beta`` inserted first when the base has no path at all.
    """
    scheme, netloc, path, query, fragment = urlsplit(base_url.strip())
    path = path.rstrip("/")

    if path.endswith(":generateContent"):
        pass
    elif "/models/" in f"{path}/" and not path.endswith("/models"):
        path = f"{path}:generateContent"
    else:
        if path.endswith("/models"):
            path = path[: -len("/models")]
        if not path:
            path = f"/{DEFAULT_API_VERSION}"
        path = f"{path}/models/{model}:generateContent"

    return urlunsplit((scheme, netloc, path, query, fragment))


def _raise_for_safety(finish_reason: str | None) -> None:
    if finish_reason and finish_reason.upper() in SAFETY_FINISH_REASONS:
        raise SafetyBlockedError(
            f"Content blocked by safety filters (finish_reason={finish_reason})",
            provider="gemini",
        )


def _finish(
    images: list[InlineImage], texts: list[str], finish_reason: str | None
) -> ProviderResponse:
    response = ProviderResponse(images=images, texts=texts, finish_reason=finish_reason)
    if not response.has_content:
        raise NoContentError(
            f"Gemini response had no image or text (finish_reason={finish_reason})",
            provider="gemini",
        )
    return response


def _enum_name(value: Any) -> str | None:
    """Extract a stable string from SDK enums or plain strings."""
    if value is None:
        return None
    if isinstance(value, Enum):
        return str(value.name)
    if isinstance(value, str):
        return value or None
    return str(value)


def _error_message(resp: httpx.Response) -> str:
    try:
        payload = resp.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return resp.text[:200] or resp.reason_phrase
    if isinstance(payload, dict) and isinstance(payload.get("error"), dict):
        message = payload["error"].get("message")
        if isinstance(message, str) and message:
            return message
    return resp.text[:200] or resp.reason_phrase
