"""Phase 1: Request normalization.

Builds the one outbound message a batch sends to every generation call:
text first, then prior selected images, then freshly uploaded images.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
import re
from typing import TYPE_CHECKING

from aster.config import MAX_IMAGE_BYTES
from aster.errors import ValidationError
from aster.images import ImageInput, parse_data_uri
from aster.models import UploadedImage

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from aster.config import Settings
    from aster.models import Message

logger = logging.getLogger(__name__)

Part = str | ImageInput
FreshImage = str | UploadedImage | ImageInput

_CN_NUMERALS = ("一", "二", "三", "四", "五", "六", "七", "八", "九", "十")
_CN_REFERENCE_RE = re.compile(r"图[一二三四五六七八九十\d]|第[一二三四五六七八九十\d]张")
_EN_REFERENCE_RE = re.compile(
    r"\b(?:image|img|picture|pic|photo)\s*#?\s*\d+\b"
    r"|\b(?:first|second|third|fourth|fifth|sixth|seventh|eighth|ninth|tenth"
    r"|\d+(?:st|nd|rd|th))\s+(?:image|picture|photo|pic)\b",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class BatchRequest:
    """Normalized batch request, shared read-only by all workers."""

    prompt: str | None
    prior_images: tuple[ImageInput, ...]
    fresh_images: tuple[ImageInput, ...]
    parts: tuple[Part, ...]
    settings: Settings

    @property
    def batch_size(self) -> int:
        return self.settings.batch_size

    @property
    def image_count(self) -> int:
        return len(self.prior_images) + len(self.fresh_images)


def normalize_request(
    prompt: str | None,
    prior_messages: Sequence[Message],
    fresh_images: Iterable[FreshImage] | None,
    settings: Settings,
    *,
    max_image_bytes: int = MAX_IMAGE_BYTES,
) -> BatchRequest:
    """Validate and normalize batch inputs into a BatchRequest.

    Args:
        prompt: Optional prompt text.
        prior_messages: Earlier conversation turns; selected model images are
            carried forward as context.
        fresh_images: Images attached to this prompt (data URIs,
            ``UploadedImage`` or ``ImageInput``).
        settings: Batch settings.
        max_image_bytes: Images estimated larger than this are dropped.

    Raises:
        ValidationError: If every supplied fresh image was rejected, or if no
            text and no image remains.
    """
    text = prompt.strip() if isinstance(prompt, str) else ""

    prior = tuple(_collect_prior_images(prior_messages, max_image_bytes))

    supplied = list(fresh_images or ())
    fresh: list[ImageInput] = []
    for idx, item in enumerate(supplied):
        image = _coerce_image(item, idx)
        if image is None:
            continue
        if not _within_size_limit(image, max_image_bytes, _label(item, idx)):
            continue
        fresh.append(image)

    if supplied and not fresh:
        raise ValidationError(
            "No valid images could be processed",
            hint="Check image format (base64 data URI) and size.",
        )

    images: tuple[ImageInput, ...] = (*prior, *fresh)
    parts: list[Part] = []
    if text:
        parts.append(add_image_legend(text, len(images)))
    parts.extend(images)

    if not parts:
        raise ValidationError(
            "At least one image or text prompt is required",
            hint="Pass a non-empty prompt or attach an image.",
        )

    return BatchRequest(
        prompt=text or None,
        prior_images=prior,
        fresh_images=tuple(fresh),
        parts=tuple(parts),
        settings=settings,
    )


def references_image_positions(text: str) -> bool:
    """Return True when *text* refers to images by ordinal position."""
    return bool(_CN_REFERENCE_RE.search(text) or _EN_REFERENCE_RE.search(text))


def add_image_legend(text: str, image_count: int) -> str:
    """Prefix an image-order legend when several images are referenced by position."""
    if image_count <= 1 or not references_image_positions(text):
        return text

    if _CN_REFERENCE_RE.search(text):
        labels = "、".join(
            f"图{_cn_numeral(n)}（第{n}张上传的图片）" for n in range(1, image_count + 1)
        )
        return f"参考图片说明：{labels}。\n\n{text}"

    labels = ", ".join(
        f"image {n} = the {_ordinal(n)} attached image" for n in range(1, image_count + 1)
    )
    return f"Image order: {labels}.\n\n{text}"


def _collect_prior_images(
    messages: Sequence[Message], max_image_bytes: int
) -> Iterable[ImageInput]:
    for msg in messages:
        selected = msg.selected_image()
        if selected is None or not selected.data:
            continue
        image = ImageInput.from_bytes(selected.data, selected.mime_type or "image/png")
        if _within_size_limit(image, max_image_bytes, f"selected image {selected.id}"):
            yield image


def _coerce_image(item: FreshImage, idx: int) -> ImageInput | None:
    if isinstance(item, ImageInput):
        return item
    if isinstance(item, UploadedImage):
        return parse_data_uri(item.data, image_id=item.id)
    return parse_data_uri(item, image_id=str(idx + 1))


def _within_size_limit(image: ImageInput, max_image_bytes: int, label: str) -> bool:
    size = image.estimated_size_bytes
    if size > max_image_bytes:
        logger.warning(
            "Dropping %s: too large (%.2fMB > %.2fMB)",
            label,
            size / (1024 * 1024),
            max_image_bytes / (1024 * 1024),
        )
        return False
    return True


def _label(item: FreshImage, idx: int) -> str:
    if isinstance(item, UploadedImage):
        return f"image {item.id}"
    return f"image {idx + 1}"


def _cn_numeral(n: int) -> str:
    return _CN_NUMERALS[n - 1] if 1 <= n <= len(_CN_NUMERALS) else str(n)


def _ordinal(n: int) -> str:
    if 10 <= n % 100 <= 20:
        suffix = "th"
    else:
        suffix = {1: "st", 2: "nd", 3: "rd"}.get(n % 10, "th")
    return f"{n}{suffix}"
