"""Request normalization: image collection, size limits, ordering and legend."""

from __future__ import annotations

import logging

import pytest

from aster.config import ProviderConfig, Settings
from aster.errors import ValidationError
from aster.images import ImageInput, to_data_uri
from aster.models import GeneratedImage, Message, UploadedImage
from aster.request import add_image_legend, normalize_request, references_image_positions

pytestmark = pytest.mark.unit

SETTINGS = Settings(ProviderConfig(use_mock=True), batch_size=2)


def _model_turn(*images: GeneratedImage, selected: str | None) -> Message:
    return Message(role="model", images=list(images), selected_image_id=selected)


def test_text_precedes_images_in_order(pixel: ImageInput) -> None:
    second = ImageInput.from_bytes(b"second", "image/jpeg")

    req = normalize_request("  make it blue  ", [], [pixel, second], SETTINGS)

    assert req.prompt == "make it blue"
    assert req.parts == ("make it blue", pixel, second)
    assert req.image_count == 2
    assert req.batch_size == 2


def test_prior_selected_images_come_before_fresh_ones(pixel: ImageInput) -> None:
    chosen = GeneratedImage.success(b"chosen", "image/png")
    other = GeneratedImage.success(b"other", "image/png")
    history = [
        Message(role="user", text="draw a cat"),
        _model_turn(chosen, other, selected=chosen.id),
    ]

    req = normalize_request(None, history, [pixel], SETTINGS)

    assert [img.raw_bytes() for img in req.prior_images] == [b"chosen"]
    assert req.parts == (*req.prior_images, pixel)


def test_error_or_unselected_prior_images_are_ignored() -> None:
    failed = GeneratedImage.error()
    history = [
        _model_turn(failed, selected=failed.id),
        _model_turn(GeneratedImage.success(b"x", "image/png"), selected=None),
    ]

    req = normalize_request("hello", history, None, SETTINGS)

    assert req.prior_images == ()
    assert req.parts == ("hello",)


def test_uploaded_images_are_decoded_from_data_uris() -> None:
    upload = UploadedImage(id="u1", data=to_data_uri("image/webp", b"webp-bytes"))

    req = normalize_request("", [], [upload], SETTINGS)

    assert req.prompt is None
    assert len(req.fresh_images) == 1
    assert req.fresh_images[0].mime_type == "image/webp"


def test_oversized_images_are_dropped_with_a_warning(
    pixel: ImageInput, caplog: pytest.LogCaptureFixture
) -> None:
    big = ImageInput.from_bytes(b"\x00" * 4096)

    with caplog.at_level(logging.WARNING, logger="aster.request"):
        req = normalize_request("hi", [], [big, pixel], SETTINGS, max_image_bytes=1024)

    assert req.fresh_images == (pixel,)
    assert "too large" in caplog.text


def test_all_fresh_images_rejected_fails_even_with_text() -> None:
    with pytest.raises(ValidationError, match="No valid images"):
        normalize_request("a prompt", [], ["garbage", "data:image/png;base64,"], SETTINGS)


def test_empty_input_fails_before_any_call() -> None:
    with pytest.raises(ValidationError, match="At least one image or text prompt"):
        normalize_request("   ", [], None, SETTINGS)


def test_legend_added_for_two_images_with_ordinal_reference(pixel: ImageInput) -> None:
    req = normalize_request(
        "Put the hat from image 1 on the dog in image 2", [], [pixel, pixel], SETTINGS
    )

    text = req.parts[0]
    assert isinstance(text, str)
    assert text.startswith("Image order: image 1 = the 1st attached image")
    assert text.endswith("Put the hat from image 1 on the dog in image 2")


def test_no_legend_for_a_single_image(pixel: ImageInput) -> None:
    req = normalize_request("Recolor image 1", [], [pixel], SETTINGS)
    assert req.parts[0] == "Recolor image 1"


def test_no_legend_without_ordinal_reference() -> None:
    assert add_image_legend("blend these together", 3) == "blend these together"


def test_chinese_reference_gets_chinese_legend() -> None:
    text = add_image_legend("把图一的猫放到图二的沙发上", 2)
    assert text.startswith("参考图片说明：图一（第1张上传的图片）、图二（第2张上传的图片）。")
    assert text.endswith("把图一的猫放到图二的沙发上")


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("use the second image as background", True),
        ("image #3 has the logo", True),
        ("第2张是背景", True),
        ("an image of a cat", False),
    ],
)
def test_references_image_positions(text: str, expected: bool) -> None:
    assert references_image_positions(text) is expected
