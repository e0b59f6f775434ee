"""Command-line entry point.

Examples:
- python -m aster "A lighthouse at dusk" -n 4 --out renders/
- python -m aster "Put the cat from image 1 on the sofa in image 2" \
      --image cat.png --image sofa.jpg --provider openai
- python -m aster "anything" --mock -n 3
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import mimetypes
from pathlib import Path
import signal
import sys
from typing import TYPE_CHECKING

from aster import start_batch
from aster.cancel import CancelToken
from aster.config import (
    ASPECT_RATIOS,
    DEFAULT_MODEL,
    MAX_BATCH_SIZE,
    RESOLUTIONS,
    ProviderConfig,
    Settings,
)
from aster.dispatch import BatchEvents, BatchSummary
from aster.errors import AsterError, ConfigurationError, ValidationError
from aster.images import ImageInput, extension_for

if TYPE_CHECKING:
    from collections.abc import Sequence

    from aster.models import GeneratedImage

logger = logging.getLogger("aster.cli")

EXIT_OK = 0
EXIT_NO_IMAGES = 1
EXIT_USAGE = 2
EXIT_INTERRUPTED = 130


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser for ``python -m aster``."""
    parser = argparse.ArgumentParser(
        prog="python -m aster",
        description="Generate a batch of images from a prompt and optional reference images.",
    )
    parser.add_argument("prompt", nargs="?", default="", help="Prompt text")
    parser.add_argument(
        "--image",
        dest="images",
        action="append",
        type=Path,
        default=[],
        metavar="PATH",
        help="Reference image to attach (repeatable, order is preserved)",
    )
    parser.add_argument(
        "-n",
        "--batch-size",
        type=int,
        default=2,
        help=f"Number of images to generate (1-{MAX_BATCH_SIZE})",
    )
    parser.add_argument("--provider", choices=["gemini", "openai"], default="gemini")
    parser.add_argument("--model", default=DEFAULT_MODEL)
    parser.add_argument(
        "--base-url",
        default=None,
        help="Gemini proxy or OpenAI-compatible endpoint (env: GEMINI_BASE_URL / OPENAI_BASE_URL)",
    )
    parser.add_argument("--aspect-ratio", choices=ASPECT_RATIOS, default="Auto")
    parser.add_argument("--resolution", choices=RESOLUTIONS, default="1K")
    parser.add_argument(
        "--out",
        type=Path,
        default=Path("."),
        help="Directory to write generated images into",
    )
    parser.add_argument(
        "--mock",
        action="store_true",
        help="Use the offline mock provider (no API key needed)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser


def load_image(path: Path) -> ImageInput:
    """Read an image file into an ImageInput, guessing its MIME type."""
    mime_type, _ = mimetypes.guess_type(path.name)
    if not mime_type or not mime_type.startswith("image/"):
        raise ValidationError(
            f"Not an image file: {path}",
            hint="Supported inputs are PNG, JPEG, WEBP, GIF and other image/* files.",
        )
    try:
        raw = path.read_bytes()
    except OSError as exc:
        raise ValidationError(f"Cannot read image {path}: {exc}") from exc
    return ImageInput.from_bytes(raw, mime_type)


class _Writer:
    """Batch callbacks that save images and echo progress to the terminal."""

    def __init__(self, out_dir: Path) -> None:
        self.out_dir = out_dir
        self.written: list[Path] = []
        self.index = 0

    def on_image(self, image: GeneratedImage) -> None:
        self.index += 1
        if not image.ok:
            print(f"  image {self.index}: failed", file=sys.stderr)
            return
        path = self.out_dir / f"{self.index:02d}-{image.id}.{extension_for(image.mime_type)}"
        path.write_bytes(image.data)
        self.written.append(path)
        print(f"  image {self.index}: {path}")

    def on_text(self, text: str) -> None:
        print(f"  text: {text}")

    def on_progress(self, completed: int, total: int) -> None:
        print(f"[{completed}/{total}]")

    def events(self) -> BatchEvents:
        return BatchEvents(
            on_image=self.on_image,
            on_text=self.on_text,
            on_progress=self.on_progress,
        )


async def _run(args: argparse.Namespace, writer: _Writer) -> BatchSummary:
    config = ProviderConfig(
        provider=args.provider,
        base_url=args.base_url,
        model=args.model,
        use_mock=args.mock,
    )
    settings = Settings(
        provider_config=config,
        batch_size=args.batch_size,
        aspect_ratio=args.aspect_ratio,
        resolution=args.resolution,
    )
    images = [load_image(path) for path in args.images]

    cancel = CancelToken()
    loop = asyncio.get_running_loop()
    # Not available on every platform; Ctrl-C then falls back to KeyboardInterrupt.
    with contextlib.suppress(NotImplementedError, RuntimeError):
        loop.add_signal_handler(signal.SIGINT, cancel.cancel)
    try:
        return await start_batch(
            None, args.prompt, [], settings, images, writer.events(), cancel
        )
    finally:
        with contextlib.suppress(NotImplementedError, RuntimeError):
            loop.remove_signal_handler(signal.SIGINT)


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry: run one batch and report the outcome as an exit code."""
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    args.out.mkdir(parents=True, exist_ok=True)
    writer = _Writer(args.out)
    try:
        summary = asyncio.run(_run(args, writer))
    except (ConfigurationError, ValidationError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        if exc.hint:
            print(f"hint: {exc.hint}", file=sys.stderr)
        return EXIT_USAGE
    except AsterError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return EXIT_NO_IMAGES
    except KeyboardInterrupt:
        return EXIT_INTERRUPTED

    if summary.state == "cancelled":
        print(f"cancelled after {summary.completed}/{summary.total}", file=sys.stderr)
        return EXIT_INTERRUPTED
    print(
        f"done: {summary.succeeded} image(s), {summary.failed} failed,"
        f" {summary.text_only} text-only in {summary.duration_s:.1f}s"
    )
    return EXIT_OK if summary.succeeded else EXIT_NO_IMAGES


if __name__ == "__main__":
    raise SystemExit(main())
