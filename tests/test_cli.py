"""CLI behavior with the offline mock provider."""

from __future__ import annotations

import base64
from pathlib import Path

import pytest

from aster.__main__ import main
from tests.conftest import PIXEL_PNG_B64

pytestmark = pytest.mark.integration


def test_cli_writes_images_and_exits_zero(tmp_path: Path, capsys) -> None:
    code = main(["a quiet harbor", "--mock", "-n", "3", "--out", str(tmp_path)])

    assert code == 0
    written = sorted(tmp_path.iterdir())
    assert len(written) == 3
    assert all(p.suffix == ".png" for p in written)
    assert written[0].name.startswith("01-")
    out = capsys.readouterr().out
    assert "[3/3]" in out
    assert "echo: a quiet harbor" in out


def test_cli_accepts_reference_images(tmp_path: Path) -> None:
    ref = tmp_path / "ref.png"
    ref.write_bytes(base64.b64decode(PIXEL_PNG_B64))
    out_dir = tmp_path / "out"

    code = main(["--image", str(ref), "--mock", "-n", "1", "--out", str(out_dir)])

    assert code == 0
    assert len(list(out_dir.iterdir())) == 1


def test_cli_config_errors_exit_two(tmp_path: Path, capsys) -> None:
    code = main(["hello", "--provider", "openai", "--out", str(tmp_path)])

    assert code == 2
    err = capsys.readouterr().err
    assert "API key required" in err
    assert "OPENAI_API_KEY" in err


def test_cli_rejects_non_image_files(tmp_path: Path) -> None:
    notes = tmp_path / "notes.txt"
    notes.write_text("not an image")

    assert main(["hi", "--image", str(notes), "--mock", "--out", str(tmp_path)]) == 2


def test_cli_empty_input_exits_two(tmp_path: Path) -> None:
    assert main(["--mock", "--out", str(tmp_path)]) == 2
