"""环节七：命令行入口。"""

from __future__ import annotations

from pathlib import Path

from typer.testing import CliRunner

from helpers import build_zip, png_bytes
from vision_batch.cli.main import app

runner = CliRunner()


def test_list_prints_extracted_images(tmp_path: Path) -> None:
    archive = tmp_path / "batch.zip"
    archive.write_bytes(
        build_zip([("a.png", png_bytes()), ("b.jpg", png_bytes(fmt="JPEG")), ("__MACOSX/._c.png", b"x")])
    )

    result = runner.invoke(app, ["list", str(archive)])

    assert result.exit_code == 0
    assert "a.png" in result.output
    assert "b.jpg" in result.output
    assert "._c.png" not in result.output
    assert "共 2 张图片" in result.output


def test_list_reports_invalid_archive(tmp_path: Path) -> None:
    archive = tmp_path / "broken.zip"
    archive.write_bytes(b"not a zip")

    result = runner.invoke(app, ["list", str(archive)])

    assert result.exit_code == 1
