"""环节一：压缩包解析与图片筛选。"""

from __future__ import annotations

import io
import zipfile
from pathlib import Path

import pytest
from PIL import Image

from helpers import build_zip, png_bytes
from vision_batch.core.exceptions import ArchiveFormatError
from vision_batch.processing.archive import extract_images, extract_images_from_path, load_archive


def test_metadata_entries_are_excluded_and_order_kept() -> None:
    data = build_zip(
        [
            ("a.png", png_bytes("red")),
            ("b.jpg", png_bytes("blue", fmt="JPEG")),
            ("__MACOSX/._c.png", b"\x00\x05\x16\x07"),
        ]
    )

    assets = extract_images(data)

    assert [asset.name for asset in assets] == ["a.png", "b.jpg"]
    assert all(asset.image is not None for asset in assets)


def test_filters_extensions_directories_and_hidden_forks() -> None:
    data = build_zip(
        [
            ("photos/one.JPEG", png_bytes(fmt="JPEG")),
            ("photos/nested/two.WebP", png_bytes(fmt="WEBP")),
            ("photos/three.gif", png_bytes(fmt="GIF")),
            ("photos/._one.JPEG", b"resource fork"),
            ("notes.txt", b"hello"),
            ("photos/readme.md", b"# hi"),
        ],
        directories=["photos", "photos/nested.png"],
    )

    assets = extract_images(data)

    assert [asset.name for asset in assets] == ["one.JPEG", "two.WebP", "three.gif"]
    assert assets[1].entry_path == "photos/nested/two.WebP"


def test_archive_without_images_yields_empty_list() -> None:
    data = build_zip([("notes.txt", b"nothing here")])

    assert extract_images(data) == []


def test_invalid_bytes_raise_archive_format_error() -> None:
    with pytest.raises(ArchiveFormatError):
        extract_images(b"definitely not a zip file")


def test_undecodable_image_is_kept_with_error() -> None:
    data = build_zip([("good.png", png_bytes()), ("broken.png", b"not an image")])

    assets = extract_images(data)

    assert len(assets) == 2
    broken = assets[1]
    assert broken.name == "broken.png"
    assert broken.image is None
    assert broken.error and "broken.png" in broken.error


def test_corrupted_entry_is_kept_and_other_images_survive() -> None:
    good = png_bytes("red")
    bad = png_bytes("blue", size=(40, 40))
    data = bytearray(build_zip([("good.png", good), ("bad.png", bad)], compression=zipfile.ZIP_STORED))
    offset = data.find(bad) + len(bad) // 2
    data[offset] ^= 0xFF

    assets = extract_images(bytes(data))

    assert [asset.name for asset in assets] == ["good.png", "bad.png"]
    assert assets[0].image is not None
    assert assets[1].image is None
    assert assets[1].error and "bad.png" in assets[1].error


def test_images_are_normalised_to_rgb_with_preview() -> None:
    buffer = io.BytesIO()
    Image.new("RGBA", (400, 200), (255, 0, 0, 128)).save(buffer, format="PNG")
    data = build_zip([("alpha.png", buffer.getvalue())])

    asset = extract_images(data)[0]

    assert asset.image is not None and asset.image.mode == "RGB"
    assert asset.image.size == (400, 200)
    assert asset.preview is not None
    assert max(asset.preview.size) <= 160


def test_exif_orientation_is_corrected() -> None:
    if not hasattr(Image, "Exif"):
        pytest.skip("当前 Pillow 版本不支持写入 EXIF 数据")

    image = Image.new("RGB", (80, 40), "red")
    exif = Image.Exif()
    exif[274] = 6  # 顺时针 90 度
    buffer = io.BytesIO()
    image.save(buffer, format="JPEG", exif=exif.tobytes())

    asset = extract_images(build_zip([("rotated.jpg", buffer.getvalue())]))[0]

    assert asset.image is not None
    assert asset.image.size == (40, 80)


def test_load_archive_accepts_path(tmp_path: Path) -> None:
    archive_path = tmp_path / "batch.zip"
    archive_path.write_bytes(build_zip([("x.png", png_bytes())]))

    assert [a.name for a in load_archive(archive_path)] == ["x.png"]
    assert [a.name for a in extract_images_from_path(archive_path)] == ["x.png"]


def test_missing_archive_file_raises(tmp_path: Path) -> None:
    with pytest.raises(ArchiveFormatError):
        extract_images_from_path(tmp_path / "missing.zip")
