"""压缩包解析与图片条目筛选逻辑。"""

from __future__ import annotations

import io
import logging
import zipfile
from pathlib import Path, PurePosixPath
from typing import Iterator, Optional, Union

from vision_batch.core.config import ExtractConfig
from vision_batch.core.exceptions import ArchiveFormatError, ImageDecodeError
from vision_batch.core.models import ImageAsset
from vision_batch.processing.image_loader import decode_image, make_preview

LOGGER = logging.getLogger(__name__)

ArchiveSource = Union[bytes, bytearray, Path, str]


def is_metadata_entry(entry_path: str, config: ExtractConfig) -> bool:
    """判断条目是否为归档工具生成的系统元数据（如 __MACOSX、._ 资源分支）。"""

    parts = PurePosixPath(entry_path.replace("\\", "/")).parts
    if any(part in config.metadata_dirs for part in parts[:-1]):
        return True
    return bool(parts) and parts[-1].startswith(config.resource_fork_prefix)


def is_image_entry(info: zipfile.ZipInfo, config: ExtractConfig) -> bool:
    if info.is_dir():
        return False
    suffix = PurePosixPath(info.filename).suffix.lower()
    if suffix not in config.image_extensions:
        return False
    return not is_metadata_entry(info.filename, config)


def _iter_image_entries(archive: zipfile.ZipFile, config: ExtractConfig) -> Iterator[zipfile.ZipInfo]:
    """按压缩包内的枚举顺序遍历图片条目。"""

    for info in archive.infolist():
        if is_image_entry(info, config):
            yield info


def extract_images(data: bytes, config: Optional[ExtractConfig] = None) -> list[ImageAsset]:
    """解析压缩包字节，返回其中的图片资产列表。

    结果顺序与压缩包枚举顺序一致；没有图片时返回空列表。
    无法读取或解码的图片仍会返回，``image`` 为 None 并带有错误信息。
    """

    config = config or ExtractConfig()
    try:
        archive = zipfile.ZipFile(io.BytesIO(data))
    except (zipfile.BadZipFile, zipfile.LargeZipFile, ValueError) as exc:
        raise ArchiveFormatError("无法解析压缩包，请确认文件为 ZIP 格式") from exc

    assets: list[ImageAsset] = []
    with archive:
        for info in _iter_image_entries(archive, config):
            name = PurePosixPath(info.filename.replace("\\", "/")).name
            try:
                raw = archive.read(info)
            except (zipfile.BadZipFile, NotImplementedError, RuntimeError, OSError) as exc:
                # 单个条目损坏或加密时只影响该行，压缩包其余图片照常返回。
                LOGGER.warning("读取压缩包条目失败：%s（%s）", info.filename, exc)
                error = f"读取压缩包条目失败: {info.filename}"
                assets.append(ImageAsset(name=name, entry_path=info.filename, image=None, error=error))
                continue

            try:
                image = decode_image(raw, name)
            except ImageDecodeError as exc:
                LOGGER.warning("图片解码失败：%s", info.filename)
                assets.append(ImageAsset(name=name, entry_path=info.filename, image=None, error=str(exc)))
                continue

            assets.append(
                ImageAsset(
                    name=name,
                    entry_path=info.filename,
                    image=image,
                    preview=make_preview(image, config.preview_size),
                )
            )

    LOGGER.info("压缩包中发现 %d 张图片", len(assets))
    return assets


def extract_images_from_path(path: Path, config: Optional[ExtractConfig] = None) -> list[ImageAsset]:
    try:
        data = Path(path).read_bytes()
    except OSError as exc:
        raise ArchiveFormatError(f"无法读取压缩包文件: {path}") from exc
    return extract_images(data, config)


def load_archive(source: ArchiveSource, config: Optional[ExtractConfig] = None) -> list[ImageAsset]:
    """接受字节或文件路径的统一入口。"""

    if isinstance(source, (bytes, bytearray)):
        return extract_images(bytes(source), config)
    return extract_images_from_path(Path(source), config)
