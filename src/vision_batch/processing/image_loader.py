"""图片解码与基础预处理实现。"""

from __future__ import annotations

import io
import logging
from typing import Tuple

from PIL import Image, ImageOps, UnidentifiedImageError

from vision_batch.core.exceptions import ImageDecodeError

LOGGER = logging.getLogger(__name__)


def decode_image(data: bytes, name: str) -> Image.Image:
    """将压缩包条目的字节解码为 RGB 图像。

    执行 EXIF 旋转校正；GIF/WebP 动图只取第一帧。返回值为新的 Image 对象，
    调用者负责关闭。
    """

    try:
        with Image.open(io.BytesIO(data)) as img:
            img.seek(0)
            img.load()

            # EXIF Orientation 校正
            img = ImageOps.exif_transpose(img)

            if img.mode != "RGB":
                img = _convert_to_rgb(img)

            return img.copy()
    except (UnidentifiedImageError, OSError, EOFError) as exc:
        LOGGER.debug("无法识别图像条目 %s: %s", name, exc)
        raise ImageDecodeError(f"无法解码图像: {name}") from exc


def make_preview(image: Image.Image, size: Tuple[int, int]) -> Image.Image:
    """生成用于结果表展示的缩略图。"""

    preview = image.copy()
    preview.thumbnail(size, Image.LANCZOS)
    return preview


def fit_longest_edge(image: Image.Image, longest_edge: int) -> Image.Image:
    """按比例缩小图片，使最长边不超过 longest_edge。"""

    width, height = image.size
    longest = max(width, height)
    if longest <= longest_edge:
        return image
    scale = longest_edge / longest
    new_size = (max(1, round(width * scale)), max(1, round(height * scale)))
    return image.resize(new_size, Image.LANCZOS)


def _convert_to_rgb(img: Image.Image) -> Image.Image:
    """将任意模式图像转换为 RGB。"""

    if img.mode == "P":
        img = img.convert("RGBA")

    if img.mode in {"RGBA", "LA"}:
        # 保留 Alpha 信息，通过白色背景混合生成 RGB。
        background = Image.new("RGB", img.size, (255, 255, 255))
        background.paste(img.convert("RGBA"), mask=img.split()[-1])
        return background

    return img.convert("RGB")
