"""测试共用的压缩包构造工具与假模型。"""

from __future__ import annotations

import io
import zipfile
from typing import Callable, Iterable, Optional, Sequence

from PIL import Image

from vision_batch.core.exceptions import GenerationError, ModelLoadError
from vision_batch.processing.gateway import ModelGateway


def png_bytes(color: str = "red", size: tuple[int, int] = (32, 24), fmt: str = "PNG") -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format=fmt)
    return buffer.getvalue()


def build_zip(
    entries: Iterable[tuple[str, bytes]],
    directories: Sequence[str] = (),
    compression: int = zipfile.ZIP_DEFLATED,
) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression) as archive:
        for directory in directories:
            archive.writestr(zipfile.ZipInfo(directory.rstrip("/") + "/"), b"")
        for name, data in entries:
            archive.writestr(name, data)
    return buffer.getvalue()


class FakeGateway(ModelGateway):
    """按脚本输出的假模型，用于替代真实的视觉语言模型。"""

    def __init__(
        self,
        responses: Optional[Sequence[str]] = None,
        fail_on: Sequence[int] = (),
        raw_progress: Sequence[float] = (20, 60, 40, 90),
        load_failures: int = 0,
    ) -> None:
        super().__init__()
        self.responses = list(responses or [])
        self.fail_on = set(fail_on)
        self.raw_progress = list(raw_progress)
        self.load_failures = load_failures
        self.load_calls = 0
        self.released = False
        self.calls: list[str] = []
        self.active = 0
        self.max_active = 0
        self.before_generate: Optional[Callable[[int], None]] = None

    def _load_weights(self, report) -> None:
        self.load_calls += 1
        if self.load_failures:
            self.load_failures -= 1
            raise RuntimeError("no accelerator")
        for value in self.raw_progress:
            report("Downloading weights...", value)

    def _generate(self, image, prompt, on_token) -> str:
        index = len(self.calls)
        self.calls.append(prompt)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.before_generate:
                self.before_generate(index)
            if index in self.fail_on:
                raise RuntimeError(f"boom {index}")
            if index < len(self.responses):
                text = self.responses[index]
            else:
                text = f"image {image.size[0]}x{image.size[1]}"
            words = text.split(" ")
            for count in range(1, len(words) + 1):
                on_token(" ".join(words[:count]))
            return text
        finally:
            self.active -= 1

    def _release(self) -> None:
        self.released = True


class ExplodingGateway(FakeGateway):
    """加载阶段直接抛出 ModelLoadError。"""

    def _load_weights(self, report) -> None:
        self.load_calls += 1
        report("Downloading weights...", 30)
        raise ModelLoadError("WebGPU-like accelerator missing")


class StrictFailGateway(FakeGateway):
    """生成阶段抛出 GenerationError 而不是普通异常。"""

    def _generate(self, image, prompt, on_token) -> str:
        on_token("partial")
        raise GenerationError("decoder crashed")
