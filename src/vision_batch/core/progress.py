"""进度更新的数据模型。"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional


@dataclass(slots=True)
class ProgressUpdate:
    """模型加载过程中的进度信息。"""

    message: str
    percent: float


ProgressCallback = Optional[Callable[[ProgressUpdate], None]]


class ProgressTracker:
    """记录进度最高水位，保证对外报告的百分比不回退。

    底层下载可能乱序上报，例如 ``[5, 40, 30, 90, 100]`` 会被转换为
    ``[5, 40, 40, 90, 100]``。
    """

    def __init__(self, callback: ProgressCallback = None) -> None:
        self._callback = callback
        self._high_water = 0.0
        self._message = ""

    @property
    def percent(self) -> float:
        return self._high_water

    @property
    def message(self) -> str:
        return self._message

    def report(self, message: str, percent: float) -> ProgressUpdate:
        clamped = max(0.0, min(float(percent), 100.0))
        if clamped > self._high_water:
            self._high_water = clamped
        self._message = message
        update = ProgressUpdate(message=message, percent=self._high_water)
        if self._callback:
            self._callback(update)
        return update
