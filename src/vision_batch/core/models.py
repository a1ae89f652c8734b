"""核心数据模型定义。"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Iterator, Optional, Sequence

from PIL import Image

LOGGER = logging.getLogger(__name__)

ERROR_PREFIX = "Error: "

TableListener = Callable[[Optional[int]], None]


@dataclass(slots=True, frozen=True)
class ImageAsset:
    """压缩包中解析出的单张图片。

    ``image`` 为 None 表示该条目解码失败，``error`` 记录原因。
    """

    name: str
    entry_path: str
    image: Optional[Image.Image]
    preview: Optional[Image.Image] = None
    error: Optional[str] = None


class RowStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    DONE = "done"
    ERROR = "error"


@dataclass(slots=True)
class ResultRow:
    """结果表中的一行，response 在推理过程中逐步增长。"""

    file_name: str
    preview: Optional[Image.Image]
    asset: ImageAsset = field(repr=False)
    response: str = ""
    status: RowStatus = RowStatus.PENDING


@dataclass(slots=True, frozen=True)
class RowView:
    """供其他线程读取的只读行快照。"""

    file_name: str
    response: str
    status: RowStatus


class ResultsTable:
    """按压缩包顺序排列的结果表。

    行数在填充后固定；只有批处理器会修改 response。变更通过
    ``subscribe`` 注册的监听器广播，参数为行号，整表替换时为 None。
    """

    def __init__(self) -> None:
        self._rows: list[ResultRow] = []
        self._listeners: list[TableListener] = []
        self._lock = threading.RLock()

    def __len__(self) -> int:
        return len(self._rows)

    def __iter__(self) -> Iterator[ResultRow]:
        return iter(list(self._rows))

    def __getitem__(self, index: int) -> ResultRow:
        return self._rows[index]

    @property
    def is_empty(self) -> bool:
        return not self._rows

    def subscribe(self, listener: TableListener) -> Callable[[], None]:
        """注册变更监听器，返回取消注册的函数。"""

        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def populate(self, assets: Sequence[ImageAsset]) -> None:
        """用新的图片集合整体替换结果表。"""

        with self._lock:
            self._rows = [
                ResultRow(file_name=asset.name, preview=asset.preview, asset=asset) for asset in assets
            ]
        self._notify(None)

    def reset_responses(self) -> None:
        with self._lock:
            for row in self._rows:
                row.response = ""
                row.status = RowStatus.PENDING
        self._notify(None)

    def mark_running(self, index: int) -> None:
        with self._lock:
            self._rows[index].status = RowStatus.RUNNING
        self._notify(index)

    def update_response(self, index: int, text: str) -> None:
        """写入流式输出的累计文本；不能延长当前文本的更新会被忽略。"""

        with self._lock:
            row = self._rows[index]
            if not text.startswith(row.response):
                LOGGER.debug("忽略非递增的流式更新：%s", row.file_name)
                return
            if text == row.response:
                return
            row.response = text
        self._notify(index)

    def complete_row(self, index: int, text: str) -> None:
        with self._lock:
            row = self._rows[index]
            if text.startswith(row.response):
                row.response = text
            row.status = RowStatus.DONE
        self._notify(index)

    def fail_row(self, index: int, message: str) -> None:
        with self._lock:
            row = self._rows[index]
            row.response = f"{ERROR_PREFIX}{message}"
            row.status = RowStatus.ERROR
        self._notify(index)

    def has_responses(self) -> bool:
        with self._lock:
            return any(row.response for row in self._rows)

    def snapshot(self) -> tuple[RowView, ...]:
        with self._lock:
            return tuple(RowView(row.file_name, row.response, row.status) for row in self._rows)

    def _notify(self, index: Optional[int]) -> None:
        for listener in list(self._listeners):
            listener(index)


class ModelStatus(str, Enum):
    UNLOADED = "unloaded"
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"


@dataclass(slots=True, frozen=True)
class ModelState:
    status: ModelStatus = ModelStatus.UNLOADED
    percent: float = 0.0
    message: str = ""
    error: Optional[BaseException] = None


class RunStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(slots=True, frozen=True)
class RunState:
    status: RunStatus = RunStatus.IDLE
    current_index: Optional[int] = None
    error: Optional[BaseException] = None


@dataclass(slots=True)
class BatchSummary:
    """一次批处理的统计结果。"""

    total: int
    succeeded: int
    failed: int
    elapsed_seconds: float
