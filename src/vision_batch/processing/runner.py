"""批处理执行器：按顺序对结果表中的每张图片调用模型。"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional, Sequence

from vision_batch.core.config import DEFAULT_PROMPT
from vision_batch.core.exceptions import GenerationError
from vision_batch.core.models import BatchSummary, ImageAsset, ResultsTable, RunState, RunStatus
from vision_batch.processing.gateway import ModelGateway

LOGGER = logging.getLogger(__name__)

RowCallback = Optional[Callable[[int, int], None]]


class BatchRunner:
    """顺序推理的编排器。

    同一时刻只允许一个批次运行；底层模型独占设备资源，
    每一行的生成结束（成功或失败）后才会开始下一行。
    """

    def __init__(self, gateway: ModelGateway, table: ResultsTable) -> None:
        self.gateway = gateway
        self.table = table
        self._state = RunState()
        self._lock = threading.Lock()

    @property
    def state(self) -> RunState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state.status is RunStatus.RUNNING

    def can_run(self) -> bool:
        return not self.is_running and not self.table.is_empty and self.gateway.is_ready

    def replace_rows(self, assets: Sequence[ImageAsset]) -> bool:
        """未在运行时用新的图片集合替换结果表；运行中返回 False，结果表不变。"""

        with self._lock:
            if self.is_running:
                return False
            self.table.populate(assets)
            return True

    def run(self, prompt: str = DEFAULT_PROMPT, on_row: RowCallback = None) -> Optional[BatchSummary]:
        """执行一次批处理；前置条件不满足时直接返回 None，不修改任何行。

        每次被接受的运行都会先清空上一轮的回复，重复运行同一压缩包时从空白开始。
        """

        with self._lock:
            if self.is_running:
                LOGGER.warning("批处理正在运行，忽略新的运行请求")
                return None
            if self.table.is_empty:
                LOGGER.warning("结果表为空，请先载入压缩包")
                return None
            if not self.gateway.is_ready:
                LOGGER.warning("模型尚未就绪，无法开始批处理")
                return None
            self._state = RunState(status=RunStatus.RUNNING, current_index=0)

        prompt = prompt.strip() or DEFAULT_PROMPT
        total = len(self.table)
        succeeded = 0
        failed = 0
        started = time.perf_counter()
        LOGGER.info("开始批处理，共 %d 张图片", total)
        self.table.reset_responses()

        try:
            for index in range(total):
                self._state = RunState(status=RunStatus.RUNNING, current_index=index)
                if self._process_row(index, prompt):
                    succeeded += 1
                else:
                    failed += 1
                if on_row:
                    on_row(index + 1, total)
        except Exception as exc:
            LOGGER.error("批处理中止：%s", exc)
            self._state = RunState(status=RunStatus.FAILED, current_index=self._state.current_index, error=exc)
            raise

        elapsed = time.perf_counter() - started
        self._state = RunState(status=RunStatus.COMPLETED)
        LOGGER.info("批处理完成：成功 %d 张，失败 %d 张，用时 %.1f 秒", succeeded, failed, elapsed)
        return BatchSummary(total=total, succeeded=succeeded, failed=failed, elapsed_seconds=elapsed)

    def _process_row(self, index: int, prompt: str) -> bool:
        row = self.table[index]
        self.table.mark_running(index)

        if row.asset.image is None:
            self.table.fail_row(index, row.asset.error or "图片不可用")
            return False

        def on_token(text: str) -> None:
            self.table.update_response(index, text)

        try:
            text = self.gateway.generate(row.asset.image, prompt, on_token)
        except GenerationError as exc:
            LOGGER.warning("推理失败 %s：%s", row.file_name, exc)
            self.table.fail_row(index, str(exc))
            return False

        if not text.strip():
            self.table.fail_row(index, "模型未返回任何内容")
            return False
        self.table.complete_row(index, text)
        return True
