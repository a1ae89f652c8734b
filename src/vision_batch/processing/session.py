"""会话控制器：串联压缩包解析、模型加载、批处理与导出。"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from vision_batch.processing.archive import ArchiveSource, load_archive
from vision_batch.core.config import AppConfig
from vision_batch.core.exceptions import ArchiveFormatError, ModelLoadError
from vision_batch.core.export import export_csv
from vision_batch.core.models import BatchSummary, ResultsTable
from vision_batch.core.progress import ProgressCallback, ProgressUpdate
from vision_batch.processing.gateway import ModelGateway, TransformersGateway
from vision_batch.processing.runner import BatchRunner, RowCallback

LOGGER = logging.getLogger(__name__)


class VisionSession:
    """单个会话内唯一的模型、结果表与批处理器的持有者。

    对外暴露 ``status`` 文本与 ``progress`` 百分比，供界面层展示。
    """

    def __init__(self, config: Optional[AppConfig] = None, gateway: Optional[ModelGateway] = None) -> None:
        self.config = config or AppConfig()
        self.gateway = gateway or TransformersGateway(self.config.model)
        self.table = ResultsTable()
        self.runner = BatchRunner(self.gateway, self.table)
        self.status = "Model not loaded"
        self.progress = 0.0

    def load_model(self, on_progress: ProgressCallback = None) -> bool:
        def forward(update: ProgressUpdate) -> None:
            self.status = update.message
            self.progress = update.percent
            if on_progress:
                on_progress(update)

        try:
            return self.gateway.load(forward)
        except ModelLoadError as exc:
            self.status = f"Model load failed: {exc}"
            self.progress = 0.0
            raise

    def open_archive(self, source: ArchiveSource) -> int:
        """解析压缩包并替换结果表；失败时结果表保持不变。"""

        if self.runner.is_running:
            LOGGER.warning("批处理运行中，暂不能载入新的压缩包")
            return len(self.table)

        try:
            assets = load_archive(source, self.config.extract)
        except ArchiveFormatError as exc:
            self.status = f"Invalid archive: {exc}"
            LOGGER.error("载入压缩包失败：%s", exc)
            raise

        # 解析期间可能已有批次开始运行，替换与运行检查在同一把锁内完成。
        if not self.runner.replace_rows(assets):
            LOGGER.warning("批处理已开始运行，放弃替换结果表")
            return len(self.table)

        self.status = f"Loaded {len(assets)} images"
        LOGGER.info("结果表已更新，共 %d 行", len(assets))
        return len(assets)

    def run(self, prompt: Optional[str] = None, on_row: RowCallback = None) -> Optional[BatchSummary]:
        summary = self.runner.run(prompt or self.config.default_prompt, on_row=on_row)
        if summary is not None:
            self.status = f"Done: {summary.succeeded} succeeded, {summary.failed} failed"
        return summary

    def can_export(self) -> bool:
        return not self.runner.is_running and self.table.has_responses()

    def export(self, output_dir: Optional[Path] = None) -> Optional[Path]:
        target_dir = output_dir or self.config.export.output_dir
        return export_csv(self.table, target_dir, prefix=self.config.export.filename_prefix)

    def dispose(self) -> None:
        self.gateway.dispose()
        self.status = "Model not loaded"
        self.progress = 0.0
