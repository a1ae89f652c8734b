"""结果表 CSV 导出工具。"""

from __future__ import annotations

import csv
import io
import logging
import time
from pathlib import Path
from typing import Optional

from vision_batch.core.models import ResultsTable

LOGGER = logging.getLogger(__name__)

HEADER = ["File Name", "Response"]
FILENAME_PREFIX = "vision-results"


def render_csv(table: ResultsTable) -> str:
    """将结果表序列化为 CSV 文本。

    含逗号、双引号或换行的字段会被双引号包裹，内部双引号加倍。
    """

    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_MINIMAL, lineterminator="\n")
    writer.writerow(HEADER)
    for row in table.snapshot():
        writer.writerow([row.file_name, row.response])
    return buffer.getvalue()


def default_export_filename(timestamp_ms: Optional[int] = None, prefix: str = FILENAME_PREFIX) -> str:
    if timestamp_ms is None:
        timestamp_ms = time.time_ns() // 1_000_000
    return f"{prefix}-{timestamp_ms}.csv"


def write_csv(table: ResultsTable, destination: Path) -> Path:
    """将结果表写入指定文件（UTF-8）。"""

    destination.parent.mkdir(parents=True, exist_ok=True)
    with destination.open("w", encoding="utf-8", newline="") as handle:
        handle.write(render_csv(table))
    LOGGER.info("结果已导出：%s", destination)
    return destination


def export_csv(
    table: ResultsTable,
    output_dir: Path,
    timestamp_ms: Optional[int] = None,
    prefix: str = FILENAME_PREFIX,
) -> Optional[Path]:
    """导出结果表；没有任何响应内容时不执行并返回 None。"""

    if not table.has_responses():
        LOGGER.info("结果表中没有可导出的响应，跳过导出")
        return None
    destination = Path(output_dir) / default_export_filename(timestamp_ms, prefix)
    return write_csv(table, destination)
