"""日志初始化工具。"""

from __future__ import annotations

import logging

NOISY_LOGGERS = ("httpx", "urllib3", "filelock", "PIL")


def setup_logging(level: int = logging.INFO) -> None:
    """初始化项目日志配置。"""

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(threadName)s] %(levelname)s %(name)s: %(message)s",
    )
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
