"""运行配置模型。"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Tuple

from vision_batch.core.exceptions import InvalidConfigurationError

DEFAULT_PROMPT = "Describe this image"
DEFAULT_MODEL_ID = "Qwen/Qwen2.5-VL-3B-Instruct"
DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful visual AI assistant. Respond concisely with text only, no markdown."
)


@dataclass(slots=True)
class ModelConfig:
    """视觉语言模型的加载与生成参数。"""

    model_id: str = DEFAULT_MODEL_ID
    device: str = "auto"  # auto | cuda | cpu
    max_new_tokens: int = 512
    repetition_penalty: float = 1.2
    longest_edge: int = 480
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    require_accelerator: bool = False
    cache_dir: Optional[Path] = None

    def validate(self) -> None:
        if not self.model_id.strip():
            raise InvalidConfigurationError("模型 ID 不能为空")
        if self.device not in {"auto", "cuda", "cpu"}:
            raise InvalidConfigurationError(f"未知的设备类型: {self.device}")
        if self.max_new_tokens <= 0:
            raise InvalidConfigurationError("max_new_tokens 必须大于 0")
        if self.repetition_penalty <= 0:
            raise InvalidConfigurationError("repetition_penalty 必须大于 0")
        if self.longest_edge <= 0:
            raise InvalidConfigurationError("longest_edge 必须大于 0")


@dataclass(slots=True)
class ExtractConfig:
    """压缩包解析配置。"""

    image_extensions: Tuple[str, ...] = (".jpg", ".jpeg", ".png", ".gif", ".webp")
    metadata_dirs: Tuple[str, ...] = ("__MACOSX",)
    resource_fork_prefix: str = "._"
    preview_size: Tuple[int, int] = (160, 160)


@dataclass(slots=True)
class ExportConfig:
    """CSV 导出配置。"""

    output_dir: Path = field(default_factory=Path.cwd)
    filename_prefix: str = "vision-results"


@dataclass(slots=True)
class AppConfig:
    """单个会话的配置集合。"""

    model: ModelConfig = field(default_factory=ModelConfig)
    extract: ExtractConfig = field(default_factory=ExtractConfig)
    export: ExportConfig = field(default_factory=ExportConfig)
    default_prompt: str = DEFAULT_PROMPT
