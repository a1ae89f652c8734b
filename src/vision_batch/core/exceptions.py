"""项目内使用的自定义异常定义。"""


class VisionBatchError(Exception):
    """基础异常类型。"""


class InvalidConfigurationError(VisionBatchError):
    """配置不合法时抛出。"""


class ArchiveFormatError(VisionBatchError):
    """压缩包无法解析时抛出。"""


class ImageDecodeError(VisionBatchError):
    """压缩包内的图片无法解码。"""


class ModelLoadError(VisionBatchError):
    """模型加载失败（网络、解码或设备不可用）。"""


class NotLoadedError(VisionBatchError):
    """模型尚未就绪时调用了生成接口。"""


class GenerationError(VisionBatchError):
    """单张图片的推理失败。"""
