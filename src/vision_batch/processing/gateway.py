"""视觉语言模型的访问边界：加载与流式生成。

``ModelGateway`` 负责状态机与前置条件检查，具体的加载与推理由子类实现。
``TransformersGateway`` 基于 Hugging Face transformers 在本地运行模型，
采用贪心解码、固定重复惩罚与固定的最大生成长度，输出可复现。
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Optional

from PIL import Image

from vision_batch.core.config import ModelConfig
from vision_batch.core.exceptions import GenerationError, ModelLoadError, NotLoadedError
from vision_batch.core.models import ModelState, ModelStatus
from vision_batch.core.progress import ProgressCallback, ProgressTracker, ProgressUpdate
from vision_batch.processing.image_loader import fit_longest_edge

LOGGER = logging.getLogger(__name__)

TokenCallback = Callable[[str], None]
ReportFn = Callable[[str, float], None]

DOWNLOAD_START = 10.0
DOWNLOAD_END = 90.0


class ModelGateway:
    """模型能力的统一入口，生命周期为 构造 → load → [generate]* → dispose。"""

    def __init__(self) -> None:
        self._state = ModelState()
        self._lock = threading.Lock()
        self._generate_lock = threading.Lock()

    @property
    def state(self) -> ModelState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state.status is ModelStatus.READY

    def load(self, on_progress: ProgressCallback = None) -> bool:
        """加载模型。已就绪或正在加载时直接返回 False。

        失败时抛出 ``ModelLoadError``，状态变为 Failed，可再次调用重试。
        """

        with self._lock:
            status = self._state.status
            if status in (ModelStatus.READY, ModelStatus.LOADING):
                LOGGER.debug("模型状态为 %s，忽略重复加载请求", status.value)
                return False
            # Failed 状态允许重试，直接进入 Loading。
            self._state = ModelState(status=ModelStatus.LOADING, message="Initializing...")

        def forward(update: ProgressUpdate) -> None:
            self._state = ModelState(
                status=ModelStatus.LOADING, percent=update.percent, message=update.message
            )
            if on_progress:
                on_progress(update)

        tracker = ProgressTracker(forward)
        try:
            tracker.report("Initializing...", 5)
            self._load_weights(tracker.report)
            tracker.report("Ready", 100)
        except ModelLoadError as exc:
            self._mark_failed(exc)
            raise
        except Exception as exc:  # noqa: BLE001
            error = ModelLoadError(f"模型加载失败: {exc}")
            self._mark_failed(error)
            raise error from exc

        self._state = ModelState(status=ModelStatus.READY, percent=100.0, message="Ready")
        LOGGER.info("模型加载完成")
        return True

    def generate(self, image: Image.Image, prompt: str, on_token: Optional[TokenCallback] = None) -> str:
        """对单张图片执行推理，流式回调累计文本并返回最终结果。"""

        if not self.is_ready:
            raise NotLoadedError("模型尚未加载完成")

        def emit(text: str) -> None:
            if on_token:
                on_token(text)

        # 底层模型独占设备资源，不支持并发生成。
        with self._generate_lock:
            try:
                return self._generate(image, prompt, emit)
            except (GenerationError, NotLoadedError):
                raise
            except Exception as exc:  # noqa: BLE001
                raise GenerationError(str(exc) or exc.__class__.__name__) from exc

    def _mark_failed(self, error: ModelLoadError) -> None:
        LOGGER.error("模型加载失败：%s", error)
        self._state = ModelState(status=ModelStatus.FAILED, message=str(error), error=error)

    def dispose(self) -> None:
        """释放模型资源，状态回到 Unloaded。"""

        with self._lock:
            if self._state.status is ModelStatus.LOADING:
                return
            self._release()
            self._state = ModelState()

    def _load_weights(self, report: ReportFn) -> None:
        raise NotImplementedError

    def _generate(self, image: Image.Image, prompt: str, on_token: TokenCallback) -> str:
        raise NotImplementedError

    def _release(self) -> None:
        return


def _make_download_tqdm(report: ReportFn):
    """构造一个将 snapshot_download 文件进度映射到 10%~90% 的 tqdm 子类。"""

    from tqdm.auto import tqdm

    class DownloadProgress(tqdm):
        def update(self, n=1):
            displayed = super().update(n)
            if self.total:
                fraction = min(self.n / self.total, 1.0)
                report("Downloading weights...", DOWNLOAD_START + fraction * (DOWNLOAD_END - DOWNLOAD_START))
            return displayed

    return DownloadProgress


def _make_stop_criteria(stop_event: threading.Event):
    """构造一个在 ``stop_event`` 被设置后让 ``model.generate`` 提前结束的停止条件。"""

    import torch
    from transformers import StoppingCriteria

    class StopOnEvent(StoppingCriteria):
        def __call__(self, input_ids, scores, **kwargs):
            return torch.full(
                (input_ids.shape[0],), stop_event.is_set(), dtype=torch.bool, device=input_ids.device
            )

    return StopOnEvent()


def stream_generation(
    run: Callable[[], None],
    streamer: Any,
    on_token: TokenCallback,
    stop_event: threading.Event,
) -> str:
    """在辅助线程中执行 ``run``，逐段读取 ``streamer`` 并回调累计文本。

    返回前一定等待辅助线程结束：回调抛出异常时先设置 ``stop_event``
    让模型尽快停止，再 join，保证设备上同一时刻只有一次生成。
    """

    failure: list[BaseException] = []

    def worker() -> None:
        try:
            run()
        except Exception as exc:  # noqa: BLE001
            failure.append(exc)
            streamer.end()

    thread = threading.Thread(target=worker, name="vision-generate", daemon=True)
    thread.start()

    generated = ""
    try:
        for chunk in streamer:
            if not chunk:
                continue
            generated += chunk
            on_token(generated)
    finally:
        stop_event.set()
        thread.join()

    if failure:
        raise GenerationError(str(failure[0])) from failure[0]
    return generated


class TransformersGateway(ModelGateway):
    """基于 transformers 的本地视觉语言模型实现。"""

    def __init__(self, config: Optional[ModelConfig] = None) -> None:
        super().__init__()
        self.config = config or ModelConfig()
        self.config.validate()
        self._processor: Any = None
        self._model: Any = None
        self._device: Any = None

    def _resolve_device(self):
        import torch

        has_cuda = torch.cuda.is_available()
        if self.config.require_accelerator and not has_cuda:
            raise ModelLoadError("未检测到可用的 GPU 加速，无法加载模型")
        if self.config.device == "cuda" and not has_cuda:
            raise ModelLoadError("指定了 cuda 设备，但当前环境不可用")
        if self.config.device == "cpu" or not has_cuda:
            return torch.device("cpu"), torch.float32
        return torch.device("cuda"), torch.bfloat16

    def _load_weights(self, report: ReportFn) -> None:
        from huggingface_hub import snapshot_download
        from huggingface_hub.errors import HfHubHTTPError
        from transformers import AutoModelForImageTextToText, AutoProcessor

        device, dtype = self._resolve_device()
        LOGGER.info("使用设备 %s 加载模型 %s", device, self.config.model_id)

        report("Downloading weights...", DOWNLOAD_START)
        try:
            local_dir = snapshot_download(
                self.config.model_id,
                cache_dir=self.config.cache_dir,
                tqdm_class=_make_download_tqdm(report),
            )
        except (HfHubHTTPError, OSError, ValueError) as exc:
            raise ModelLoadError(f"下载模型权重失败: {exc}") from exc

        report("Preparing model...", 92)
        try:
            processor = AutoProcessor.from_pretrained(local_dir)
            model = AutoModelForImageTextToText.from_pretrained(local_dir, dtype=dtype)
            model.to(device).eval()
        except (OSError, ValueError, RuntimeError) as exc:
            raise ModelLoadError(f"初始化模型失败: {exc}") from exc

        self._processor = processor
        self._model = model
        self._device = device

    def _generate(self, image: Image.Image, prompt: str, on_token: TokenCallback) -> str:
        import torch
        from transformers import StoppingCriteriaList, TextIteratorStreamer

        if self._model is None or self._processor is None:
            raise NotLoadedError("模型尚未加载完成")

        image = fit_longest_edge(image, self.config.longest_edge)
        messages = [
            {"role": "system", "content": [{"type": "text", "text": self.config.system_prompt}]},
            {"role": "user", "content": [{"type": "image"}, {"type": "text", "text": prompt}]},
        ]
        chat_text = self._processor.apply_chat_template(messages, add_generation_prompt=True)
        inputs = self._processor(images=[image], text=[chat_text], return_tensors="pt").to(self._device)

        streamer = TextIteratorStreamer(
            self._processor.tokenizer, skip_prompt=True, skip_special_tokens=True
        )
        stop_event = threading.Event()
        generate_kwargs = dict(
            **inputs,
            max_new_tokens=self.config.max_new_tokens,
            do_sample=False,
            repetition_penalty=self.config.repetition_penalty,
            streamer=streamer,
            stopping_criteria=StoppingCriteriaList([_make_stop_criteria(stop_event)]),
        )

        def run() -> None:
            with torch.inference_mode():
                self._model.generate(**generate_kwargs)

        return stream_generation(run, streamer, on_token, stop_event)

    def _release(self) -> None:
        self._model = None
        self._processor = None
        self._device = None
        try:
            import torch
        except ImportError:
            return
        if torch.cuda.is_available():
            torch.cuda.empty_cache()
