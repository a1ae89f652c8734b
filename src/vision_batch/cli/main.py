"""命令行入口。"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
    TimeRemainingColumn,
)
from rich.table import Table

from vision_batch.core.config import DEFAULT_MODEL_ID, DEFAULT_PROMPT, AppConfig, ExportConfig, ModelConfig
from vision_batch.core.exceptions import VisionBatchError
from vision_batch.core.progress import ProgressUpdate
from vision_batch.processing.archive import extract_images_from_path
from vision_batch.processing.session import VisionSession
from vision_batch.utils.logging import setup_logging

app = typer.Typer(help="批量图片视觉问答与 CSV 导出工具。")
console = Console()
LOGGER = logging.getLogger(__name__)


def _build_load_callback(progress: Progress):
    task_id = progress.add_task("加载模型", total=100)

    def callback(update: ProgressUpdate) -> None:
        progress.update(task_id, completed=update.percent, description=update.message)

    return callback


def _build_row_callback(progress: Progress):
    task_id: Optional[int] = None

    def callback(completed: int, total: int) -> None:
        nonlocal task_id
        if task_id is None:
            task_id = progress.add_task("推理图片", total=total)
        progress.update(task_id, completed=completed)

    return callback


def _new_progress() -> Progress:
    return Progress(
        SpinnerColumn(),
        TextColumn("[bold blue]{task.description}"),
        BarColumn(),
        TimeElapsedColumn(),
        TimeRemainingColumn(),
        console=console,
    )


@app.command("run")
def run_cli(  # noqa: PLR0913
    archive: Path = typer.Argument(..., exists=True, dir_okay=False, help="包含图片的 ZIP 压缩包"),
    prompt: str = typer.Option(DEFAULT_PROMPT, "--prompt", "-p", help="对每张图片使用的提示词"),
    output: Path = typer.Option(Path("."), "--output", "-o", help="CSV 输出目录"),
    model_id: str = typer.Option(DEFAULT_MODEL_ID, "--model-id", help="Hugging Face 模型 ID"),
    device: str = typer.Option("auto", "--device", help="运行设备 auto/cuda/cpu"),
    max_new_tokens: int = typer.Option(512, "--max-new-tokens", help="每张图片的最大生成长度"),
    require_gpu: bool = typer.Option(False, "--require-gpu", help="没有 GPU 时直接报错"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="输出调试日志"),
) -> None:
    """载入模型并对压缩包内的所有图片执行推理，结果导出为 CSV。"""

    setup_logging(logging.DEBUG if verbose else logging.INFO)

    config = AppConfig(
        model=ModelConfig(
            model_id=model_id,
            device=device,
            max_new_tokens=max_new_tokens,
            require_accelerator=require_gpu,
        ),
        export=ExportConfig(output_dir=output.expanduser().resolve()),
    )

    try:
        session = VisionSession(config)
        count = session.open_archive(archive.expanduser().resolve())
        if count == 0:
            typer.echo("压缩包中没有可处理的图片。")
            raise typer.Exit(code=0)

        with _new_progress() as progress:
            session.load_model(_build_load_callback(progress))
        with _new_progress() as progress:
            summary = session.run(prompt, on_row=_build_row_callback(progress))
        csv_path = session.export()
    except VisionBatchError as exc:
        typer.secho(f"执行失败：{exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1) from exc

    if summary is not None:
        typer.echo(f"处理完成：成功 {summary.succeeded} 张，失败 {summary.failed} 张。")
    if csv_path:
        typer.echo(f"结果文件：{csv_path}")
    session.dispose()


@app.command("list")
def list_cli(
    archive: Path = typer.Argument(..., exists=True, dir_okay=False, help="包含图片的 ZIP 压缩包"),
) -> None:
    """列出压缩包中会被处理的图片，不加载模型。"""

    setup_logging(logging.WARNING)
    try:
        assets = extract_images_from_path(archive.expanduser().resolve())
    except VisionBatchError as exc:
        typer.secho(f"执行失败：{exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1) from exc

    table = Table("#", "File Name", "Size", "Entry")
    for idx, asset in enumerate(assets, start=1):
        size = f"{asset.image.width}x{asset.image.height}" if asset.image else f"[red]{asset.error}[/red]"
        table.add_row(str(idx), asset.name, size, asset.entry_path)
    console.print(table)
    typer.echo(f"共 {len(assets)} 张图片。")


@app.command("gui")
def gui_cli() -> None:
    """启动图形界面。"""

    from vision_batch.gui.app import run_gui

    run_gui()


if __name__ == "__main__":
    app()
