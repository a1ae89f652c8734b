"""Tkinter 图形界面实现。"""

from __future__ import annotations

import logging
import queue
import threading
import tkinter as tk
from pathlib import Path
from tkinter import filedialog, messagebox, ttk
from typing import Dict, Optional

from PIL import ImageTk

from vision_batch.core.config import AppConfig
from vision_batch.core.exceptions import VisionBatchError
from vision_batch.core.export import default_export_filename, write_csv
from vision_batch.core.models import BatchSummary, ResultRow, ResultsTable
from vision_batch.core.progress import ProgressUpdate
from vision_batch.processing.session import VisionSession
from vision_batch.utils.logging import setup_logging

LOGGER = logging.getLogger(__name__)

RESPONSE_PREVIEW_CHARS = 400


class TextWidgetHandler(logging.Handler):
    """Logging handler that writes records into a Tk Text widget."""

    def __init__(self, widget: tk.Text) -> None:
        super().__init__()
        self._widget = widget

    def emit(self, record: logging.LogRecord) -> None:  # noqa: D401 - standard logging handler signature
        message = self.format(record)
        # Schedule UI update on main thread
        self._widget.after(0, self._write, message)

    def _write(self, message: str) -> None:
        if not self._widget.winfo_exists():
            return
        self._widget.configure(state=tk.NORMAL)
        self._widget.insert(tk.END, message + "\n")
        self._widget.configure(state=tk.DISABLED)
        self._widget.see(tk.END)


class VisionBatchApp(tk.Tk):
    """Tkinter 主窗口。"""

    def __init__(self, config: Optional[AppConfig] = None) -> None:
        super().__init__()
        self.title("Vision Batch")
        self.geometry("1000x700")
        setup_logging()

        self.session = VisionSession(config)
        self.default_dir = Path.home()
        self._worker_thread: Optional[threading.Thread] = None
        self._event_queue: queue.Queue = queue.Queue()
        self._thumbnails: Dict[int, ImageTk.PhotoImage] = {}

        self._build_ui()
        self._install_log_handler()
        self.session.table.subscribe(lambda index: self._event_queue.put(("table", index)))
        self._refresh_controls()
        self.protocol("WM_DELETE_WINDOW", self._handle_close)
        self.after(100, self._poll_queue)

    # ---------------------- UI 构建 ---------------------- #

    def _build_ui(self) -> None:
        container = ttk.Frame(self, padding=12)
        container.pack(fill=tk.BOTH, expand=True)

        self._build_model_section(container)
        self._build_input_section(container)
        self._build_results_section(container)
        self._build_log_section(container)

    def _build_model_section(self, parent: tk.Widget) -> None:
        frame = ttk.LabelFrame(parent, text="模型", padding=8)
        frame.pack(fill=tk.X, expand=False)

        self.load_button = ttk.Button(frame, text="加载模型", command=self._start_load_model)
        self.load_button.pack(side=tk.LEFT)

        self.status_var = tk.StringVar(value=self.session.status)
        ttk.Label(frame, textvariable=self.status_var, width=40).pack(side=tk.LEFT, padx=(8, 8))

        self.progress_var = tk.DoubleVar(value=0.0)
        self.progress_bar = ttk.Progressbar(frame, variable=self.progress_var, maximum=100)
        self.progress_bar.pack(side=tk.LEFT, fill=tk.X, expand=True)

    def _build_input_section(self, parent: tk.Widget) -> None:
        frame = ttk.LabelFrame(parent, text="输入", padding=8)
        frame.pack(fill=tk.X, pady=8)

        self.archive_button = ttk.Button(frame, text="选择压缩包", command=self._select_archive)
        self.archive_button.grid(row=0, column=0, sticky=tk.W)
        self.archive_var = tk.StringVar(value="未选择")
        ttk.Label(frame, textvariable=self.archive_var).grid(row=0, column=1, columnspan=3, sticky=tk.W, padx=4)

        ttk.Label(frame, text="提示词:").grid(row=1, column=0, sticky=tk.W, pady=4)
        self.prompt_var = tk.StringVar(value=self.session.config.default_prompt)
        ttk.Entry(frame, textvariable=self.prompt_var, width=70).grid(row=1, column=1, sticky=tk.EW, padx=4)

        self.run_button = ttk.Button(frame, text="开始推理", command=self._start_run)
        self.run_button.grid(row=1, column=2, padx=4)
        self.export_button = ttk.Button(frame, text="导出 CSV", command=self._export)
        self.export_button.grid(row=1, column=3, padx=4)

        frame.columnconfigure(1, weight=1)

    def _build_results_section(self, parent: tk.Widget) -> None:
        frame = ttk.LabelFrame(parent, text="结果", padding=8)
        frame.pack(fill=tk.BOTH, expand=True)

        style = ttk.Style(self)
        style.configure("Results.Treeview", rowheight=72)

        self.results_tree = ttk.Treeview(
            frame, columns=("file", "response"), style="Results.Treeview", height=6
        )
        self.results_tree.heading("#0", text="预览")
        self.results_tree.heading("file", text="File Name")
        self.results_tree.heading("response", text="Response")
        self.results_tree.column("#0", width=100, stretch=False)
        self.results_tree.column("file", width=180, stretch=False)
        self.results_tree.column("response", width=600)

        scrollbar = ttk.Scrollbar(frame, orient=tk.VERTICAL, command=self.results_tree.yview)
        self.results_tree.configure(yscrollcommand=scrollbar.set)
        self.results_tree.pack(side=tk.LEFT, fill=tk.BOTH, expand=True)
        scrollbar.pack(side=tk.RIGHT, fill=tk.Y)

    def _build_log_section(self, parent: tk.Widget) -> None:
        frame = ttk.LabelFrame(parent, text="日志", padding=6)
        frame.pack(fill=tk.BOTH, expand=False, pady=(8, 0))
        self.log_text = tk.Text(frame, height=8, state=tk.DISABLED)
        self.log_text.pack(fill=tk.BOTH, expand=True)

    def _install_log_handler(self) -> None:
        self._log_handler = TextWidgetHandler(self.log_text)
        self._log_handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s: %(message)s"))
        logging.getLogger("vision_batch").addHandler(self._log_handler)

    # ---------------------- 事件处理 ---------------------- #

    def _worker_busy(self) -> bool:
        return bool(self._worker_thread and self._worker_thread.is_alive())

    def _start_worker(self, target, *args) -> None:
        self._worker_thread = threading.Thread(target=target, args=args, daemon=True)
        self._worker_thread.start()
        self._refresh_controls()

    def _start_load_model(self) -> None:
        if self._worker_busy():
            messagebox.showinfo("提示", "任务正在执行中，请稍候。")
            return
        if self.session.gateway.is_ready:
            return
        self.progress_var.set(0)
        self._start_worker(self._run_load_thread)

    def _run_load_thread(self) -> None:
        def progress_callback(update: ProgressUpdate) -> None:
            self._event_queue.put(("load-progress", update))

        try:
            self.session.load_model(progress_callback)
            self._event_queue.put(("load-done", None))
        except VisionBatchError as exc:
            self._event_queue.put(("load-error", str(exc)))

    def _select_archive(self) -> None:
        if self._worker_busy() or self.session.runner.is_running:
            return
        filename = filedialog.askopenfilename(
            title="选择图片压缩包", filetypes=[("ZIP 压缩包", "*.zip")], initialdir=str(self.default_dir)
        )
        if not filename:
            return
        path = Path(filename)
        try:
            count = self.session.open_archive(path)
        except VisionBatchError as exc:
            self.status_var.set(self.session.status)
            messagebox.showerror("压缩包错误", str(exc))
            return
        self.default_dir = path.parent
        self.archive_var.set(f"{path.name}（{count} 张图片）")
        self.status_var.set(self.session.status)
        self._refresh_controls()

    def _start_run(self) -> None:
        if self._worker_busy():
            messagebox.showinfo("提示", "任务正在执行中，请稍候。")
            return
        if not self.session.runner.can_run():
            messagebox.showwarning("提示", "请先加载模型并选择包含图片的压缩包。")
            return
        self._start_worker(self._run_batch_thread, self.prompt_var.get())

    def _run_batch_thread(self, prompt: str) -> None:
        try:
            summary = self.session.run(prompt)
            self._event_queue.put(("run-done", summary))
        except Exception as exc:  # noqa: BLE001
            LOGGER.exception("批处理异常")
            self._event_queue.put(("run-error", str(exc)))

    def _export(self) -> None:
        if not self.session.can_export():
            return
        filename = filedialog.asksaveasfilename(
            title="导出 CSV",
            defaultextension=".csv",
            initialfile=default_export_filename(prefix=self.session.config.export.filename_prefix),
            initialdir=str(self.default_dir),
            filetypes=[("CSV 文件", "*.csv")],
        )
        if not filename:
            return
        try:
            path = write_csv(self.session.table, Path(filename))
        except OSError as exc:
            messagebox.showerror("导出失败", str(exc))
            return
        self._append_status(f"已导出 {path.name}")

    def _poll_queue(self) -> None:
        try:
            while True:
                kind, payload = self._event_queue.get_nowait()
                if kind == "table":
                    self._handle_table_change(payload)
                elif kind == "load-progress":
                    self._handle_load_progress(payload)
                elif kind == "load-done":
                    self._handle_load_done()
                elif kind == "load-error":
                    self._handle_error("模型加载失败", payload)
                elif kind == "run-done":
                    self._handle_run_done(payload)
                elif kind == "run-error":
                    self._handle_error("批处理失败", payload)
        except queue.Empty:
            pass
        finally:
            self.after(100, self._poll_queue)

    def _handle_table_change(self, index: Optional[int]) -> None:
        if index is None:
            self._rebuild_results()
            return
        row = _row_at(self.session.table, index)
        if row is None:
            return
        item_id = str(index)
        if self.results_tree.exists(item_id):
            self.results_tree.item(item_id, values=(row.file_name, _shorten(row.response)))
            self.results_tree.see(item_id)

    def _rebuild_results(self) -> None:
        self.results_tree.delete(*self.results_tree.get_children())
        self._thumbnails.clear()
        for index, row in enumerate(self.session.table):
            options = {}
            if row.preview is not None:
                self._thumbnails[index] = ImageTk.PhotoImage(row.preview)
                options["image"] = self._thumbnails[index]
            self.results_tree.insert(
                "", tk.END, iid=str(index), values=(row.file_name, _shorten(row.response)), **options
            )
        self._refresh_controls()

    def _handle_load_progress(self, update: ProgressUpdate) -> None:
        self.progress_var.set(update.percent)
        self.status_var.set(f"{update.message} {update.percent:.0f}%")

    def _handle_load_done(self) -> None:
        self._worker_thread = None
        self.progress_var.set(100)
        self.status_var.set(self.session.status)
        self._refresh_controls()

    def _handle_run_done(self, summary: Optional[BatchSummary]) -> None:
        self._worker_thread = None
        self._refresh_controls()
        if summary is None:
            return
        self.status_var.set(self.session.status)
        messagebox.showinfo("完成", f"成功 {summary.succeeded} 张，失败 {summary.failed} 张。")

    def _handle_error(self, title: str, message: str) -> None:
        self._worker_thread = None
        self.status_var.set(self.session.status)
        self._refresh_controls()
        messagebox.showerror(title, message)

    def _refresh_controls(self) -> None:
        busy = self._worker_busy()
        ready = self.session.gateway.is_ready
        self.load_button.configure(state=tk.DISABLED if busy or ready else tk.NORMAL)
        self.archive_button.configure(state=tk.DISABLED if busy or self.session.runner.is_running else tk.NORMAL)
        self.run_button.configure(state=tk.NORMAL if not busy and self.session.runner.can_run() else tk.DISABLED)
        self.export_button.configure(state=tk.NORMAL if not busy and self.session.can_export() else tk.DISABLED)

    def _append_status(self, text: str) -> None:
        LOGGER.info(text)
        self.status_var.set(text)

    def _handle_close(self) -> None:
        if self._worker_busy() and not messagebox.askokcancel("退出", "任务仍在执行，确定退出吗？"):
            return
        logging.getLogger("vision_batch").removeHandler(self._log_handler)
        self.session.dispose()
        self.destroy()


def _row_at(table: ResultsTable, index: int) -> Optional[ResultRow]:
    """事件入队后表格可能已被更小的压缩包替换，越界时返回 None。"""

    if 0 <= index < len(table):
        return table[index]
    return None


def _shorten(text: str) -> str:
    flattened = " ".join(text.split())
    if len(flattened) <= RESPONSE_PREVIEW_CHARS:
        return flattened
    return flattened[: RESPONSE_PREVIEW_CHARS - 1] + "…"


def run_gui() -> None:
    """启动 GUI 应用。"""

    app = VisionBatchApp()
    app.mainloop()


if __name__ == "__main__":
    run_gui()
