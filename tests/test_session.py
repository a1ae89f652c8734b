"""环节六：会话控制器的端到端流程。"""

from __future__ import annotations

import csv
import threading
from pathlib import Path

import pytest

from helpers import ExplodingGateway, FakeGateway, build_zip, png_bytes
from vision_batch.core.config import AppConfig, ExportConfig
from vision_batch.core.exceptions import ArchiveFormatError, ModelLoadError
from vision_batch.core.models import RunStatus
from vision_batch.processing import session as session_module
from vision_batch.processing.session import VisionSession


def make_session(tmp_path: Path, gateway: FakeGateway | None = None) -> VisionSession:
    config = AppConfig(export=ExportConfig(output_dir=tmp_path))
    return VisionSession(config, gateway=gateway or FakeGateway(responses=["a, b", "c"]))


def test_full_flow_exports_csv(tmp_path: Path) -> None:
    session = make_session(tmp_path)
    archive = tmp_path / "images.zip"
    archive.write_bytes(build_zip([("x/a.png", png_bytes()), ("b.jpg", png_bytes(fmt="JPEG"))]))

    assert session.load_model() is True
    assert session.progress == 100
    assert session.open_archive(archive) == 2
    assert session.can_export() is False

    summary = session.run()
    path = session.export()

    assert summary is not None and summary.succeeded == 2
    assert session.runner.state.status is RunStatus.COMPLETED
    assert path is not None and path.parent == tmp_path
    with path.open("r", encoding="utf-8", newline="") as handle:
        rows = list(csv.reader(handle))
    assert rows == [["File Name", "Response"], ["a.png", "a, b"], ["b.jpg", "c"]]


def test_invalid_archive_keeps_existing_table(tmp_path: Path) -> None:
    session = make_session(tmp_path)
    session.open_archive(build_zip([("a.png", png_bytes())]))

    with pytest.raises(ArchiveFormatError):
        session.open_archive(b"garbage")

    assert len(session.table) == 1
    assert session.status.startswith("Invalid archive")


def test_new_archive_replaces_table(tmp_path: Path) -> None:
    session = make_session(tmp_path)
    session.load_model()
    session.open_archive(build_zip([("a.png", png_bytes())]))
    session.run()
    notifications: list[object] = []
    session.table.subscribe(notifications.append)

    session.open_archive(build_zip([("b.png", png_bytes()), ("c.png", png_bytes())]))

    assert [row.file_name for row in session.table] == ["b.png", "c.png"]
    assert all(row.response == "" for row in session.table)
    assert notifications == [None]


def test_load_failure_sets_status_and_allows_retry(tmp_path: Path) -> None:
    session = make_session(tmp_path, gateway=FakeGateway(load_failures=1))

    with pytest.raises(ModelLoadError):
        session.load_model()
    assert session.status.startswith("Model load failed")

    assert session.load_model() is True
    assert session.status == "Ready"


def test_load_error_from_gateway_is_surfaced(tmp_path: Path) -> None:
    session = make_session(tmp_path, gateway=ExplodingGateway())

    with pytest.raises(ModelLoadError):
        session.load_model()

    assert "accelerator" in session.status
    assert session.progress == 0


def test_run_without_model_is_noop(tmp_path: Path) -> None:
    session = make_session(tmp_path)
    session.open_archive(build_zip([("a.png", png_bytes())]))

    assert session.run("Describe this image") is None
    assert session.runner.state.status is RunStatus.IDLE
    assert session.export() is None


def test_archive_parsed_while_run_starts_does_not_replace_table(tmp_path: Path, monkeypatch) -> None:
    gateway = FakeGateway()
    session = make_session(tmp_path, gateway=gateway)
    session.load_model()
    session.open_archive(build_zip([("a.png", png_bytes()), ("b.png", png_bytes("blue"))]))

    started = threading.Event()
    release = threading.Event()

    def hold(index: int) -> None:
        started.set()
        release.wait(5)

    gateway.before_generate = hold
    worker = threading.Thread(target=session.run)
    real_load_archive = session_module.load_archive

    def load_while_run_starts(source, config):
        assets = real_load_archive(source, config)
        worker.start()
        assert started.wait(5)
        return assets

    monkeypatch.setattr(session_module, "load_archive", load_while_run_starts)

    count = session.open_archive(build_zip([("c.png", png_bytes())]))
    release.set()
    worker.join(5)

    assert count == 2
    assert [row.file_name for row in session.table] == ["a.png", "b.png"]
    assert session.runner.state.status is RunStatus.COMPLETED
    assert all(row.response for row in session.table)
