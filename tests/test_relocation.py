from __future__ import annotations

import errno
import logging
from pathlib import Path

import allure

from vod_runner.pipeline import relocation
from vod_runner.pipeline.models import TaskFilters
from vod_runner.pipeline.relocation import FileRelocationService, move_file
from vod_runner.pipeline.retry import RetryPolicy

pytestmark = [
    allure.epic("Runner Core"),
    allure.feature("File Relocation"),
]


def _service(sink=None, *, max_retries: int = 2) -> FileRelocationService:
    return FileRelocationService(
        retry_policy=RetryPolicy(max_retries=max_retries, delay_seconds=0),
        error_log=sink,
        sleep=lambda _: None,
    )


def test_move_files_moves_present_file_and_warns_once_for_missing(
    tmp_path: Path,
    touch,
    caplog,
) -> None:
    source = tmp_path / "src"
    target = tmp_path / "nested" / "dst"
    touch(source, "present.mp4")

    with caplog.at_level(logging.WARNING, logger="vod_runner.pipeline.relocation"):
        report = _service().move_files(["missing.mp4", "present.mp4"], source, target)

    assert report.moved == [target / "present.mp4"]
    assert report.missing == [source / "missing.mp4"]
    assert report.ok is True
    assert (target / "present.mp4").read_text("utf-8") == "present.mp4"
    assert not (source / "present.mp4").exists()
    warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
    assert len(warnings) == 1
    assert "Can not find file at" in warnings[0].getMessage()


def test_move_files_retries_busy_file(tmp_path: Path, touch, monkeypatch) -> None:
    source = tmp_path / "src"
    touch(source, "busy.mp4")
    real_move = relocation.move_file
    calls = 0

    def flaky_move(src: Path, dst: Path) -> None:
        nonlocal calls
        calls += 1
        if calls < 3:
            raise PermissionError(errno.EBUSY, "Resource busy", str(src))
        real_move(src, dst)

    monkeypatch.setattr(relocation, "move_file", flaky_move)

    report = _service(max_retries=2).move_files(["busy.mp4"], source, tmp_path / "dst")

    assert calls == 3
    assert report.moved == [tmp_path / "dst" / "busy.mp4"]


def test_move_files_records_terminal_failure_and_continues(
    tmp_path: Path,
    touch,
    monkeypatch,
    sink,
) -> None:
    source = tmp_path / "src"
    touch(source, "a.mp4", "b.mp4")
    real_move = relocation.move_file

    def stuck_on_a(src: Path, dst: Path) -> None:
        if src.name == "a.mp4":
            raise PermissionError(errno.EBUSY, "Resource busy", str(src))
        real_move(src, dst)

    monkeypatch.setattr(relocation, "move_file", stuck_on_a)

    report = _service(sink, max_retries=1).move_files(["a.mp4", "b.mp4"], source, tmp_path / "dst")

    assert report.failed == [source / "a.mp4"]
    assert report.moved == [tmp_path / "dst" / "b.mp4"]
    assert report.ok is False
    assert len(sink.records) == 1
    assert sink.records[0]["context"]["attempts"] == 2


def test_move_files_reports_file_that_vanishes_mid_retry_as_missing(
    tmp_path: Path,
    touch,
    monkeypatch,
    sink,
) -> None:
    source = tmp_path / "src"
    touch(source, "gone.mp4")
    calls = 0

    def picked_up_elsewhere(src: Path, dst: Path) -> None:
        nonlocal calls
        calls += 1
        if calls == 1:
            raise PermissionError(errno.EBUSY, "Resource busy", str(src))
        src.unlink(missing_ok=True)
        raise FileNotFoundError(errno.ENOENT, "No such file or directory", str(src))

    monkeypatch.setattr(relocation, "move_file", picked_up_elsewhere)

    report = _service(sink, max_retries=5).move_files(["gone.mp4"], source, tmp_path / "dst")

    assert calls == 2
    assert report.missing == [source / "gone.mp4"]
    assert report.failed == []
    assert report.ok is True
    assert sink.records == []


def test_move_file_falls_back_to_copy_on_cross_device_rename(
    tmp_path: Path,
    touch,
    monkeypatch,
) -> None:
    source = tmp_path / "src"
    touch(source, "clip.mp4")
    target = tmp_path / "dst"
    target.mkdir()

    def cross_device(*_: object) -> None:
        raise OSError(errno.EXDEV, "Invalid cross-device link")

    monkeypatch.setattr(relocation.os, "replace", cross_device)

    move_file(source / "clip.mp4", target / "clip.mp4")

    assert (target / "clip.mp4").read_text("utf-8") == "clip.mp4"
    assert not (source / "clip.mp4").exists()


def test_move_file_copies_when_devices_differ(tmp_path: Path, touch, monkeypatch) -> None:
    source = tmp_path / "src"
    touch(source, "clip.mp4")
    target = tmp_path / "dst"
    target.mkdir()

    def forbidden_rename(*_: object) -> None:
        raise AssertionError("rename must not be used across devices")

    monkeypatch.setattr(relocation, "_same_device", lambda *_: False)
    monkeypatch.setattr(relocation.os, "replace", forbidden_rename)

    move_file(source / "clip.mp4", target / "clip.mp4")

    assert (target / "clip.mp4").exists()
    assert not (source / "clip.mp4").exists()


def test_move_paths_groups_by_parent(tmp_path: Path, touch) -> None:
    touch(tmp_path / "one", "a.mp4")
    touch(tmp_path / "two", "b.mp4")

    report = _service().move_paths(
        [tmp_path / "one" / "a.mp4", tmp_path / "two" / "b.mp4"],
        tmp_path / "dst",
    )

    assert sorted(path.name for path in report.moved) == ["a.mp4", "b.mp4"]


def test_delete_files_is_best_effort(tmp_path: Path, touch, sink, caplog) -> None:
    touch(tmp_path, "old.mp4")
    directory = tmp_path / "not-a-file"
    directory.mkdir()

    report = _service(sink).delete_files(
        [tmp_path / "old.mp4", tmp_path / "gone.mp4", directory],
    )

    assert report.deleted == [tmp_path / "old.mp4"]
    assert report.missing == [tmp_path / "gone.mp4"]
    assert report.failed == [directory]
    assert sink.records[0]["source"] == "relocation"
    assert "Can not delete missing file" in caplog.text


def test_gather_pulls_matching_files_and_skips_destination(tmp_path: Path, touch) -> None:
    incoming = tmp_path / "incoming"
    handle = tmp_path / "handle"
    touch(incoming, "a.mp4", "skip.txt")
    touch(handle, "already.mp4")

    report = _service().gather(
        [incoming, handle],
        handle,
        TaskFilters(include_ext=("mp4",)),
    )

    assert report.moved == [handle / "a.mp4"]
    assert (incoming / "skip.txt").exists()
    assert sorted(p.name for p in handle.iterdir()) == ["a.mp4", "already.mp4"]


def test_gather_without_source_folders_is_noop(tmp_path: Path) -> None:
    report = _service().gather([], tmp_path / "handle", TaskFilters(include_ext=("mp4",)))

    assert report.moved == []
    assert not (tmp_path / "handle").exists()
