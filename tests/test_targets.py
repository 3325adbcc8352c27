from __future__ import annotations

from pathlib import Path

import allure

from vod_runner.pipeline.models import TaskFilters
from vod_runner.pipeline.targets import enumerate_targets, extension_of, is_target_file

pytestmark = [
    allure.epic("Runner Core"),
    allure.feature("Target Enumeration"),
]


def test_enumerate_targets_applies_includes_extensions_and_exclusions(
    tmp_path: Path,
    touch,
) -> None:
    folder = tmp_path / "records"
    touch(folder, "live_a.mp4", "live_b.flv", "live_c_tmp.mp4", "other.mp4", "live_d.MP4")

    result = enumerate_targets(
        [folder],
        TaskFilters(include_ext=("mp4", "flv"), includes=("live",), excludes=("tmp",)),
    )

    assert result == {folder: ["live_a.mp4", "live_b.flv"]}


def test_enumerate_targets_rejects_everything_without_allowed_extensions(
    tmp_path: Path,
    touch,
) -> None:
    folder = tmp_path / "records"
    touch(folder, "a.mp4")

    assert enumerate_targets([folder], TaskFilters()) == {}


def test_enumerate_targets_omits_empty_and_missing_folders(tmp_path: Path, touch, caplog) -> None:
    with_match = tmp_path / "one"
    without_match = tmp_path / "two"
    touch(with_match, "b.mp4", "a.mp4")
    touch(without_match, "notes.txt")
    (with_match / "nested.mp4").mkdir()

    result = enumerate_targets(
        [with_match, without_match, tmp_path / "missing"],
        TaskFilters(include_ext=("mp4",)),
    )

    assert result == {with_match: ["a.mp4", "b.mp4"]}
    assert "Folder not found" in caplog.text


def test_enumerate_targets_is_deterministic(tmp_path: Path, touch) -> None:
    folder = tmp_path / "records"
    touch(folder, "c.mp4", "a.mp4", "b.mp4")
    filters = TaskFilters(include_ext=("mp4",))

    first = enumerate_targets([folder], filters)
    second = enumerate_targets([folder], filters)

    assert first == second
    assert all(names for names in first.values())


def test_extension_rules_follow_splitext() -> None:
    assert extension_of("archive.tar.gz") == "gz"
    assert extension_of(".hidden") == ""
    assert extension_of("noext") == ""
    assert is_target_file("clip.ts", TaskFilters(include_ext=("ts",))) is True
    assert is_target_file("clip.TS", TaskFilters(include_ext=("ts",))) is False
