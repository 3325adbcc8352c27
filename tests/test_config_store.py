from __future__ import annotations

import json
from datetime import time
from pathlib import Path

import allure
import pytest

from vod_runner.pipeline.config_store import (
    ConfigError,
    ConfigStore,
    UnknownTaskCategoryError,
    parse_config,
)
from vod_runner.pipeline.models import (
    MergeTask,
    RelocateTask,
    TaskCategory,
    TaskFilters,
    TransformTask,
    UploadTask,
)

pytestmark = [
    allure.epic("Runner Core"),
    allure.feature("Task Configuration"),
]


def _document(**overrides):
    document = {
        "pause": False,
        "checkInterval": 30,
        "tasks": [
            {
                "type": "convert",
                "sourceFolder": ["/rec/a", "/rec/b"],
                "handleFolder": "/work/convert",
                "outputFolder": "/out/convert",
                "includeExt": ["flv"],
                "includes": ["live"],
                "exceptions": ["tmp"],
                "screenshot": True,
                "ffmpegSetting": "-c copy",
                "suffix": "_fixed",
            },
            {
                "type": "combine",
                "sourceFolder": [],
                "handleFolder": "/work/combine",
                "outputFolder": "/out/combine",
                "includeExt": ["mp4"],
                "keepFiles": True,
            },
            {
                "type": "upload",
                "sourceFolder": ["/out/combine"],
                "handleFolder": "/work/upload",
                "outputFolder": "/out/uploaded",
                "includeExt": ["mp4"],
                "skip": True,
            },
            {
                "type": "move",
                "sourceFolder": ["/out/uploaded"],
                "targetFolder": "/archive",
                "includeExt": ["mp4"],
            },
        ],
        "upload": {
            "credentials": {"email": "me@example.com", "pass": "secret"},
            "streamListPath": "/var/streams.json",
            "skipWhenDownloadReach": 2,
            "executableTime": {"from": {"hour": 1, "min": 30}, "to": {"hour": 6}},
        },
        "convert": {
            "ext": "mkv",
            "customSetting": {"fast": {"ffmpegSetting": "-preset fast", "suffix": "_f"}},
        },
    }
    document.update(overrides)
    return document


def test_parse_config_builds_typed_tasks_from_original_names() -> None:
    config = parse_config(_document(), source_path=Path("configure.json"))

    transform, merge, upload, relocate = config.tasks
    assert isinstance(transform, TransformTask)
    assert transform.category is TaskCategory.TRANSFORM
    assert transform.source_folders == (Path("/rec/a"), Path("/rec/b"))
    assert transform.filters == TaskFilters(
        include_ext=("flv",),
        includes=("live",),
        excludes=("tmp",),
    )
    assert transform.screenshot is True
    assert transform.ffmpeg_setting == "-c copy"
    assert isinstance(merge, MergeTask)
    assert merge.keep_files is True
    assert isinstance(upload, UploadTask)
    assert upload.skip is True
    assert isinstance(relocate, RelocateTask)
    assert relocate.target_folder == Path("/archive")
    assert [task.index for task in config.tasks] == [0, 1, 2, 3]
    assert config.check_interval == 30.0
    assert config.convert.ext == "mkv"
    assert config.convert.custom_setting["fast"].suffix == "_f"
    assert config.upload.credentials.password == "secret"
    assert config.upload.skip_when_download_reach == 2
    assert config.upload.executable_time is not None
    assert config.upload.executable_time.start == time(1, 30)
    assert config.upload.executable_time.end == time(6, 0)
    assert config.upload.executable_time.utc_offset_hours == 8.0
    assert config.source_path == Path("configure.json")


def test_parse_config_accepts_canonical_category_names() -> None:
    document = _document(
        tasks=[{"type": "relocate", "sourceFolder": [], "targetFolder": "/x"}],
        disableOnFailure=["upload", "combine"],
    )

    config = parse_config(document)

    assert isinstance(config.tasks[0], RelocateTask)
    assert config.disable_on_failure == frozenset({TaskCategory.UPLOAD, TaskCategory.MERGE})


def test_parse_config_rejects_unknown_task_type_loudly() -> None:
    document = _document(tasks=[{"type": "transcode", "handleFolder": "/w", "outputFolder": "/o"}])

    with pytest.raises(UnknownTaskCategoryError, match="tasks\\[0\\]") as exc_info:
        parse_config(document)

    assert exc_info.value.raw_type == "transcode"
    assert isinstance(exc_info.value, ConfigError)


@pytest.mark.parametrize("interval", [0, -5, "60", None, True])
def test_parse_config_requires_positive_check_interval(interval) -> None:
    with pytest.raises(ConfigError, match="checkInterval"):
        parse_config(_document(checkInterval=interval))


def test_parse_config_requires_handle_folder_for_worker_tasks() -> None:
    document = _document(tasks=[{"type": "upload", "outputFolder": "/o"}])

    with pytest.raises(ConfigError, match="handleFolder"):
        parse_config(document)


def test_config_store_reloads_fresh_snapshot_every_call(write_config) -> None:
    store = write_config(_document())
    first = store.load()

    store.path.write_text(json.dumps(_document(pause=True, tasks=[])), "utf-8")
    second = store.load()

    assert first.pause is False
    assert len(first.tasks) == 4
    assert second.pause is True
    assert second.tasks == ()


def test_config_store_reports_missing_and_invalid_documents(tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="Cannot find configuration file"):
        ConfigStore(tmp_path / "absent.json").load()

    broken = tmp_path / "broken.json"
    broken.write_text("{not json", "utf-8")
    with pytest.raises(ConfigError, match="Invalid JSON"):
        ConfigStore(broken).load()


def test_disable_task_persists_skip_flag(write_config) -> None:
    store = write_config(_document())
    merge = store.load().tasks[1]

    assert store.disable_task(merge) is True

    raw = json.loads(store.path.read_text("utf-8"))
    assert raw["tasks"][1]["skip"] is True
    assert "skip" not in raw["tasks"][0]
    assert raw["upload"]["credentials"]["pass"] == "secret"
    assert store.load().tasks[1].skip is True


def test_disable_task_refuses_when_entry_changed(write_config) -> None:
    store = write_config(_document())
    merge = store.load().tasks[1]
    document = _document()
    document["tasks"][1]["type"] = "upload"
    store.path.write_text(json.dumps(document), "utf-8")

    assert store.disable_task(merge) is False
    assert "skip" not in json.loads(store.path.read_text("utf-8"))["tasks"][1]
