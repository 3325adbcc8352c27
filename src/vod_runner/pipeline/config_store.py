"""Task configuration: JSON document on disk, immutable snapshot in memory.

The document keeps the camelCase layout of the original ``configure.json``::

    {
      "pause": false,
      "checkInterval": 60,
      "tasks": [{"type": "convert", "sourceFolder": [...], "includeExt": ["mp4"], ...}],
      "convert": {...}, "combine": {...}, "split": {...},
      "screenshot": {...}, "upload": {...},
      "disableOnFailure": ["upload"]
    }
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from datetime import time
from pathlib import Path
from typing import Any

from vod_runner.pipeline.models import (
    BrowserSettings,
    CombineDefaults,
    ConvertDefaults,
    CustomConvertSetting,
    ExecutableWindow,
    MergeTask,
    RelocateTask,
    RunnerConfig,
    ScreenshotDefaults,
    SplitDefaults,
    Task,
    TaskCategory,
    TaskFilters,
    TransformTask,
    UploadCredentials,
    UploadDefaults,
    UploadTask,
)

logger = logging.getLogger(__name__)

CATEGORY_ALIASES: dict[str, TaskCategory] = {
    "convert": TaskCategory.TRANSFORM,
    "combine": TaskCategory.MERGE,
    "move": TaskCategory.RELOCATE,
    **{category.value: category for category in TaskCategory},
}


class ConfigError(ValueError):
    """Configuration missing, unreadable or malformed."""


class UnknownTaskCategoryError(ConfigError):
    """Task ``type`` does not name a known category."""

    def __init__(self, raw_type: object, *, index: int) -> None:
        super().__init__(f"Invalid task type at tasks[{index}]: {raw_type!r}")
        self.raw_type = raw_type
        self.index = index


def parse_category(raw_type: object, *, index: int) -> TaskCategory:
    if isinstance(raw_type, str):
        category = CATEGORY_ALIASES.get(raw_type.strip().lower())
        if category is not None:
            return category
    raise UnknownTaskCategoryError(raw_type, index=index)


class ConfigStore:
    """Reads fresh snapshots and applies explicit write-backs."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def load(self) -> RunnerConfig:
        """Read and validate the document; never cached between calls."""

        raw = self._read_document()
        return parse_config(raw, source_path=self.path)

    def disable_task(self, task: Task) -> bool:
        """Persist ``skip: true`` for the task's entry.

        Returns ``False`` when the entry no longer matches the task (the
        document was edited since the snapshot was taken).
        """

        raw = self._read_document()
        raw_tasks = raw.get("tasks")
        if not isinstance(raw_tasks, list) or not 0 <= task.index < len(raw_tasks):
            logger.warning("Cannot disable %s: entry no longer exists", task.describe())
            return False
        entry = raw_tasks[task.index]
        if not isinstance(entry, dict) or _safe_category(entry) is not task.category:
            logger.warning("Cannot disable %s: entry changed since last reload", task.describe())
            return False
        if entry.get("skip") is True:
            return True
        entry["skip"] = True
        self._write_document(raw)
        logger.warning("Task %s disabled in %s", task.describe(), self.path)
        return True

    def _read_document(self) -> dict[str, Any]:
        try:
            payload = json.loads(self.path.read_text("utf-8"))
        except FileNotFoundError as error:
            raise ConfigError(f"Cannot find configuration file: {self.path}") from error
        except (OSError, UnicodeDecodeError) as error:
            raise ConfigError(f"Cannot read configuration file {self.path}: {error}") from error
        except json.JSONDecodeError as error:
            raise ConfigError(f"Invalid JSON in {self.path}: {error}") from error
        if not isinstance(payload, dict):
            raise ConfigError(f"Expected JSON object in {self.path}")
        return payload

    def _write_document(self, payload: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            dir=self.path.parent,
            prefix=f".{self.path.name}.",
            suffix=".tmp",
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(payload, handle, ensure_ascii=False, indent=2)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise


def parse_config(raw: dict[str, Any], *, source_path: Path | None = None) -> RunnerConfig:
    """Validate a raw document and build the immutable snapshot."""

    pause = _bool(raw, "pause", "config", default=False)
    check_interval = raw.get("checkInterval")
    if isinstance(check_interval, bool) or not isinstance(check_interval, (int, float)):
        raise ConfigError("config.checkInterval must be a number of seconds")
    if check_interval <= 0:
        raise ConfigError("config.checkInterval must be > 0")

    raw_tasks = raw.get("tasks", [])
    if not isinstance(raw_tasks, list):
        raise ConfigError("config.tasks must be an array")
    tasks = tuple(_parse_task(entry, index=index) for index, entry in enumerate(raw_tasks))

    raw_disable = raw.get("disableOnFailure", [])
    if not isinstance(raw_disable, list):
        raise ConfigError("config.disableOnFailure must be an array")
    disable_on_failure = frozenset(
        parse_category(value, index=index) for index, value in enumerate(raw_disable)
    )

    return RunnerConfig(
        pause=pause,
        check_interval=float(check_interval),
        tasks=tasks,
        screenshot=_parse_screenshot(_section(raw, "screenshot")),
        convert=_parse_convert(_section(raw, "convert")),
        combine=_parse_combine(_section(raw, "combine")),
        split=_parse_split(_section(raw, "split")),
        upload=_parse_upload(_section(raw, "upload")),
        disable_on_failure=disable_on_failure,
        source_path=source_path,
    )


def _parse_task(entry: object, *, index: int) -> Task:
    where = f"tasks[{index}]"
    if not isinstance(entry, dict):
        raise ConfigError(f"{where} must be an object")
    category = parse_category(entry.get("type"), index=index)
    common: dict[str, Any] = {
        "index": index,
        "source_folders": tuple(Path(p) for p in _str_list(entry, "sourceFolder", where)),
        "filters": TaskFilters(
            include_ext=tuple(_str_list(entry, "includeExt", where)),
            includes=tuple(_str_list(entry, "includes", where)),
            excludes=tuple(_str_list(entry, "exceptions", where)),
        ),
        "skip": _bool(entry, "skip", where, default=False),
    }

    if category is TaskCategory.RELOCATE:
        return RelocateTask(**common, target_folder=Path(_str(entry, "targetFolder", where)))

    common["handle_folder"] = Path(_str(entry, "handleFolder", where))
    common["output_folder"] = Path(_str(entry, "outputFolder", where))
    common["keep_files"] = _bool(entry, "keepFiles", where, default=False)
    if category is TaskCategory.TRANSFORM:
        return TransformTask(
            **common,
            screenshot=_bool(entry, "screenshot", where, default=False),
            split=_bool(entry, "split", where, default=False),
            ffmpeg_setting=_optional_str(entry, "ffmpegSetting", where),
            suffix=_optional_str(entry, "suffix", where),
        )
    if category is TaskCategory.MERGE:
        return MergeTask(
            **common,
            screenshot=_bool(entry, "screenshot", where, default=False),
            split=_bool(entry, "split", where, default=False),
        )
    return UploadTask(**common)


def _parse_screenshot(raw: dict[str, Any]) -> ScreenshotDefaults:
    timestamps = raw.get("timestamp", [])
    if not isinstance(timestamps, list):
        raise ConfigError("screenshot.timestamp must be an array")
    return ScreenshotDefaults(
        output_folder=_optional_str(raw, "outputFolder", "screenshot"),
        count=_optional_int(raw, "count", "screenshot"),
        timestamps=tuple(timestamps),
        interval=_optional_number(raw, "interval", "screenshot"),
    )


def _parse_convert(raw: dict[str, Any]) -> ConvertDefaults:
    custom_raw = raw.get("customSetting", {})
    if not isinstance(custom_raw, dict):
        raise ConfigError("convert.customSetting must be an object")
    custom: dict[str, CustomConvertSetting] = {}
    for name, value in custom_raw.items():
        where = f"convert.customSetting.{name}"
        if not isinstance(value, dict):
            raise ConfigError(f"{where} must be an object")
        custom[name] = CustomConvertSetting(
            ffmpeg_setting=_str(value, "ffmpegSetting", where),
            suffix=_str(value, "suffix", where),
        )
    return ConvertDefaults(
        ext=_optional_str(raw, "ext", "convert") or "mp4",
        default_suffix=_optional_str(raw, "defaultSuffix", "convert") or "",
        default_ffmpeg_setting=_optional_str(raw, "defaultFFmpegSetting", "convert") or "",
        show_convert_cmd=_bool(raw, "showConvertCmd", "convert", default=False),
        custom_setting=custom,
    )


def _parse_combine(raw: dict[str, Any]) -> CombineDefaults:
    return CombineDefaults(
        suffix_for_combine=_optional_str(raw, "suffixForCombine", "combine") or "",
        file_name_clipper=_optional_str(raw, "fileNameClipper", "combine") or "_",
        show_combine_cmd=_bool(raw, "showCombineCmd", "combine", default=False),
    )


def _parse_split(raw: dict[str, Any]) -> SplitDefaults:
    return SplitDefaults(
        split_interval_in_sec=_optional_int(raw, "splitIntervalInSec", "split") or 0,
        invalid_maximum_duration=_optional_int(raw, "invalidMaximumDuration", "split"),
        show_split_cmd=_bool(raw, "showSplitCmd", "split", default=False),
    )


def _parse_upload(raw: dict[str, Any]) -> UploadDefaults:
    credentials = _section(raw, "credentials", where="upload")
    browser = _section(raw, "puppeteerSetting", where="upload")
    stream_list_path = _optional_str(raw, "streamListPath", "upload")
    return UploadDefaults(
        show_progress=_bool(raw, "showProgress", "upload", default=False),
        credentials=UploadCredentials(
            email=_optional_str(credentials, "email", "upload.credentials") or "",
            password=_optional_str(credentials, "pass", "upload.credentials") or "",
            recovery_email=_optional_str(credentials, "recoveryemail", "upload.credentials")
            or "",
        ),
        browser=BrowserSettings(
            executable_path=_optional_str(browser, "executablePath", "upload.puppeteerSetting")
            or "",
            headless=_bool(browser, "headless", "upload.puppeteerSetting", default=True),
        ),
        stream_list_path=Path(stream_list_path) if stream_list_path else None,
        skip_when_download_reach=_optional_int(raw, "skipWhenDownloadReach", "upload"),
        executable_time=_parse_window(raw.get("executableTime")),
    )


def _parse_window(raw: object) -> ExecutableWindow | None:
    if raw is None:
        return None
    where = "upload.executableTime"
    if not isinstance(raw, dict):
        raise ConfigError(f"{where} must be an object")
    offset = _optional_number(raw, "utcOffsetHours", where)
    return ExecutableWindow(
        start=_parse_time_of_day(raw.get("from"), where=f"{where}.from"),
        end=_parse_time_of_day(raw.get("to"), where=f"{where}.to"),
        utc_offset_hours=8.0 if offset is None else offset,
    )


def _parse_time_of_day(raw: object, *, where: str) -> time:
    if not isinstance(raw, dict):
        raise ConfigError(f"{where} must be an object with hour/min")
    hour = _optional_int(raw, "hour", where)
    minute = _optional_int(raw, "min", where) or 0
    if hour is None:
        raise ConfigError(f"{where}.hour is required")
    try:
        return time(hour=hour, minute=minute)
    except ValueError as error:
        raise ConfigError(f"{where}: {error}") from error


def _safe_category(entry: dict[str, Any]) -> TaskCategory | None:
    try:
        return parse_category(entry.get("type"), index=-1)
    except UnknownTaskCategoryError:
        return None


def _section(raw: dict[str, Any], key: str, *, where: str = "config") -> dict[str, Any]:
    value = raw.get(key, {})
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"{where}.{key} must be an object")
    return value


def _str(raw: dict[str, Any], key: str, where: str) -> str:
    value = raw.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(f"{where}.{key} must be a non-empty string")
    return value


def _optional_str(raw: dict[str, Any], key: str, where: str) -> str | None:
    value = raw.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ConfigError(f"{where}.{key} must be a string")
    return value


def _str_list(raw: dict[str, Any], key: str, where: str) -> list[str]:
    value = raw.get(key, [])
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ConfigError(f"{where}.{key} must be an array of strings")
    return value


def _bool(raw: dict[str, Any], key: str, where: str, *, default: bool) -> bool:
    value = raw.get(key, default)
    if value is None:
        return default
    if not isinstance(value, bool):
        raise ConfigError(f"{where}.{key} must be a boolean")
    return value


def _optional_int(raw: dict[str, Any], key: str, where: str) -> int | None:
    value = raw.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{where}.{key} must be an integer")
    return value


def _optional_number(raw: dict[str, Any], key: str, where: str) -> float | None:
    value = raw.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"{where}.{key} must be a number")
    return float(value)
