"""Domain models for tasks, configuration snapshots and dispatch outcomes."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import time
from enum import Enum
from pathlib import Path
from typing import Any


class TaskCategory(str, Enum):
    """Kinds of schedulable work."""

    TRANSFORM = "transform"
    MERGE = "merge"
    UPLOAD = "upload"
    RELOCATE = "relocate"


class Lane(str, Enum):
    """Mutually exclusive execution lanes; one batch in flight per lane."""

    TRANSFORM_MERGE = "transform_merge"
    UPLOAD = "upload"
    RELOCATE = "relocate"


LANE_BY_CATEGORY: dict[TaskCategory, Lane] = {
    TaskCategory.TRANSFORM: Lane.TRANSFORM_MERGE,
    TaskCategory.MERGE: Lane.TRANSFORM_MERGE,
    TaskCategory.UPLOAD: Lane.UPLOAD,
    TaskCategory.RELOCATE: Lane.RELOCATE,
}

# Worker process kind launched for each out-of-process category.
WORKER_KIND_BY_CATEGORY: dict[TaskCategory, str] = {
    TaskCategory.TRANSFORM: "convert",
    TaskCategory.MERGE: "combine",
    TaskCategory.UPLOAD: "upload",
}


class DispatchStatus(str, Enum):
    """Terminal state of one task dispatch."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"
    NOTHING_TO_DO = "nothing_to_do"
    GATED = "gated"


@dataclass(frozen=True, slots=True)
class TaskFilters:
    """Filename selection rules shared by every task."""

    include_ext: tuple[str, ...] = ()
    includes: tuple[str, ...] = ()
    excludes: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class TaskBase:
    index: int
    source_folders: tuple[Path, ...]
    filters: TaskFilters
    skip: bool = False

    category: TaskCategory = field(init=False, default=TaskCategory.RELOCATE)

    def describe(self) -> str:
        return f"{self.category.value}#{self.index}"


@dataclass(frozen=True, slots=True)
class WorkerTask(TaskBase):
    """Task executed by an isolated worker process."""

    handle_folder: Path = Path()
    output_folder: Path = Path()
    keep_files: bool = False


@dataclass(frozen=True, slots=True)
class TransformTask(WorkerTask):
    screenshot: bool = False
    split: bool = False
    ffmpeg_setting: str | None = None
    suffix: str | None = None

    category: TaskCategory = field(init=False, default=TaskCategory.TRANSFORM)


@dataclass(frozen=True, slots=True)
class MergeTask(WorkerTask):
    screenshot: bool = False
    split: bool = False

    category: TaskCategory = field(init=False, default=TaskCategory.MERGE)


@dataclass(frozen=True, slots=True)
class UploadTask(WorkerTask):
    category: TaskCategory = field(init=False, default=TaskCategory.UPLOAD)


@dataclass(frozen=True, slots=True)
class RelocateTask(TaskBase):
    target_folder: Path = Path()

    category: TaskCategory = field(init=False, default=TaskCategory.RELOCATE)


Task = TransformTask | MergeTask | UploadTask | RelocateTask


@dataclass(frozen=True, slots=True)
class CustomConvertSetting:
    ffmpeg_setting: str
    suffix: str


@dataclass(frozen=True, slots=True)
class ScreenshotDefaults:
    output_folder: str | None = None
    count: int | None = None
    timestamps: tuple[float | str, ...] = ()
    interval: float | None = None


@dataclass(frozen=True, slots=True)
class ConvertDefaults:
    ext: str = "mp4"
    default_suffix: str = ""
    default_ffmpeg_setting: str = ""
    show_convert_cmd: bool = False
    custom_setting: dict[str, CustomConvertSetting] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class CombineDefaults:
    suffix_for_combine: str = ""
    file_name_clipper: str = "_"
    show_combine_cmd: bool = False


@dataclass(frozen=True, slots=True)
class SplitDefaults:
    split_interval_in_sec: int = 0
    invalid_maximum_duration: int | None = None
    show_split_cmd: bool = False


@dataclass(frozen=True, slots=True)
class UploadCredentials:
    email: str = ""
    password: str = ""
    recovery_email: str = ""


@dataclass(frozen=True, slots=True)
class BrowserSettings:
    executable_path: str = ""
    headless: bool = True


@dataclass(frozen=True, slots=True)
class ExecutableWindow:
    """Daily time-of-day window, evaluated at a fixed UTC offset."""

    start: time
    end: time
    utc_offset_hours: float = 8.0


@dataclass(frozen=True, slots=True)
class UploadDefaults:
    show_progress: bool = False
    credentials: UploadCredentials = field(default_factory=UploadCredentials)
    browser: BrowserSettings = field(default_factory=BrowserSettings)
    stream_list_path: Path | None = None
    skip_when_download_reach: int | None = None
    executable_time: ExecutableWindow | None = None


@dataclass(frozen=True, slots=True)
class RunnerConfig:
    """Immutable configuration snapshot read at the top of a tick."""

    pause: bool
    check_interval: float
    tasks: tuple[Task, ...]
    screenshot: ScreenshotDefaults = field(default_factory=ScreenshotDefaults)
    convert: ConvertDefaults = field(default_factory=ConvertDefaults)
    combine: CombineDefaults = field(default_factory=CombineDefaults)
    split: SplitDefaults = field(default_factory=SplitDefaults)
    upload: UploadDefaults = field(default_factory=UploadDefaults)
    disable_on_failure: frozenset[TaskCategory] = frozenset()
    source_path: Path | None = None


@dataclass(slots=True)
class DispatchResult:
    """Outcome of one task dispatch; failures are values, not exceptions."""

    task: Task
    status: DispatchStatus
    job_id: str | None = None
    exit_code: int | None = None
    error: str | None = None
    files: list[str] = field(default_factory=list)
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status is not DispatchStatus.FAILED
