"""File-based contract between the scheduler and worker processes."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field, fields, is_dataclass
from datetime import time
from enum import Enum
from pathlib import Path
from typing import Any

from vod_runner.pipeline.models import RunnerConfig, TaskCategory, WorkerTask

JOB_CONTRACT_VERSION = 1


@dataclass(slots=True)
class JobDescriptor:
    """Everything a worker needs to run one task standalone."""

    contract_version: int
    job_id: str
    worker_kind: str
    category: str
    task: dict[str, Any]
    files: list[str]
    settings: dict[str, Any]
    handle_folder: str
    output_folder: str
    result_path: str
    created_at: str
    config_path: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


def write_json(path: Path, payload: dict[str, Any]) -> None:
    """Persist JSON payload using deterministic formatting."""

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, ensure_ascii=False, indent=2, sort_keys=True), "utf-8")


def load_json(path: Path) -> dict[str, Any]:
    """Load JSON document and validate top-level object type."""

    payload = json.loads(path.read_text("utf-8"))
    if not isinstance(payload, dict):
        raise TypeError(f"Expected JSON object in {path}")
    return payload


def write_job_descriptor(path: Path, descriptor: JobDescriptor) -> None:
    write_json(path, asdict(descriptor))


def read_job_descriptor(path: Path) -> JobDescriptor:
    """Deserialize and validate a job descriptor."""

    raw = load_json(path)
    version = raw.get("contract_version")
    if version != JOB_CONTRACT_VERSION:
        raise ValueError(f"Unsupported job contract version: {version!r}")
    for key in ("job_id", "worker_kind", "category", "handle_folder", "output_folder"):
        value = raw.get(key)
        if not isinstance(value, str) or not value.strip():
            raise ValueError(f"job.{key} must be a non-empty string")
    if not isinstance(raw.get("task"), dict):
        raise TypeError("job.task must be an object")
    if not isinstance(raw.get("settings"), dict):
        raise TypeError("job.settings must be an object")
    files = raw.get("files")
    if not isinstance(files, list) or not all(isinstance(name, str) for name in files):
        raise TypeError("job.files must be an array of strings")
    known = {f.name for f in fields(JobDescriptor)}
    return JobDescriptor(**{key: value for key, value in raw.items() if key in known})


def task_payload(task: WorkerTask) -> dict[str, Any]:
    """JSON-safe view of a task."""

    return to_jsonable(task)


def category_settings(task: WorkerTask, config: RunnerConfig) -> dict[str, Any]:
    """Per-category defaults a worker of this task's kind reads.

    Upload credentials stay in the configuration file; the worker reads them
    from ``config_path`` when it needs them.
    """

    if task.category is TaskCategory.TRANSFORM:
        sections = {"convert": config.convert, "split": config.split}
    elif task.category is TaskCategory.MERGE:
        sections = {"combine": config.combine, "split": config.split}
    else:
        upload = to_jsonable(config.upload)
        upload.pop("credentials", None)
        return {"upload": upload}
    sections["screenshot"] = config.screenshot
    return {name: to_jsonable(section) for name, section in sections.items()}


def to_jsonable(value: Any) -> Any:
    if is_dataclass(value) and not isinstance(value, type):
        return {f.name: to_jsonable(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, time):
        return value.strftime("%H:%M")
    if isinstance(value, dict):
        return {str(key): to_jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [to_jsonable(item) for item in value]
    return value
