"""Shared test fixtures."""

from __future__ import annotations

import json
import os
import threading
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

import pytest

from vod_runner.pipeline.config_store import ConfigStore
from vod_runner.pipeline.dispatcher import WorkerDispatcher
from vod_runner.pipeline.relocation import FileRelocationService
from vod_runner.pipeline.retry import RetryPolicy
from vod_runner.pipeline.workdir import JobWorkdirManager
from vod_runner.storage import ErrorLogRepository

ECHO_WORKER_TEMPLATE = "{python} -m vod_runner.workers.echo_worker --job {job}"

SRC_DIR = Path(__file__).resolve().parents[1] / "src"


class RecordingSink:
    """In-memory error sink; ``threads`` holds the writer thread of each record."""

    def __init__(self) -> None:
        self.records: list[dict[str, Any]] = []
        self.threads: list[threading.Thread] = []

    def record(
        self,
        message: str,
        *,
        source: str,
        category: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        self.records.append(
            {"message": message, "source": source, "category": category, "context": context or {}},
        )
        self.threads.append(threading.current_thread())


@pytest.fixture()
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture()
def error_log(tmp_path: Path) -> Iterator[ErrorLogRepository]:
    repository = ErrorLogRepository(tmp_path / "errors.db")
    repository.init_schema()
    try:
        yield repository
    finally:
        repository.close()


@pytest.fixture()
def worker_env(monkeypatch) -> None:
    """Make the package importable from worker subprocesses."""

    existing = os.environ.get("PYTHONPATH")
    value = str(SRC_DIR) if not existing else os.pathsep.join([str(SRC_DIR), existing])
    monkeypatch.setenv("PYTHONPATH", value)


@pytest.fixture()
def write_config(tmp_path: Path) -> Callable[[dict[str, Any]], ConfigStore]:
    path = tmp_path / "configure.json"

    def _write(document: dict[str, Any]) -> ConfigStore:
        path.write_text(json.dumps(document, indent=2), "utf-8")
        return ConfigStore(path)

    return _write


@pytest.fixture()
def make_dispatcher(tmp_path: Path) -> Callable[..., WorkerDispatcher]:
    def _make(
        *,
        templates: dict[str, str] | None = None,
        error_log: Any = None,
        config_store: ConfigStore | None = None,
        spawn_retries: int = 0,
        **kwargs: Any,
    ) -> WorkerDispatcher:
        return WorkerDispatcher(
            relocation=FileRelocationService(
                retry_policy=RetryPolicy(max_retries=1, delay_seconds=0),
                error_log=error_log,
            ),
            workdir=JobWorkdirManager(tmp_path / "jobs"),
            command_templates=templates
            or {kind: ECHO_WORKER_TEMPLATE for kind in ("convert", "combine", "upload")},
            spawn_policy=RetryPolicy(max_retries=spawn_retries, delay_seconds=0),
            error_log=error_log,
            config_store=config_store,
            **kwargs,
        )

    return _make


@pytest.fixture()
def touch() -> Callable[..., None]:
    """Create files whose content is their own name."""

    def _touch(directory: Path, *names: str) -> None:
        directory.mkdir(parents=True, exist_ok=True)
        for name in names:
            (directory / name).write_text(name, "utf-8")

    return _touch
