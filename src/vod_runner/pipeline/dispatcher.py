"""Run one task: stage its files, hand a job descriptor to a worker process, await exit."""

from __future__ import annotations

import asyncio
import logging
import os
import shlex
import sys
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import IO, Any
from uuid import uuid4

from vod_runner.pipeline.config_store import ConfigError, ConfigStore
from vod_runner.pipeline.contracts import (
    JOB_CONTRACT_VERSION,
    JobDescriptor,
    category_settings,
    load_json,
    task_payload,
)
from vod_runner.pipeline.models import (
    DispatchResult,
    DispatchStatus,
    RelocateTask,
    RunnerConfig,
    Task,
    TaskCategory,
    WorkerTask,
)
from vod_runner.pipeline.relocation import FileRelocationService
from vod_runner.pipeline.retry import RetryPolicy, retry_async
from vod_runner.pipeline.targets import enumerate_targets
from vod_runner.pipeline.upload_gates import check_upload_gates
from vod_runner.pipeline.workdir import JobWorkdirManager, MaterializedJob
from vod_runner.storage.error_log import ErrorSink

logger = logging.getLogger(__name__)

DISPATCH_ERROR_SOURCE = "dispatcher"


class WorkerSpawnError(RuntimeError):
    """Worker could not be started, with retryability hint."""

    def __init__(self, message: str, *, transient: bool) -> None:
        super().__init__(message)
        self.transient = transient


class WorkerDispatcher:
    """Executes tasks; every failure comes back as a :class:`DispatchResult`."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        relocation: FileRelocationService,
        workdir: JobWorkdirManager,
        command_templates: dict[str, str],
        spawn_policy: RetryPolicy,
        error_log: ErrorSink | None = None,
        config_store: ConfigStore | None = None,
        python_executable: str = sys.executable,
        keep_job_dirs: bool = False,
        now: Callable[[], datetime] = lambda: datetime.now(tz=UTC),
        spawn_sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.relocation = relocation
        self.workdir = workdir
        self.command_templates = command_templates
        self.spawn_policy = spawn_policy
        self.error_log = error_log
        self.config_store = config_store
        self.python_executable = python_executable
        self.keep_job_dirs = keep_job_dirs
        self._now = now
        self._spawn_sleep = spawn_sleep

    async def dispatch(
        self,
        task: WorkerTask,
        worker_kind: str,
        config: RunnerConfig,
    ) -> DispatchResult:
        """Stage files, spawn one ``worker_kind`` process and wait for it."""

        if task.skip:
            logger.warning("Task: %s skipped due to config", task.describe())
            return DispatchResult(task=task, status=DispatchStatus.SKIPPED)

        try:
            await asyncio.to_thread(
                self.relocation.gather,
                task.source_folders,
                task.handle_folder,
                task.filters,
            )
            files = await asyncio.to_thread(self._ready_files, task)
            if not files:
                logger.info("No files at: %s, stop %s", task.handle_folder, worker_kind)
                return DispatchResult(task=task, status=DispatchStatus.NOTHING_TO_DO)

            if task.category is TaskCategory.UPLOAD:
                decision = check_upload_gates(config.upload, now=self._now)
                if not decision.allowed:
                    logger.info("Task: %s held back: %s", task.describe(), decision.reason)
                    return DispatchResult(
                        task=task,
                        status=DispatchStatus.GATED,
                        files=files,
                        details={"reason": decision.reason},
                    )

            job = self._materialize(task=task, worker_kind=worker_kind, config=config, files=files)
            logger.info("Start to %s files at: %s", worker_kind, task.handle_folder)
            result = await self._run_worker(task=task, worker_kind=worker_kind, job=job)
        except Exception as error:  # noqa: BLE001
            result = await self._record_failure(
                task=task,
                worker_kind=worker_kind,
                message=f"Dispatch of {task.describe()} crashed: {error}",
                context={"error_type": type(error).__name__},
            )

        if result.status is DispatchStatus.FAILED:
            await self._apply_failure_policy(task=task, config=config)
        return result

    async def relocate(
        self,
        task: RelocateTask,
        config: RunnerConfig | None = None,
    ) -> DispatchResult:
        """Move matching files from the source folders to the target folder.

        With ``config`` given, a failed move batch is subject to the same
        disable-on-failure policy as worker tasks.
        """

        if task.skip:
            logger.warning("Task: %s skipped due to config", task.describe())
            return DispatchResult(task=task, status=DispatchStatus.SKIPPED)
        if not task.source_folders:
            logger.info("Task: %s skipped due to no source folder", task.describe())
            return DispatchResult(task=task, status=DispatchStatus.NOTHING_TO_DO)

        report = await asyncio.to_thread(
            self.relocation.gather,
            task.source_folders,
            task.target_folder,
            task.filters,
        )
        if not (report.moved or report.missing or report.failed):
            logger.info("Task: %s skipped due to no target files", task.describe())
            return DispatchResult(task=task, status=DispatchStatus.NOTHING_TO_DO)

        moved = [path.name for path in report.moved]
        if report.ok:
            return DispatchResult(task=task, status=DispatchStatus.SUCCEEDED, files=moved)
        result = DispatchResult(
            task=task,
            status=DispatchStatus.FAILED,
            files=moved,
            error=f"{len(report.failed)} file(s) could not be moved",
            details={"failed": [str(path) for path in report.failed]},
        )
        if config is not None:
            await self._apply_failure_policy(task=task, config=config)
        return result

    def _ready_files(self, task: WorkerTask) -> list[str]:
        targets = enumerate_targets([task.handle_folder], task.filters)
        return next(iter(targets.values()), [])

    def _materialize(
        self,
        *,
        task: WorkerTask,
        worker_kind: str,
        config: RunnerConfig,
        files: list[str],
    ) -> MaterializedJob:
        job_id = str(uuid4())
        descriptor = JobDescriptor(
            contract_version=JOB_CONTRACT_VERSION,
            job_id=job_id,
            worker_kind=worker_kind,
            category=task.category.value,
            task=task_payload(task),
            files=files,
            settings=category_settings(task, config),
            handle_folder=str(task.handle_folder),
            output_folder=str(task.output_folder),
            result_path=str(self.workdir.result_path(job_id)),
            created_at=self._now().isoformat(),
            config_path=str(config.source_path) if config.source_path is not None else None,
        )
        return self.workdir.materialize(descriptor)

    async def _run_worker(
        self,
        *,
        task: WorkerTask,
        worker_kind: str,
        job: MaterializedJob,
    ) -> DispatchResult:
        descriptor = job.descriptor
        context = {
            "job_id": descriptor.job_id,
            "worker_kind": worker_kind,
            "task_index": task.index,
        }
        template = self.command_templates.get(worker_kind)
        if template is None:
            return await self._record_failure(
                task=task,
                worker_kind=worker_kind,
                message=f"No worker command configured for kind {worker_kind!r}",
                context=context,
            )
        try:
            run_args = build_worker_args(
                template,
                job_path=job.descriptor_path,
                kind=worker_kind,
                python=self.python_executable,
            )
        except WorkerSpawnError as error:
            return await self._record_failure(
                task=task,
                worker_kind=worker_kind,
                message=str(error),
                context=context,
            )

        env = os.environ.copy()
        env["VOD_RUNNER_JOB_DESCRIPTOR"] = str(job.descriptor_path)
        env["VOD_RUNNER_WORKER_KIND"] = worker_kind
        env["VOD_RUNNER_TASK_CATEGORY"] = task.category.value

        with (
            job.stdout_path.open("w", encoding="utf-8") as stdout_handle,
            job.stderr_path.open("w", encoding="utf-8") as stderr_handle,
        ):
            spawned = await retry_async(
                lambda: _spawn_worker(
                    run_args,
                    env=env,
                    stdout_handle=stdout_handle,
                    stderr_handle=stderr_handle,
                ),
                policy=self.spawn_policy,
                description=f"Spawn {worker_kind} worker for {task.describe()}",
                error_log=self.error_log,
                category=task.category.value,
                context=context,
                retry_if=lambda error: isinstance(error, WorkerSpawnError) and error.transient,
                sleep=self._spawn_sleep,
            )
            if not spawned.ok or spawned.value is None:
                return DispatchResult(
                    task=task,
                    status=DispatchStatus.FAILED,
                    job_id=descriptor.job_id,
                    error=str(spawned.error),
                    files=descriptor.files,
                )
            exit_code = await spawned.value.wait()

        if exit_code != 0:
            return await self._record_failure(
                task=task,
                worker_kind=worker_kind,
                message=f"{worker_kind} worker for {task.describe()} exited with code {exit_code}",
                context={**context, "exit_code": exit_code, "stderr": str(job.stderr_path)},
                job_id=descriptor.job_id,
                exit_code=exit_code,
                files=descriptor.files,
            )

        logger.info("%s worker done for %s", worker_kind, task.describe())
        details = _read_worker_result(Path(descriptor.result_path))
        if not self.keep_job_dirs:
            await asyncio.to_thread(self.workdir.discard, descriptor.job_id)
        return DispatchResult(
            task=task,
            status=DispatchStatus.SUCCEEDED,
            job_id=descriptor.job_id,
            exit_code=exit_code,
            files=descriptor.files,
            details=details,
        )

    async def _record_failure(  # noqa: PLR0913
        self,
        *,
        task: WorkerTask,
        worker_kind: str,
        message: str,
        context: dict[str, Any],
        job_id: str | None = None,
        exit_code: int | None = None,
        files: list[str] | None = None,
    ) -> DispatchResult:
        logger.error("[%s] %s", task.category.value, message)
        if self.error_log is not None:
            await asyncio.to_thread(
                self.error_log.record,
                message,
                source=DISPATCH_ERROR_SOURCE,
                category=task.category.value,
                context={**context, "worker_kind": worker_kind, "task_index": task.index},
            )
        return DispatchResult(
            task=task,
            status=DispatchStatus.FAILED,
            job_id=job_id,
            exit_code=exit_code,
            error=message,
            files=files or [],
        )

    async def _apply_failure_policy(self, *, task: Task, config: RunnerConfig) -> None:
        if task.category not in config.disable_on_failure or self.config_store is None:
            return
        try:
            await asyncio.to_thread(self.config_store.disable_task, task)
        except (ConfigError, OSError) as error:
            logger.error("Could not disable %s after failure: %s", task.describe(), error)


def build_worker_args(
    template: str,
    *,
    job_path: Path,
    kind: str,
    python: str = sys.executable,
    os_name: str | None = None,
) -> list[str]:
    """Split the template first, then fill placeholders per argument.

    Placeholder values are never re-split, so paths with spaces stay one
    argument. Supported placeholders: ``{job}``, ``{python}``, ``{kind}``.
    """

    is_windows = (os_name or os.name) == "nt"
    tokens = shlex.split(template.strip(), posix=not is_windows)
    if is_windows:
        tokens = [_strip_windows_quotes(token) for token in tokens]
    if not tokens:
        raise WorkerSpawnError("Worker command template is empty.", transient=False)
    try:
        return [token.format(job=str(job_path), python=python, kind=kind) for token in tokens]
    except (KeyError, IndexError) as error:
        raise WorkerSpawnError(
            f"Unsupported command template placeholder: {error}",
            transient=False,
        ) from error
    except ValueError as error:
        raise WorkerSpawnError(f"Malformed command template: {error}", transient=False) from error


async def _spawn_worker(
    run_args: list[str],
    *,
    env: dict[str, str],
    stdout_handle: IO[str],
    stderr_handle: IO[str],
) -> asyncio.subprocess.Process:
    try:
        return await asyncio.create_subprocess_exec(
            *run_args,
            env=env,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=stdout_handle,
            stderr=stderr_handle,
        )
    except FileNotFoundError as error:
        raise WorkerSpawnError(
            f"Worker command not found: {run_args[0]}",
            transient=False,
        ) from error
    except PermissionError as error:
        raise WorkerSpawnError(
            f"Worker command not executable: {run_args[0]}",
            transient=False,
        ) from error
    except OSError as error:
        raise WorkerSpawnError(f"Worker failed to start: {error}", transient=True) from error


def _strip_windows_quotes(token: str) -> str:
    if len(token) >= 2 and token[0] == token[-1] == '"':
        return token[1:-1]
    return token


def _read_worker_result(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    try:
        return {"worker_result": load_json(path)}
    except (OSError, TypeError, ValueError) as error:
        logger.warning("Unreadable worker result at %s: %s", path, error)
        return {}
