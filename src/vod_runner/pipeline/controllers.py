"""Controllers for runner CLI commands."""

from __future__ import annotations

import asyncio
import logging
import signal
from collections.abc import Iterator
from contextlib import contextmanager, suppress
from dataclasses import dataclass, field
from pathlib import Path

from vod_runner.config import Settings
from vod_runner.pipeline.config_store import ConfigError, ConfigStore
from vod_runner.pipeline.dispatcher import WorkerDispatcher
from vod_runner.pipeline.models import DispatchResult, Lane, RelocateTask
from vod_runner.pipeline.relocation import FileRelocationService
from vod_runner.pipeline.retry import RetryPolicy
from vod_runner.pipeline.scheduler import SCHEDULER_ERROR_SOURCE, LaneScheduler, plan_lanes
from vod_runner.pipeline.targets import enumerate_targets
from vod_runner.pipeline.workdir import JobWorkdirManager
from vod_runner.storage import ErrorLogRepository

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RunCommand:
    """CLI input for the scheduler loop."""

    config_path: Path | None
    db_path: Path | None
    once: bool


@dataclass(slots=True)
class PlanCommand:
    """CLI input for a dry run of one tick."""

    config_path: Path | None


@dataclass(slots=True)
class ErrorsCommand:
    """CLI input for error log listing."""

    db_path: Path | None
    limit: int
    category: str | None


@dataclass(slots=True)
class ValidateCommand:
    """CLI input for configuration checks."""

    config_path: Path | None


@dataclass(slots=True)
class RunSummary:
    """Outcome of a ``run`` invocation."""

    ticks: int = 0
    paused: bool = False
    skipped_busy: list[Lane] = field(default_factory=list)
    results: list[DispatchResult] = field(default_factory=list)


class RunnerCliController:
    """Wires settings, storage and the scheduler for each CLI command."""

    def run(self, command: RunCommand) -> list[str]:
        settings = Settings.from_env(config_path=command.config_path, db_path=command.db_path)
        settings.validate()
        with _error_log(settings) as error_log:
            scheduler = build_scheduler(settings, error_log=error_log)
            try:
                if command.once:
                    summary = asyncio.run(_run_once(scheduler))
                else:
                    summary = asyncio.run(_run_until_stopped(scheduler))
            except ConfigError as error:
                error_log.record(
                    f"Runner stopped: {error}",
                    source=SCHEDULER_ERROR_SOURCE,
                    context={"config_path": str(settings.config_path), "ticks": scheduler.ticks},
                )
                raise

        if not command.once:
            return [f"Runner stopped after {summary.ticks} tick(s)."]

        lines = [f"Tick {summary.ticks} finished."]
        if summary.paused:
            lines.append("Paused: no lane evaluated.")
        lines.extend(f"Lane {lane.value}: busy, skipped" for lane in summary.skipped_busy)
        for result in summary.results:
            line = f"{result.task.describe()}: {result.status.value}"
            if result.files:
                line += f" files={len(result.files)}"
            if result.error:
                line += f" error={result.error}"
            lines.append(line)
        return lines

    def plan(self, command: PlanCommand) -> list[str]:
        settings = Settings.from_env(config_path=command.config_path)
        config = ConfigStore(settings.config_path).load()
        lines = [
            f"Config: {settings.config_path}",
            f"Pause: {'yes' if config.pause else 'no'}, check interval: {config.check_interval}s",
        ]
        if not config.tasks:
            lines.append("No tasks available.")
            return lines

        for lane, lane_tasks in plan_lanes(config.tasks).items():
            lines.append(f"Lane {lane.value}:")
            for task in lane_tasks:
                folders = list(task.source_folders)
                if isinstance(task, RelocateTask):
                    destination = task.target_folder
                else:
                    folders.append(task.handle_folder)
                    destination = task.handle_folder
                targets = enumerate_targets(folders, task.filters)
                matched = sum(len(names) for names in targets.values())
                state = "skip" if task.skip else f"{matched} file(s)"
                lines.append(f"  {task.describe()} -> {destination}: {state}")
        return lines

    def errors(self, command: ErrorsCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _error_log(settings) as error_log:
            records = error_log.list_recent(limit=command.limit, category=command.category)
        if not records:
            return ["No errors recorded."]
        return [
            f"{record.created_at.isoformat(timespec='seconds')} "
            f"[{record.source}] category={record.category or '-'} {record.message}"
            for record in records
        ]

    def validate(self, command: ValidateCommand) -> list[str]:
        settings = Settings.from_env(config_path=command.config_path)
        settings.validate()
        config = ConfigStore(settings.config_path).load()
        per_lane = {lane.value: len(tasks) for lane, tasks in plan_lanes(config.tasks).items()}
        lanes = ", ".join(f"{lane}={count}" for lane, count in per_lane.items()) or "none"
        return [
            f"Configuration OK: {settings.config_path}",
            f"Tasks: {len(config.tasks)} ({lanes})",
        ]


def build_scheduler(settings: Settings, *, error_log: ErrorLogRepository | None) -> LaneScheduler:
    """Assemble the scheduler and its collaborators from runtime settings."""

    config_store = ConfigStore(settings.config_path)
    relocation = FileRelocationService(
        retry_policy=RetryPolicy(
            max_retries=settings.retry.move_max_retries,
            delay_seconds=settings.retry.move_retry_delay_seconds,
        ),
        error_log=error_log,
    )
    dispatcher = WorkerDispatcher(
        relocation=relocation,
        workdir=JobWorkdirManager(settings.workers.workdir_root),
        keep_job_dirs=settings.workers.keep_job_dirs,
        command_templates=settings.workers.command_templates,
        spawn_policy=RetryPolicy(
            max_retries=settings.retry.spawn_max_retries,
            delay_seconds=settings.retry.spawn_retry_delay_seconds,
        ),
        error_log=error_log,
        config_store=config_store,
    )
    return LaneScheduler(config_store=config_store, dispatcher=dispatcher, error_log=error_log)


async def _run_once(scheduler: LaneScheduler) -> RunSummary:
    report = await scheduler.tick()
    await scheduler.drain()
    summary = RunSummary(
        ticks=scheduler.ticks,
        paused=report.paused,
        skipped_busy=list(report.skipped_busy),
    )
    for job in report.started.values():
        summary.results.extend(job.result())
    return summary


async def _run_until_stopped(scheduler: LaneScheduler) -> RunSummary:
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    installed: list[signal.Signals] = []
    for signum in (signal.SIGINT, signal.SIGTERM):
        # Not available on Windows event loops; Ctrl+C still raises there.
        with suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(signum, stop_event.set)
            installed.append(signum)
    try:
        await scheduler.run_forever(stop_event)
    finally:
        for signum in installed:
            loop.remove_signal_handler(signum)
        if scheduler.in_flight:
            logger.info("Waiting for %d running lane(s) to finish", scheduler.in_flight)
        await scheduler.drain()
    return RunSummary(ticks=scheduler.ticks)


@contextmanager
def _error_log(settings: Settings) -> Iterator[ErrorLogRepository]:
    repository = ErrorLogRepository(settings.db_path)
    repository.init_schema()
    try:
        yield repository
    finally:
        repository.close()
