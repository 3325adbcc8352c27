"""Polling scheduler: one in-flight batch per lane, lanes run side by side."""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime

from vod_runner.pipeline.config_store import ConfigError, ConfigStore
from vod_runner.pipeline.dispatcher import WorkerDispatcher
from vod_runner.pipeline.models import (
    LANE_BY_CATEGORY,
    WORKER_KIND_BY_CATEGORY,
    DispatchResult,
    Lane,
    RelocateTask,
    RunnerConfig,
    Task,
    TaskCategory,
)
from vod_runner.storage.error_log import ErrorSink

logger = logging.getLogger(__name__)

SCHEDULER_ERROR_SOURCE = "scheduler"

# Order of execution inside a lane; lower runs first.
CATEGORY_PRIORITY: dict[TaskCategory, int] = {
    TaskCategory.TRANSFORM: 0,
    TaskCategory.MERGE: 1,
    TaskCategory.UPLOAD: 2,
    TaskCategory.RELOCATE: 3,
}


def _check_priority_table(table: dict[TaskCategory, int]) -> None:
    missing = [category.value for category in TaskCategory if category not in table]
    if missing:
        raise RuntimeError(f"CATEGORY_PRIORITY lacks categories: {', '.join(missing)}")


_check_priority_table(CATEGORY_PRIORITY)


class SchedulerState:
    """Busy flag per lane; acquisition is atomic across threads."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._busy: dict[Lane, bool] = dict.fromkeys(Lane, False)

    def try_acquire(self, lane: Lane) -> bool:
        with self._lock:
            if self._busy[lane]:
                return False
            self._busy[lane] = True
            return True

    def release(self, lane: Lane) -> None:
        with self._lock:
            self._busy[lane] = False

    def is_busy(self, lane: Lane) -> bool:
        with self._lock:
            return self._busy[lane]

    def snapshot(self) -> dict[Lane, bool]:
        with self._lock:
            return dict(self._busy)


@dataclass(slots=True)
class TickReport:
    """What one tick decided."""

    tick: int
    config: RunnerConfig
    started: dict[Lane, asyncio.Task[list[DispatchResult]]] = field(default_factory=dict)
    skipped_busy: list[Lane] = field(default_factory=list)
    paused: bool = False


def plan_lanes(tasks: Iterable[Task]) -> dict[Lane, list[Task]]:
    """Group tasks per lane, ordered by category priority then config position."""

    planned: dict[Lane, list[Task]] = {}
    for task in tasks:
        planned.setdefault(LANE_BY_CATEGORY[task.category], []).append(task)
    for lane_tasks in planned.values():
        lane_tasks.sort(key=lambda task: (CATEGORY_PRIORITY[task.category], task.index))
    return {lane: planned[lane] for lane in Lane if lane in planned}


class LaneScheduler:
    """Re-reads configuration every tick and starts idle lanes."""

    def __init__(
        self,
        *,
        config_store: ConfigStore,
        dispatcher: WorkerDispatcher,
        error_log: ErrorSink | None = None,
        state: SchedulerState | None = None,
        now: Callable[[], datetime] = lambda: datetime.now(tz=UTC),
    ) -> None:
        self.config_store = config_store
        self.dispatcher = dispatcher
        self.error_log = error_log
        self.state = state or SchedulerState()
        self._now = now
        self._tick_count = 0
        self._in_flight: set[asyncio.Task[list[DispatchResult]]] = set()

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    @property
    def ticks(self) -> int:
        return self._tick_count

    async def tick(self) -> TickReport:
        """Evaluate every lane once; never waits for a lane to finish."""

        self._tick_count += 1
        tick = self._tick_count
        logger.info("[%d] Start to check at %s", tick, self._now().isoformat(timespec="seconds"))

        config = self.config_store.load()
        report = TickReport(tick=tick, config=config)
        if config.pause:
            logger.warning("[%d] Paused, no lane evaluated", tick)
            report.paused = True
            return report
        if not config.tasks:
            raise ConfigError("no tasks available")

        for lane, lane_tasks in plan_lanes(config.tasks).items():
            if not self.state.try_acquire(lane):
                logger.info("[%d] Lane %s busy, skipping", tick, lane.value)
                report.skipped_busy.append(lane)
                continue
            try:
                job = asyncio.create_task(
                    self._run_lane(lane, lane_tasks, config),
                    name=f"lane-{lane.value}-{tick}",
                )
            except BaseException:
                self.state.release(lane)
                raise
            self._in_flight.add(job)
            job.add_done_callback(self._in_flight.discard)
            report.started[lane] = job
            logger.debug("[%d] Lane %s started with %d task(s)", tick, lane.value, len(lane_tasks))
        return report

    async def run_forever(self, stop_event: asyncio.Event) -> None:
        """Tick, wait ``check_interval`` seconds or until stopped, repeat."""

        while not stop_event.is_set():
            report = await self.tick()
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=report.config.check_interval)
            except TimeoutError:
                continue
        logger.info("Stop requested after tick %d", self._tick_count)

    async def drain(self) -> None:
        """Wait for every in-flight lane to settle."""

        while self._in_flight:
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)

    async def _run_lane(
        self,
        lane: Lane,
        tasks: list[Task],
        config: RunnerConfig,
    ) -> list[DispatchResult]:
        results: list[DispatchResult] = []
        current: Task | None = None
        try:
            for current in tasks:
                results.append(await self._execute(current, config))
        except Exception as error:
            where = current.describe() if current is not None else "-"
            message = f"Lane {lane.value} stopped on {where}: {error}"
            logger.exception(message)
            if self.error_log is not None:
                await asyncio.to_thread(
                    self.error_log.record,
                    message,
                    source=SCHEDULER_ERROR_SOURCE,
                    category=current.category.value if current else None,
                    context={"lane": lane.value, "error_type": type(error).__name__},
                )
        finally:
            self.state.release(lane)
        return results

    async def _execute(self, task: Task, config: RunnerConfig) -> DispatchResult:
        if isinstance(task, RelocateTask):
            return await self.dispatcher.relocate(task, config)
        return await self.dispatcher.dispatch(task, WORKER_KIND_BY_CATEGORY[task.category], config)
