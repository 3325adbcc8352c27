"""Move and delete batches of files with per-item retries."""

from __future__ import annotations

import errno
import logging
import os
import shutil
from collections import defaultdict
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from pathlib import Path

from vod_runner.pipeline.models import TaskFilters
from vod_runner.pipeline.retry import RetryPolicy, retry_call
from vod_runner.pipeline.targets import enumerate_targets
from vod_runner.storage.error_log import ErrorSink

logger = logging.getLogger(__name__)

RELOCATION_ERROR_SOURCE = "relocation"


@dataclass(slots=True)
class RelocationReport:
    """Per-item outcome of a batch; earlier successes are never rolled back."""

    moved: list[Path] = field(default_factory=list)
    deleted: list[Path] = field(default_factory=list)
    missing: list[Path] = field(default_factory=list)
    failed: list[Path] = field(default_factory=list)

    def merge(self, other: RelocationReport) -> RelocationReport:
        self.moved.extend(other.moved)
        self.deleted.extend(other.deleted)
        self.missing.extend(other.missing)
        self.failed.extend(other.failed)
        return self

    @property
    def ok(self) -> bool:
        return not self.failed


class FileRelocationService:
    """Moves files between folders, tolerating busy files and device boundaries."""

    def __init__(
        self,
        *,
        retry_policy: RetryPolicy,
        error_log: ErrorSink | None = None,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        self.retry_policy = retry_policy
        self.error_log = error_log
        self._sleep = sleep

    def move_files(
        self,
        filenames: Iterable[str],
        from_dir: Path,
        to_dir: Path,
    ) -> RelocationReport:
        """Move named files from ``from_dir`` into ``to_dir``."""

        report = RelocationReport()
        names = list(filenames)
        if not names:
            return report

        to_dir.mkdir(parents=True, exist_ok=True)
        for name in names:
            source = from_dir / name
            if not source.exists():
                logger.warning("Can not find file at: %s", source)
                report.missing.append(source)
                continue

            destination = to_dir / name
            outcome = retry_call(
                lambda src=source, dst=destination: _move_unless_vanished(src, dst),
                policy=self.retry_policy,
                description=f"Move {source} -> {destination}",
                error_log=self.error_log,
                context={"from": str(source), "to": str(destination)},
                **self._sleep_kwargs(),
            )
            if not outcome.ok:
                report.failed.append(source)
            elif outcome.value:
                report.moved.append(destination)
            else:
                logger.warning("File vanished before it could be moved: %s", source)
                report.missing.append(source)
        return report

    def move_paths(self, paths: Iterable[Path], to_dir: Path) -> RelocationReport:
        """Move files given by full path into ``to_dir``."""

        by_parent: dict[Path, list[str]] = defaultdict(list)
        for path in paths:
            by_parent[path.parent].append(path.name)

        report = RelocationReport()
        for parent, names in by_parent.items():
            report.merge(self.move_files(names, parent, to_dir))
        return report

    def delete_files(self, paths: Iterable[Path]) -> RelocationReport:
        """Best-effort unlink of every path."""

        report = RelocationReport()
        for path in paths:
            try:
                path.unlink()
            except FileNotFoundError:
                logger.warning("Can not delete missing file: %s", path)
                report.missing.append(path)
            except OSError as error:
                message = f"Can not delete file {path}: {error}"
                logger.error(message)
                if self.error_log is not None:
                    self.error_log.record(
                        message,
                        source=RELOCATION_ERROR_SOURCE,
                        context={"path": str(path), "error_type": type(error).__name__},
                    )
                report.failed.append(path)
            else:
                report.deleted.append(path)
        return report

    def gather(
        self,
        source_folders: Iterable[Path],
        destination: Path,
        filters: TaskFilters,
    ) -> RelocationReport:
        """Pull every matching file from ``source_folders`` into ``destination``."""

        folders = list(source_folders)
        if not folders:
            logger.debug("No source folders configured for %s", destination)
            return RelocationReport()

        targets = enumerate_targets(folders, filters)
        if not targets:
            logger.debug("No target files in %s", ", ".join(str(f) for f in folders))
            return RelocationReport()

        logger.info("Start to move files to: %s", destination)
        report = RelocationReport()
        for folder, filenames in targets.items():
            if _same_location(folder, destination):
                continue
            report.merge(self.move_files(filenames, folder, destination))
        return report

    def _sleep_kwargs(self) -> dict[str, Callable[[float], None]]:
        return {} if self._sleep is None else {"sleep": self._sleep}


def move_file(source: Path, destination: Path) -> None:
    """Rename on the same device; copy then unlink the source across devices."""

    if _same_device(source, destination.parent):
        try:
            os.replace(source, destination)
        except OSError as error:
            if error.errno != errno.EXDEV:
                raise
        else:
            return
    move_file_cross_device(source, destination)


def move_file_cross_device(source: Path, destination: Path) -> None:
    shutil.copy2(source, destination)
    source.unlink()


def _move_unless_vanished(source: Path, destination: Path) -> bool:
    try:
        move_file(source, destination)
    except FileNotFoundError:
        if source.exists():
            raise
        return False
    return True


def _same_device(source: Path, destination_dir: Path) -> bool:
    try:
        return os.stat(source).st_dev == os.stat(destination_dir).st_dev
    except OSError:
        return True


def _same_location(left: Path, right: Path) -> bool:
    try:
        return left.resolve() == right.resolve()
    except OSError:
        return False
