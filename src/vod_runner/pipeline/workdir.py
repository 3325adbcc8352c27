"""Per-job directory layout for worker dispatch."""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass
from pathlib import Path

from vod_runner.pipeline.contracts import JobDescriptor, write_job_descriptor

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class MaterializedJob:
    """Paths of one materialized job."""

    descriptor_path: Path
    stdout_path: Path
    stderr_path: Path
    descriptor: JobDescriptor


class JobWorkdirManager:
    """Creates ``<root>/<job_id>/{meta,output}`` for each dispatch."""

    def __init__(self, root_dir: Path) -> None:
        self.root_dir = root_dir

    def result_path(self, job_id: str) -> Path:
        return self.root_dir / job_id / "output" / "worker_result.json"

    def materialize(self, descriptor: JobDescriptor) -> MaterializedJob:
        base_dir = self.root_dir / descriptor.job_id
        meta_dir = base_dir / "meta"
        output_dir = base_dir / "output"
        meta_dir.mkdir(parents=True, exist_ok=True)
        output_dir.mkdir(parents=True, exist_ok=True)

        descriptor_path = meta_dir / "job.json"
        write_job_descriptor(descriptor_path, descriptor)
        return MaterializedJob(
            descriptor_path=descriptor_path,
            stdout_path=output_dir / "worker_stdout.log",
            stderr_path=output_dir / "worker_stderr.log",
            descriptor=descriptor,
        )

    def discard(self, job_id: str) -> None:
        """Remove a finished job directory; a failed removal is only logged."""

        job_dir = self.root_dir / job_id
        try:
            shutil.rmtree(job_dir)
        except FileNotFoundError:
            return
        except OSError as error:
            logger.warning("Can not remove job directory %s: %s", job_dir, error)
