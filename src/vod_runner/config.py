"""Runtime settings for the runner process."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

JOB_PLACEHOLDER = "{job}"

DEFAULT_WORKER_COMMANDS = {
    "convert": "vod-convert --job {job}",
    "combine": "vod-combine --job {job}",
    "upload": "vod-upload --job {job}",
}


@dataclass(slots=True)
class RetrySettings:
    """Retry knobs for fallible operations, per call site."""

    move_max_retries: int = 5
    move_retry_delay_seconds: float = 1.0
    spawn_max_retries: int = 2
    spawn_retry_delay_seconds: float = 1.0


@dataclass(slots=True)
class WorkerSettings:
    """How worker processes are launched."""

    workdir_root: Path = Path(".vod_runner/jobs")
    keep_job_dirs: bool = False
    command_templates: dict[str, str] = field(
        default_factory=lambda: dict(DEFAULT_WORKER_COMMANDS),
    )


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern.

    These are process-level knobs read once at startup. The task list and the
    per-category defaults live in the JSON configuration, which is re-read on
    every scheduler tick.
    """

    config_path: Path = Path("configure.json")
    db_path: Path = Path(".vod_runner.db")
    retry: RetrySettings = field(default_factory=RetrySettings)
    workers: WorkerSettings = field(default_factory=WorkerSettings)

    @classmethod
    def from_env(
        cls,
        *,
        config_path: Path | None = None,
        db_path: Path | None = None,
    ) -> Settings:
        """Load settings from environment with sane defaults for local runs."""

        return cls(
            config_path=config_path
            or Path(os.getenv("VOD_RUNNER_CONFIG_PATH", "configure.json")),
            db_path=db_path or Path(os.getenv("VOD_RUNNER_DB_PATH", ".vod_runner.db")),
            retry=RetrySettings(
                move_max_retries=int(os.getenv("VOD_RUNNER_MOVE_MAX_RETRIES", "5")),
                move_retry_delay_seconds=float(
                    os.getenv("VOD_RUNNER_MOVE_RETRY_DELAY_SECONDS", "1.0"),
                ),
                spawn_max_retries=int(os.getenv("VOD_RUNNER_SPAWN_MAX_RETRIES", "2")),
                spawn_retry_delay_seconds=float(
                    os.getenv("VOD_RUNNER_SPAWN_RETRY_DELAY_SECONDS", "1.0"),
                ),
            ),
            workers=WorkerSettings(
                workdir_root=Path(os.getenv("VOD_RUNNER_WORKDIR_ROOT", ".vod_runner/jobs")),
                keep_job_dirs=_env_bool("VOD_RUNNER_KEEP_JOB_DIRS", False),
                command_templates={
                    kind: os.getenv(f"VOD_RUNNER_{kind.upper()}_COMMAND", default).strip()
                    for kind, default in DEFAULT_WORKER_COMMANDS.items()
                },
            ),
        )

    def validate(self) -> None:
        """Raise configuration error if any knob is out of range."""

        if self.retry.move_max_retries < 0:
            raise ValueError("VOD_RUNNER_MOVE_MAX_RETRIES must be >= 0.")
        if self.retry.spawn_max_retries < 0:
            raise ValueError("VOD_RUNNER_SPAWN_MAX_RETRIES must be >= 0.")
        if self.retry.move_retry_delay_seconds < 0:
            raise ValueError("VOD_RUNNER_MOVE_RETRY_DELAY_SECONDS must be >= 0.")
        if self.retry.spawn_retry_delay_seconds < 0:
            raise ValueError("VOD_RUNNER_SPAWN_RETRY_DELAY_SECONDS must be >= 0.")
        for kind, template in self.workers.command_templates.items():
            if not template:
                raise ValueError(f"VOD_RUNNER_{kind.upper()}_COMMAND must not be empty.")
            if JOB_PLACEHOLDER not in template:
                raise ValueError(
                    f"VOD_RUNNER_{kind.upper()}_COMMAND must include {JOB_PLACEHOLDER}: "
                    f"{template!r}",
                )


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
