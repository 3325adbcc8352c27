"""Local demo worker for dispatcher integration tests."""

from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

from vod_runner.pipeline.contracts import read_job_descriptor, write_json


def main(argv: list[str] | None = None) -> int:
    """Acknowledge the job's files and exit with the requested code."""

    parser = argparse.ArgumentParser()
    parser.add_argument("--job", required=True)
    parser.add_argument("--exit-code", type=int, default=0)
    args = parser.parse_args(argv)

    descriptor = read_job_descriptor(Path(args.job))
    print(f"{descriptor.worker_kind} {descriptor.category}: {len(descriptor.files)} file(s)")
    write_json(
        Path(descriptor.result_path),
        {
            "files": descriptor.files,
            "worker": "echo_worker",
            "worker_kind": os.getenv("VOD_RUNNER_WORKER_KIND", descriptor.worker_kind),
        },
    )
    if args.exit_code:
        print(f"failing on request with code {args.exit_code}", file=sys.stderr)
    return args.exit_code


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
