from __future__ import annotations

import json
from datetime import UTC, datetime, time
from pathlib import Path

import allure
import pytest

from vod_runner.pipeline.models import ExecutableWindow, UploadDefaults
from vod_runner.pipeline.upload_gates import (
    check_upload_gates,
    count_live_streams,
    is_within_window,
)

pytestmark = [
    allure.epic("Runner Core"),
    allure.feature("Upload Gates"),
]

WINDOW = ExecutableWindow(start=time(1, 0), end=time(6, 30))


@pytest.mark.parametrize(
    ("moment", "expected"),
    [
        # 01:00 at UTC+8
        (datetime(2026, 10, 17, 17, 0, tzinfo=UTC), True),
        # 06:30 at UTC+8
        (datetime(2026, 10, 17, 22, 30, tzinfo=UTC), True),
        # 06:31 at UTC+8
        (datetime(2026, 10, 17, 22, 31, tzinfo=UTC), False),
        # 00:59 at UTC+8
        (datetime(2026, 10, 17, 16, 59, tzinfo=UTC), False),
    ],
)
def test_window_is_inclusive_and_evaluated_at_fixed_offset(
    moment: datetime,
    expected: bool,
) -> None:
    assert is_within_window(WINDOW, moment) is expected


def test_window_honours_custom_offset() -> None:
    window = ExecutableWindow(start=time(9, 0), end=time(17, 0), utc_offset_hours=0)

    assert is_within_window(window, datetime(2026, 10, 18, 12, 0, tzinfo=UTC)) is True
    assert is_within_window(window, datetime(2026, 10, 18, 18, 0, tzinfo=UTC)) is False


def test_gates_allow_upload_without_restrictions() -> None:
    assert check_upload_gates(UploadDefaults()).allowed is True


def test_gates_hold_upload_outside_window() -> None:
    settings = UploadDefaults(executable_time=WINDOW)

    decision = check_upload_gates(settings, now=lambda: datetime(2026, 10, 18, 4, 0, tzinfo=UTC))

    assert decision.allowed is False
    assert decision.reason == "time exceed, skip upload"


def _stream_list(tmp_path: Path, count: int) -> Path:
    path = tmp_path / "streams.json"
    streams = {f"room-{i}": {"status": "live"} for i in range(count)}
    path.write_text(json.dumps({"liveStreams": streams}), "utf-8")
    return path


def test_gates_hold_upload_when_too_many_live_streams(tmp_path: Path) -> None:
    settings = UploadDefaults(
        stream_list_path=_stream_list(tmp_path, 3),
        skip_when_download_reach=2,
    )

    decision = check_upload_gates(settings)

    assert decision.allowed is False
    assert decision.reason == "busy internet usage, skip upload"


def test_gates_allow_upload_at_download_limit(tmp_path: Path) -> None:
    settings = UploadDefaults(
        stream_list_path=_stream_list(tmp_path, 2),
        skip_when_download_reach=2,
    )

    assert check_upload_gates(settings).allowed is True


def test_unreadable_stream_list_counts_as_zero(tmp_path: Path) -> None:
    broken = tmp_path / "streams.json"
    broken.write_text("not json", "utf-8")

    assert count_live_streams(broken) == 0
    assert count_live_streams(tmp_path / "missing.json") == 0
