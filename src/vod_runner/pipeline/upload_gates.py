"""Pre-flight conditions that can hold an upload back for a tick."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta, timezone
from pathlib import Path

from vod_runner.pipeline.models import ExecutableWindow, UploadDefaults

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class GateDecision:
    allowed: bool
    reason: str | None = None


def check_upload_gates(
    settings: UploadDefaults,
    *,
    now: Callable[[], datetime] = lambda: datetime.now(tz=UTC),
) -> GateDecision:
    """Combine the download-limit and time-window checks."""

    if is_download_limit_reached(settings):
        return GateDecision(allowed=False, reason="busy internet usage, skip upload")
    window = settings.executable_time
    if window is not None and not is_within_window(window, now()):
        return GateDecision(allowed=False, reason="time exceed, skip upload")
    return GateDecision(allowed=True)


def is_within_window(window: ExecutableWindow, moment: datetime) -> bool:
    """Whether ``moment`` falls between today's ``start`` and ``end``, inclusive.

    Both bounds are taken on the same calendar day in the window's offset, so
    a window whose end precedes its start never matches.
    """

    zone = timezone(timedelta(hours=window.utc_offset_hours))
    local = moment.astimezone(zone)
    start = local.replace(
        hour=window.start.hour,
        minute=window.start.minute,
        second=0,
        microsecond=0,
    )
    end = local.replace(hour=window.end.hour, minute=window.end.minute, second=0, microsecond=0)
    inside = start <= local <= end
    if inside:
        logger.debug(
            "Now: %s, from: %s, to: %s",
            local.strftime("%Y-%m-%d %H:%M"),
            start.strftime("%Y-%m-%d %H:%M"),
            end.strftime("%Y-%m-%d %H:%M"),
        )
    return inside


def is_download_limit_reached(settings: UploadDefaults) -> bool:
    limit = settings.skip_when_download_reach
    if settings.stream_list_path is None or not limit:
        return False

    live_streams = count_live_streams(settings.stream_list_path)
    if live_streams > limit:
        logger.info("Busy internet usage: %d live streams, limit %d", live_streams, limit)
        return True
    logger.debug("Internet usage: %d, limit %d", live_streams, limit)
    return False


def count_live_streams(path: Path) -> int:
    """Number of entries under ``liveStreams``; unreadable lists count as zero."""

    try:
        payload = json.loads(path.read_text("utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as error:
        logger.debug("Stream list unreadable at %s: %s", path, error)
        return 0
    if not isinstance(payload, dict):
        return 0
    streams = payload.get("liveStreams")
    return len(streams) if isinstance(streams, dict) else 0
