"""Select candidate files in task folders."""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable
from pathlib import Path

from vod_runner.pipeline.models import TaskFilters

logger = logging.getLogger(__name__)


def enumerate_targets(dirs: Iterable[Path], filters: TaskFilters) -> dict[Path, list[str]]:
    """Map each directory to its matching filenames.

    Directories without matches are left out of the mapping. Missing or
    unreadable directories are reported and left out as well.
    """

    result: dict[Path, list[str]] = {}
    for directory in dirs:
        try:
            entries = sorted(entry.name for entry in os.scandir(directory) if entry.is_file())
        except FileNotFoundError:
            logger.warning("Folder not found, nothing to pick up: %s", directory)
            continue
        except NotADirectoryError:
            logger.warning("Not a folder, nothing to pick up: %s", directory)
            continue
        except PermissionError as error:
            logger.warning("Folder not readable: %s (%s)", directory, error)
            continue

        matched = [name for name in entries if is_target_file(name, filters)]
        if matched:
            result[Path(directory)] = matched
    return result


def is_target_file(filename: str, filters: TaskFilters) -> bool:
    return (
        _matches_includes(filename, filters.includes)
        and _has_allowed_extension(filename, filters.include_ext)
        and not _matches_any(filename, filters.excludes)
    )


def extension_of(filename: str) -> str:
    """Extension without the dot; dotfiles such as ``.env`` have none."""

    return os.path.splitext(filename)[1][1:]


def _matches_includes(filename: str, includes: tuple[str, ...]) -> bool:
    return not includes or _matches_any(filename, includes)


def _has_allowed_extension(filename: str, include_ext: tuple[str, ...]) -> bool:
    return extension_of(filename) in include_ext


def _matches_any(filename: str, needles: tuple[str, ...]) -> bool:
    return any(needle in filename for needle in needles)
