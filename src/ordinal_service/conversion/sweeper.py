"""Age-based cleanup of the staging and output directories."""

import asyncio
import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    scanned: int = 0
    removed: int = 0
    failed: int = 0


class RetentionSweeper:
    """Deletes files older than ``max_age_sec`` from a fixed set of directories.

    Only top-level regular files of the configured directories are considered.
    Every failure is logged and skipped; a sweep never raises for I/O errors.
    """

    def __init__(
        self,
        directories: Iterable[str | Path],
        *,
        max_age_sec: float = 24 * 3600,
        interval_sec: float = 3600,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._dirs = [Path(d) for d in directories]
        self._max_age = max_age_sec
        self._interval = interval_sec
        self._clock = clock
        self._task: asyncio.Task | None = None

    @property
    def directories(self) -> list[Path]:
        return list(self._dirs)

    async def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _loop(self) -> None:
        while True:
            try:
                await self.sweep_once()
            except Exception:
                logger.exception("Retention sweep failed")
            await asyncio.sleep(self._interval)

    async def sweep_once(self) -> SweepReport:
        report = SweepReport()
        now = self._clock()
        for directory in self._dirs:
            try:
                entries = await asyncio.to_thread(_list_files, directory)
            except FileNotFoundError:
                logger.info("Sweep skipped %s: directory does not exist", directory)
                continue
            except OSError as e:
                logger.error("Error reading directory %s: %s", directory, e)
                continue
            for path in entries:
                report.scanned += 1
                try:
                    mtime = (await asyncio.to_thread(path.stat)).st_mtime
                except FileNotFoundError:
                    continue
                except OSError as e:
                    logger.error("Error getting file stats for %s: %s", path, e)
                    report.failed += 1
                    continue
                if now - mtime <= self._max_age:
                    continue
                try:
                    await asyncio.to_thread(path.unlink, missing_ok=True)
                except OSError as e:
                    logger.error("Error deleting expired file %s: %s", path, e)
                    report.failed += 1
                    continue
                report.removed += 1
                logger.info("Deleted expired file: %s", path)
        if report.removed or report.failed:
            logger.info(
                "Retention sweep: scanned=%d removed=%d failed=%d", report.scanned, report.removed, report.failed
            )
        return report


def _list_files(directory: Path) -> list[Path]:
    with os.scandir(directory) as it:
        return [Path(entry.path) for entry in it if entry.is_file(follow_symlinks=False)]
