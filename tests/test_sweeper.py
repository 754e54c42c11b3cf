"""Tests for the retention sweeper."""
import asyncio
import os
from pathlib import Path

import pytest

from ordinal_service.conversion import RetentionSweeper
from ordinal_service.conversion import sweeper as sweeper_module

NOW = 1_700_000_000.0
DAY = 24 * 3600


def _file(path: Path, age_sec: float) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"x")
    os.utime(path, (NOW - age_sec, NOW - age_sec))
    return path


@pytest.fixture
def dirs(tmp_path):
    return tmp_path / "uploads", tmp_path / "ordinal"


@pytest.mark.asyncio
async def test_deletes_only_expired_files(dirs):
    uploads, ordinal = dirs
    old_upload = _file(uploads / "old.mp4", DAY + 60)
    new_upload = _file(uploads / "new.mp4", DAY - 60)
    old_gif = _file(ordinal / "old.gif", 3 * DAY)
    new_gif = _file(ordinal / "new.gif", 10)

    sweeper = RetentionSweeper([uploads, ordinal], max_age_sec=DAY, clock=lambda: NOW)
    report = await sweeper.sweep_once()

    assert not old_upload.exists()
    assert not old_gif.exists()
    assert new_upload.exists()
    assert new_gif.exists()
    assert report.removed == 2
    assert report.failed == 0
    assert report.scanned == 4


@pytest.mark.asyncio
async def test_missing_directory_is_skipped(dirs, tmp_path):
    uploads, ordinal = dirs
    old_gif = _file(ordinal / "old.gif", 2 * DAY)
    sweeper = RetentionSweeper([tmp_path / "does-not-exist", ordinal], max_age_sec=DAY, clock=lambda: NOW)

    report = await sweeper.sweep_once()

    assert report.removed == 1
    assert not old_gif.exists()


@pytest.mark.asyncio
async def test_unreadable_directory_does_not_stop_the_sweep(dirs, monkeypatch):
    uploads, ordinal = dirs
    upload = _file(uploads / "old.mp4", 2 * DAY)
    old_gif = _file(ordinal / "old.gif", 2 * DAY)
    real_list_files = sweeper_module._list_files

    def flaky_list_files(directory):
        if directory == uploads:
            raise PermissionError("permission denied")
        return real_list_files(directory)

    monkeypatch.setattr(sweeper_module, "_list_files", flaky_list_files)
    report = await RetentionSweeper([uploads, ordinal], max_age_sec=DAY, clock=lambda: NOW).sweep_once()

    assert report.removed == 1
    assert not old_gif.exists()
    assert upload.exists()


@pytest.mark.asyncio
async def test_subdirectories_and_outside_files_are_untouched(dirs, tmp_path):
    uploads, ordinal = dirs
    nested = _file(uploads / "nested" / "old.mp4", 2 * DAY)
    outside = _file(tmp_path / "elsewhere.mp4", 2 * DAY)
    (ordinal).mkdir(parents=True, exist_ok=True)
    os.symlink(outside, ordinal / "link.gif")

    await RetentionSweeper([uploads, ordinal], max_age_sec=DAY, clock=lambda: NOW).sweep_once()

    assert nested.exists()
    assert outside.exists()


@pytest.mark.asyncio
async def test_one_stuck_file_does_not_block_the_rest(dirs, monkeypatch):
    uploads, ordinal = dirs
    stuck = _file(uploads / "stuck.mp4", 2 * DAY)
    others = [_file(uploads / f"old-{i}.mp4", 2 * DAY) for i in range(3)] + [_file(ordinal / "old.gif", 2 * DAY)]

    real_unlink = Path.unlink

    def flaky_unlink(self, missing_ok=False):
        if self.name == "stuck.mp4":
            raise PermissionError("busy")
        return real_unlink(self, missing_ok=missing_ok)

    monkeypatch.setattr(Path, "unlink", flaky_unlink)
    sweeper = RetentionSweeper([uploads, ordinal], max_age_sec=DAY, clock=lambda: NOW)
    report = await sweeper.sweep_once()

    assert report.failed == 1
    assert report.removed == 4
    assert stuck.exists()
    assert not any(p.exists() for p in others)

    monkeypatch.setattr(Path, "unlink", real_unlink)
    report = await sweeper.sweep_once()
    assert report.removed == 1
    assert not stuck.exists()


@pytest.mark.asyncio
async def test_background_loop_sweeps_on_start(dirs):
    uploads, ordinal = dirs
    old = _file(uploads / "old.mp4", 2 * DAY)
    sweeper = RetentionSweeper([uploads, ordinal], max_age_sec=DAY, interval_sec=3600, clock=lambda: NOW)

    await sweeper.start()
    try:
        for _ in range(100):
            if not old.exists():
                break
            await asyncio.sleep(0.02)
    finally:
        await sweeper.stop()

    assert not old.exists()


@pytest.mark.asyncio
async def test_loop_survives_unexpected_errors(dirs, monkeypatch):
    uploads, ordinal = dirs
    sweeper = RetentionSweeper([uploads, ordinal], max_age_sec=DAY, interval_sec=0.01, clock=lambda: NOW)
    calls = 0

    async def boom():
        nonlocal calls
        calls += 1
        raise RuntimeError("unexpected")

    monkeypatch.setattr(sweeper, "sweep_once", boom)
    await sweeper.start()
    try:
        for _ in range(100):
            if calls >= 3:
                break
            await asyncio.sleep(0.02)
    finally:
        await sweeper.stop()

    assert calls >= 3
