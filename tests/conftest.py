"""Shared test fixtures: temp service roots and stand-in converter scripts."""
import io
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from ordinal_service.config import Settings
from ordinal_service.webapi import create_app

# Mimics create_ordinal_gif.sh: writes outputs into ./ordinal relative to its cwd.
CONVERTER_OK = """\
mkdir -p ./ordinal
if [ "$1" = "-p" ]; then
  [ -f "$2" ] || { echo "input not found: $2" >&2; exit 2; }
  cp "$2" "./ordinal/$4.webp"
  echo "converted image $2"
  exit 0
fi
[ -f "$1" ] || { echo "input not found: $1" >&2; exit 2; }
cp "$1" "./ordinal/$2.gif"
cp "$1" "./ordinal/$3.webp"
echo "converted video $1"
"""

CONVERTER_GIF_ONLY = """\
mkdir -p ./ordinal
cp "$1" "./ordinal/$2.gif"
echo "webp encoder unavailable" >&2
echo "gif only"
"""

CONVERTER_NO_OUTPUT = """\
echo "pretending to work"
exit 0
"""

CONVERTER_FAILS = """\
echo "ffmpeg: invalid data found when processing input" >&2
echo "starting conversion"
exit 3
"""

CONVERTER_HANGS = """\
echo "about to hang"
sleep 30
"""

CONVERTER_HANGS_NOISY = """\
echo "frame 1 warning" >&2
sleep 30
"""

# Exits straight away but leaves a background child holding stdout.
CONVERTER_LEAVES_CHILD = """\
mkdir -p ./ordinal
cp "$1" "./ordinal/$2.gif"
( sleep 1; touch ./late-marker ) &
exit 0
"""


def write_script(path: Path, body: str) -> Path:
    path.write_text("#!/bin/sh\n" + body, encoding="utf-8")
    path.chmod(0o755)
    return path


def make_reader(data: bytes):
    buf = io.BytesIO(data)

    async def read(n: int) -> bytes:
        return buf.read(n)

    return read


@pytest.fixture
def root_dir(tmp_path):
    root = tmp_path / "webapp"
    root.mkdir()
    return root


@pytest.fixture
def converter_script(tmp_path):
    return write_script(tmp_path / "create_ordinal_gif.sh", CONVERTER_OK)


@pytest.fixture
def settings(root_dir, converter_script):
    return Settings(
        root_dir=root_dir,
        staging_dir=root_dir / "uploads",
        converter_path=converter_script,
        converter_timeout_sec=10,
    )


@pytest.fixture
def api_client(settings):
    """TestClient bound to an app built on the temp settings (lifespan runs)."""
    with TestClient(create_app(settings)) as client:
        yield client
