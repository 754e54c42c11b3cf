import asyncio
import logging
import os
import re
import secrets
import signal
import time
from pathlib import Path
from typing import BinaryIO, Callable

from .errors import ConverterUnavailableError, UnsupportedMediaTypeError, UploadTooLargeError
from .interfaces import (
    ALLOWED_TYPES,
    KIND_TYPES,
    ChunkReader,
    ConversionJob,
    ConverterGateway,
    MediaKind,
    ProcessResult,
    StagingGateway,
    UploadedAsset,
)

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9._-]")
TRUNCATION_MARKER = "\n...[output truncated]"
_DRAIN_GRACE_SEC = 5.0

_KIND_MESSAGES = {
    MediaKind.VIDEO: "Invalid file type. Only MP4 videos are allowed.",
    MediaKind.IMAGE: "Invalid file type. Only JPEG/PNG/GIF images are allowed.",
}


def _client_basename(filename: str) -> str:
    # Browsers may send a full client-side path; only the last component matters.
    return filename.replace("\\", "/").rsplit("/", 1)[-1]


class LocalStaging(StagingGateway):
    """Inbound staging directory: validation, collision-free naming, streaming writes."""

    def __init__(
        self,
        staging_dir: str | Path,
        *,
        chunk_size: int = 1024 * 1024,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._base = Path(staging_dir).resolve()
        self._chunk_size = chunk_size
        self._clock = clock

    @property
    def directory(self) -> Path:
        return self._base

    def ensure(self) -> None:
        self._base.mkdir(parents=True, exist_ok=True)

    def validate(self, filename: str, content_type: str, kind: str) -> str:
        """Check the declared type against the allow-list; return the normalised extension."""
        ct = (content_type or "").split(";", 1)[0].strip().lower()
        ext = os.path.splitext(_client_basename(filename))[1].lower()
        permitted = KIND_TYPES[kind]
        if ct not in ALLOWED_TYPES or ct not in permitted:
            raise UnsupportedMediaTypeError(
                _KIND_MESSAGES[kind],
                f"Got {ct or 'no content type'}, expected {' or '.join(permitted)}",
            )
        allowed_exts = ALLOWED_TYPES[ct]
        if ext not in allowed_exts:
            raise UnsupportedMediaTypeError(
                _KIND_MESSAGES[kind],
                f"Got extension {ext or '(none)'} for {ct}, expected {' or '.join(allowed_exts)}",
            )
        return ext

    def storage_name(self, filename: str, ext: str) -> str:
        stem = os.path.splitext(_client_basename(filename))[0]
        # A leading dash would reach the converter as an option.
        safe_stem = _UNSAFE_CHARS.sub("", stem).lstrip("-.") or "upload"
        millis = int(self._clock() * 1000)
        return f"{safe_stem}-{millis}-{secrets.randbelow(10**9)}{ext}"

    def _open_unique(self, filename: str, ext: str) -> tuple[Path, BinaryIO]:
        self.ensure()
        for _ in range(5):
            path = self._base / self.storage_name(filename, ext)
            try:
                return path, path.open("xb")
            except FileExistsError:
                continue
        raise FileExistsError(f"could not allocate a unique staging name for {filename!r}")

    async def stage_upload(
        self,
        filename: str,
        content_type: str,
        reader: ChunkReader,
        *,
        kind: str,
        max_bytes: int,
    ) -> UploadedAsset:
        ext = self.validate(filename, content_type, kind)
        path, f_out = self._open_unique(filename, ext)
        size_bytes = 0
        completed = False
        try:
            with f_out:
                while True:
                    chunk = await reader(self._chunk_size)
                    if not chunk:
                        break
                    size_bytes += len(chunk)
                    if size_bytes > max_bytes:
                        raise UploadTooLargeError(
                            f"File too large. Maximum size is {max_bytes // (1024 * 1024)}MB.",
                            f"Got more than {max_bytes} bytes, expected at most {max_bytes}",
                        )
                    f_out.write(chunk)
            completed = True
        finally:
            if not completed:
                # Oversized, failed, or cancelled (client went away): drop the partial file.
                self.discard(path)

        logger.info("File staged: %s as %s (%d bytes)", filename, path.name, size_bytes)
        return UploadedAsset(
            original_filename=filename,
            storage_name=path.name,
            path=path,
            kind=kind,
            size_bytes=size_bytes,
            content_type=(content_type or "").split(";", 1)[0].strip().lower(),
        )

    def discard(self, path: Path) -> bool:
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            logger.error("Error cleaning up file %s: %s", path.name, e)
            return False
        logger.info("Cleaned up file: %s", path.name)
        return True


class _BoundedBuffer:
    def __init__(self, limit: int) -> None:
        self.limit = limit
        self.data = bytearray()
        self.truncated = False

    async def drain(self, stream: asyncio.StreamReader) -> None:
        while True:
            chunk = await stream.read(64 * 1024)
            if not chunk:
                return
            room = self.limit - len(self.data)
            if room > 0:
                self.data.extend(chunk[:room])
            if len(chunk) > room:
                self.truncated = True

    def text(self) -> str:
        out = self.data.decode("utf-8", errors="replace")
        return out + TRUNCATION_MARKER if self.truncated else out


class ScriptConverter(ConverterGateway):
    """Runs the external conversion script as a subprocess.

    The script is untrusted: it is re-validated before every launch, runs in its
    own process group so a timeout kills everything it spawned, and its output
    is captured into bounded buffers.
    """

    def __init__(self, script_path: str | Path, *, root_dir: str | Path, output_limit_bytes: int = 1024 * 1024) -> None:
        self._root = Path(root_dir).resolve()
        script = Path(script_path)
        self._script = script if script.is_absolute() else self._root / script
        self._output_limit = output_limit_bytes

    @property
    def script_path(self) -> Path:
        return self._script

    def _display(self, path: Path) -> str:
        return os.path.relpath(path, self._root)

    def build_args(self, job: ConversionJob) -> list[str]:
        rel_input = os.path.relpath(job.input_path, job.work_dir)
        if job.kind == MediaKind.VIDEO:
            return [rel_input, job.artifact("gif").basename, job.artifact("webp").basename]
        return ["-p", rel_input, "-o", job.artifact("webp").basename, "-t", "webp"]

    def verify(self, job: ConversionJob) -> Path:
        """Second validation layer right before launch; returns the resolved script path."""
        script = self._script.resolve()
        if not script.is_file():
            raise ConverterUnavailableError(f"Conversion script not found: {self._display(script)}")
        if not os.access(script, os.X_OK):
            raise ConverterUnavailableError(f"Conversion script not executable: {self._display(script)}")
        if not job.work_dir.is_dir():
            raise ConverterUnavailableError(f"Working directory does not exist: {self._display(job.work_dir)}")
        input_path = job.work_dir / os.path.relpath(job.input_path, job.work_dir)
        if not input_path.is_file():
            raise ConverterUnavailableError(f"Input file not found: {self._display(input_path)}")
        return script

    async def run(self, job: ConversionJob) -> ProcessResult:
        script = self.verify(job)
        args = self.build_args(job)
        logger.info("Executing: %s %s (cwd: %s)", script.name, " ".join(args), job.work_dir)
        try:
            proc = await asyncio.create_subprocess_exec(
                str(script),
                *args,
                cwd=str(job.work_dir),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=True,
            )
        except OSError as e:
            raise ConverterUnavailableError(f"Could not launch {self._display(script)}: {e.strerror or e}") from e

        out = _BoundedBuffer(self._output_limit)
        err = _BoundedBuffer(self._output_limit)
        drains = asyncio.gather(out.drain(proc.stdout), err.drain(proc.stderr))
        timed_out = False
        try:
            await asyncio.wait_for(proc.wait(), timeout=job.timeout_sec)
        except asyncio.TimeoutError:
            logger.error("Converter exceeded %.1fs for %s; killing pid %d", job.timeout_sec, job.input_path.name, proc.pid)
            timed_out = True
        except asyncio.CancelledError:
            await asyncio.shield(self._terminate(proc, drains))
            raise

        # Background children of the script may outlive it and hold the pipes open.
        await self._terminate(proc, drains)
        if timed_out:
            return ProcessResult(
                returncode=None,
                stdout=out.text(),
                stderr=err.text(),
                timed_out=True,
                stdout_truncated=out.truncated,
                stderr_truncated=err.truncated,
            )

        result = ProcessResult(
            returncode=proc.returncode,
            stdout=out.text(),
            stderr=err.text(),
            stdout_truncated=out.truncated,
            stderr_truncated=err.truncated,
        )
        logger.debug("Script stdout: %s", result.stdout)
        if result.ok and result.stderr:
            logger.warning("Script stderr (warnings): %s", result.stderr)
        elif not result.ok:
            logger.error("Script exited with code %s: %s", result.returncode, result.stderr)
        return result

    @staticmethod
    async def _terminate(proc: asyncio.subprocess.Process, drains: asyncio.Future) -> None:
        """Kill the script's whole session, reap it, then collect what is left in the pipes."""
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
        except PermissionError:
            if proc.returncode is None:
                proc.kill()
        await proc.wait()
        try:
            await asyncio.wait_for(drains, timeout=_DRAIN_GRACE_SEC)
        except asyncio.TimeoutError:
            logger.warning("Converter output pipes still open %.0fs after pid %d exited", _DRAIN_GRACE_SEC, proc.pid)
