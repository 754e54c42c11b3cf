from dataclasses import dataclass, field
from pathlib import Path
from typing import Awaitable, Callable, Protocol

from .errors import SubprocessError

ChunkReader = Callable[[int], Awaitable[bytes]]


class MediaKind:
    VIDEO = "video"
    IMAGE = "image"


class OutcomeStatus:
    SUCCEEDED = "succeeded"
    PARTIAL = "partial"
    FAILED = "failed"


# Declared content type -> permitted file extensions.
ALLOWED_TYPES: dict[str, tuple[str, ...]] = {
    "video/mp4": (".mp4",),
    "image/jpeg": (".jpg", ".jpeg"),
    "image/png": (".png",),
    "image/gif": (".gif",),
}

KIND_TYPES: dict[str, tuple[str, ...]] = {
    MediaKind.VIDEO: ("video/mp4",),
    MediaKind.IMAGE: ("image/jpeg", "image/png", "image/gif"),
}


@dataclass(frozen=True)
class UploadedAsset:
    original_filename: str
    storage_name: str
    path: Path
    kind: str
    size_bytes: int
    content_type: str

    @property
    def stem(self) -> str:
        return Path(self.storage_name).stem


@dataclass(frozen=True)
class ExpectedArtifact:
    label: str
    basename: str
    extension: str
    primary: bool

    @property
    def filename(self) -> str:
        return f"{self.basename}.{self.extension}"


@dataclass(frozen=True)
class ConversionJob:
    input_path: Path
    kind: str
    artifacts: tuple[ExpectedArtifact, ...]
    work_dir: Path
    timeout_sec: float

    @classmethod
    def for_asset(cls, asset: UploadedAsset, *, work_dir: Path, timeout_sec: float) -> "ConversionJob":
        """Derive output basenames from the asset's unique storage stem."""
        stem = asset.stem
        if asset.kind == MediaKind.VIDEO:
            artifacts = (
                ExpectedArtifact("gif", f"{stem}-ordinal-gif", "gif", primary=True),
                ExpectedArtifact("webp", f"{stem}-ordinal-webp", "webp", primary=False),
            )
        else:
            artifacts = (ExpectedArtifact("webp", f"{stem}-ordinal", "webp", primary=True),)
        return cls(
            input_path=asset.path,
            kind=asset.kind,
            artifacts=artifacts,
            work_dir=work_dir,
            timeout_sec=timeout_sec,
        )

    def artifact(self, label: str) -> ExpectedArtifact:
        for a in self.artifacts:
            if a.label == label:
                return a
        raise KeyError(label)


@dataclass(frozen=True)
class ProcessResult:
    returncode: int | None
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False
    stdout_truncated: bool = False
    stderr_truncated: bool = False

    @property
    def ok(self) -> bool:
        return not self.timed_out and self.returncode == 0


@dataclass(frozen=True)
class ConversionOutcome:
    status: str
    stdout: str
    stderr: str
    checks: list[tuple[Path, bool]] = field(default_factory=list)
    urls: dict[str, str] = field(default_factory=dict)
    error: SubprocessError | None = None

    @property
    def succeeded(self) -> bool:
        return self.status != OutcomeStatus.FAILED


class StagingGateway(Protocol):
    async def stage_upload(
        self,
        filename: str,
        content_type: str,
        reader: ChunkReader,
        *,
        kind: str,
        max_bytes: int,
    ) -> UploadedAsset:
        ...

    def discard(self, path: Path) -> bool:
        ...


class ConverterGateway(Protocol):
    async def run(self, job: ConversionJob) -> ProcessResult:
        """Run the converter for ``job``; raise ConverterUnavailableError if it cannot start."""
