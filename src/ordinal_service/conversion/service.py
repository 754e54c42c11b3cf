import logging
from pathlib import Path

from .errors import ConversionTimeoutError
from .interfaces import (
    ChunkReader,
    ConversionJob,
    ConversionOutcome,
    ConverterGateway,
    StagingGateway,
    UploadedAsset,
)
from .reconcile import reconcile

logger = logging.getLogger(__name__)


class ConversionService:
    """Core domain service running one upload through the converter.

    Framework-agnostic: the HTTP layer hands in a chunk reader and gets back
    the staged asset plus a ConversionOutcome. Each call is independent; no
    state is shared between requests beyond the directories themselves.
    """

    def __init__(
        self,
        staging: StagingGateway,
        converter: ConverterGateway,
        *,
        work_dir: Path,
        output_dir: Path,
        route_prefix: str = "/ordinal",
        timeout_sec: float = 300.0,
        max_upload_bytes: int = 50 * 1024 * 1024,
        cleanup_input_on_failure: bool = False,
    ) -> None:
        self._staging = staging
        self._converter = converter
        self._work_dir = Path(work_dir)
        self._output_dir = Path(output_dir)
        self._route_prefix = route_prefix
        self._timeout_sec = timeout_sec
        self._max_upload_bytes = max_upload_bytes
        self._cleanup_input_on_failure = cleanup_input_on_failure

    async def stage(self, kind: str, filename: str, content_type: str, reader: ChunkReader) -> UploadedAsset:
        return await self._staging.stage_upload(
            filename,
            content_type,
            reader,
            kind=kind,
            max_bytes=self._max_upload_bytes,
        )

    def plan(self, asset: UploadedAsset) -> ConversionJob:
        return ConversionJob.for_asset(asset, work_dir=self._work_dir, timeout_sec=self._timeout_sec)

    async def convert(self, asset: UploadedAsset) -> ConversionOutcome:
        """Run the converter for a staged asset.

        ConverterUnavailableError propagates and leaves the staged input in
        place for diagnosis.
        """
        job = self.plan(asset)
        self._output_dir.mkdir(parents=True, exist_ok=True)
        result = await self._converter.run(job)
        outcome = reconcile(result, job, self._output_dir, self._route_prefix)

        if not outcome.succeeded:
            logger.error("Conversion failed for %s: %s", asset.storage_name, outcome.error)
            if isinstance(outcome.error, ConversionTimeoutError) or self._cleanup_input_on_failure:
                self._staging.discard(asset.path)
        else:
            logger.info("Conversion %s for %s: %s", outcome.status, asset.storage_name, sorted(outcome.urls.values()))
        return outcome

    async def convert_upload(
        self, kind: str, filename: str, content_type: str, reader: ChunkReader
    ) -> tuple[UploadedAsset, ConversionOutcome]:
        asset = await self.stage(kind, filename, content_type, reader)
        return asset, await self.convert(asset)
