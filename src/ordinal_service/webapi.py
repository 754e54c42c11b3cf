import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.datastructures import UploadFile
from starlette.exceptions import HTTPException

from . import __version__, responses
from .config import Settings, load_settings
from .conversion import (
    ConversionService,
    ConverterUnavailableError,
    MediaKind,
    MissingFileError,
    RetentionSweeper,
    UploadTooLargeError,
    ValidationError,
)
from .conversion.adapters import LocalStaging, ScriptConverter

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
for _noisy in ("multipart", "python_multipart"):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)

# Multipart framing around a single file part is far below this.
_MULTIPART_SLACK_BYTES = 64 * 1024


def _declared_too_large(request: Request, max_bytes: int) -> bool:
    try:
        declared = int(request.headers.get("content-length", ""))
    except ValueError:
        return False
    return declared > max_bytes + _MULTIPART_SLACK_BYTES


def create_app(settings: Settings | None = None) -> FastAPI:
    cfg = settings or load_settings()

    staging = LocalStaging(cfg.staging_dir)
    converter = ScriptConverter(cfg.converter_path, root_dir=cfg.root_dir, output_limit_bytes=cfg.output_limit_bytes)
    service = ConversionService(
        staging,
        converter,
        work_dir=cfg.root_dir,
        output_dir=cfg.output_dir,
        route_prefix=cfg.output_route,
        timeout_sec=cfg.converter_timeout_sec,
        max_upload_bytes=cfg.max_upload_bytes,
        cleanup_input_on_failure=cfg.cleanup_input_on_failure,
    )
    sweeper = RetentionSweeper(
        [staging.directory, cfg.output_dir],
        max_age_sec=cfg.retention_seconds,
        interval_sec=cfg.sweep_interval_sec,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configured_level = getattr(logging, cfg.log_level.upper(), None)
        if isinstance(configured_level, int):
            logging.getLogger().setLevel(configured_level)

        staging.ensure()
        cfg.output_dir.mkdir(parents=True, exist_ok=True)
        logger.info("Uploads directory: %s", staging.directory)
        logger.info("Converted files output to: %s (served from %s)", cfg.output_dir, cfg.output_route)
        logger.info("Converter script: %s (timeout %.0fs)", converter.script_path, cfg.converter_timeout_sec)
        if not converter.script_path.is_file():
            logger.warning("Converter script not found yet: %s", converter.script_path)

        await sweeper.start()
        yield
        await sweeper.stop()
        logger.info("Application shutdown complete")

    app = FastAPI(
        title="Ordinal Conversion Service",
        version=__version__,
        description="Upload an MP4 video or an image and get back ordinal GIF/WEBP renditions.",
        lifespan=lifespan,
    )
    app.state.settings = cfg
    app.state.service = service
    app.state.sweeper = sweeper

    app.mount(cfg.output_route, StaticFiles(directory=cfg.output_dir, check_dir=False), name="ordinal")

    async def handle_upload(request: Request, field: str, kind: str) -> JSONResponse:
        if _declared_too_large(request, cfg.max_upload_bytes):
            err = UploadTooLargeError(
                f"File too large. Maximum size is {cfg.max_upload_mb}MB.",
                f"Got request of {request.headers['content-length']} bytes, expected at most {cfg.max_upload_bytes}",
            )
            logger.warning("Upload rejected before reading body: %s", err)
            return responses.validation_error(err)

        try:
            async with request.form() as form:
                uploads = [v for v in form.getlist(field) if isinstance(v, UploadFile) and v.filename]
                if not uploads:
                    raise MissingFileError(f"Expected a file in form field '{field}'")
                if len(uploads) > 1:
                    raise ValidationError(
                        "File upload error",
                        f"Got {len(uploads)} files in '{field}', expected exactly one",
                    )
                upload = uploads[0]
                asset = await service.stage(kind, upload.filename, upload.content_type or "", upload.read)
        except ValidationError as e:
            logger.warning("Upload rejected: %s", e)
            return responses.validation_error(e)
        except HTTPException as e:
            # Raised by Starlette for a malformed multipart body.
            if e.status_code != status.HTTP_400_BAD_REQUEST:
                raise
            logger.warning("Malformed upload body: %s", e.detail)
            return responses.validation_error(ValidationError("File upload error", str(e.detail)))

        logger.info("File uploaded: %s (%d bytes)", asset.original_filename, asset.size_bytes)
        try:
            outcome = await service.convert(asset)
        except ConverterUnavailableError as e:
            logger.error("Converter unavailable, keeping %s for diagnosis: %s", asset.storage_name, e)
            return responses.subprocess_error(kind, e)
        return responses.conversion_result(kind, outcome)

    @app.get("/health")
    def health() -> dict[str, str]:
        """Basic health check endpoint."""
        return {"status": "ok"}

    @app.post("/upload")
    async def upload_video(request: Request) -> JSONResponse:
        """Convert an uploaded MP4 (form field ``videoFile``) into an ordinal GIF plus an optional WEBP."""
        try:
            return await handle_upload(request, "videoFile", MediaKind.VIDEO)
        except HTTPException:
            raise
        except Exception as e:
            logger.exception("Error in upload handler")
            return responses.internal_error(e)

    @app.post("/upload-image")
    async def upload_image(request: Request) -> JSONResponse:
        """Convert an uploaded image (form field ``imageFile``) into an ordinal WEBP."""
        try:
            return await handle_upload(request, "imageFile", MediaKind.IMAGE)
        except HTTPException:
            raise
        except Exception as e:
            logger.exception("Error in image upload handler")
            return responses.internal_error(e)

    return app


app = create_app()


def run() -> None:
    """Run the ASGI server using uvicorn.

    Host, port and reload come from HOST, PORT and RELOAD (default 0.0.0.0:3000).
    """
    import uvicorn

    cfg = load_settings()
    uvicorn.run("ordinal_service.webapi:app", host=cfg.host, port=cfg.port, reload=cfg.reload)


if __name__ == "__main__":
    run()
