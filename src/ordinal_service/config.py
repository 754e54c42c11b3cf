import os
from dataclasses import dataclass
from pathlib import Path


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    """Runtime configuration handed to every component at construction.

    ``root_dir`` is the converter's working directory; the converter always
    writes into ``<root_dir>/ordinal``, which is therefore the output dir.
    """

    root_dir: Path
    staging_dir: Path
    converter_path: Path
    converter_timeout_sec: float = 300.0
    output_limit_bytes: int = 1024 * 1024
    max_upload_mb: int = 50
    retention_hours: float = 24.0
    sweep_interval_sec: float = 3600.0
    cleanup_input_on_failure: bool = False
    output_route: str = "/ordinal"
    host: str = "0.0.0.0"
    port: int = 3000
    reload: bool = False
    log_level: str = "INFO"

    @property
    def output_dir(self) -> Path:
        return self.root_dir / "ordinal"

    @property
    def max_upload_bytes(self) -> int:
        return self.max_upload_mb * 1024 * 1024

    @property
    def retention_seconds(self) -> float:
        return self.retention_hours * 3600


def load_settings() -> Settings:
    root = Path(os.getenv("ORDINAL_ROOT_DIR", ".")).resolve()

    def _under_root(value: str) -> Path:
        p = Path(value)
        return p if p.is_absolute() else (root / p).resolve()

    return Settings(
        root_dir=root,
        staging_dir=_under_root(os.getenv("UPLOAD_DIR", "uploads")),
        converter_path=_under_root(os.getenv("CONVERTER_SCRIPT", "../create_ordinal_gif.sh")),
        converter_timeout_sec=float(os.getenv("CONVERTER_TIMEOUT_SEC", "300")),
        output_limit_bytes=int(os.getenv("CONVERTER_OUTPUT_LIMIT_BYTES", str(1024 * 1024))),
        max_upload_mb=int(os.getenv("MAX_UPLOAD_MB", "50")),
        retention_hours=float(os.getenv("RETENTION_HOURS", "24")),
        sweep_interval_sec=float(os.getenv("SWEEP_INTERVAL_SEC", "3600")),
        cleanup_input_on_failure=_env_flag("CLEANUP_INPUT_ON_FAILURE"),
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "3000")),
        reload=_env_flag("RELOAD"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
    )
