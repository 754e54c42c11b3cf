"""Turn a finished converter run into a ConversionOutcome.

A zero exit code is not proof of success: each expected artifact is checked on
disk, and the process verdict and the artifact verdict are combined here.
"""

import logging
from pathlib import Path

from .errors import ConversionProcessError, ConversionTimeoutError, OutputMismatchError
from .interfaces import ConversionJob, ConversionOutcome, OutcomeStatus, ProcessResult

logger = logging.getLogger(__name__)


def public_url(route_prefix: str, filename: str) -> str:
    return f"{route_prefix.rstrip('/')}/{filename}"


def reconcile(result: ProcessResult, job: ConversionJob, output_dir: Path, route_prefix: str) -> ConversionOutcome:
    checks = [(output_dir / a.filename, (output_dir / a.filename).is_file()) for a in job.artifacts]

    def failed(error) -> ConversionOutcome:
        return ConversionOutcome(
            status=OutcomeStatus.FAILED,
            stdout=result.stdout,
            stderr=result.stderr,
            checks=checks,
            error=error,
        )

    if result.timed_out:
        return failed(ConversionTimeoutError(f"Conversion timed out after {job.timeout_sec:g} seconds"))
    if result.returncode != 0:
        return failed(ConversionProcessError(f"Conversion script exited with code {result.returncode}"))

    present = {a.label for a, (_, exists) in zip(job.artifacts, checks) if exists}
    missing = [a for a in job.artifacts if a.label not in present]
    missing_primary = [a for a in missing if a.primary]
    if missing_primary:
        names = ", ".join(f"{output_dir.name}/{a.filename}" for a in missing_primary)
        logger.error("Converter contract violation: exited 0 but expected output missing: %s", names)
        return failed(OutputMismatchError("Output files not created", f"Expected files not found: {names}"))

    for a in missing:
        logger.warning("Secondary %s output not found: %s", a.label, a.filename)

    urls = {a.label: public_url(route_prefix, a.filename) for a in job.artifacts if a.label in present}
    return ConversionOutcome(
        status=OutcomeStatus.PARTIAL if missing else OutcomeStatus.SUCCEEDED,
        stdout=result.stdout,
        stderr=result.stderr,
        checks=checks,
        urls=urls,
    )
