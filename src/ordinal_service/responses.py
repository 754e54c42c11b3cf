"""Translate pipeline results into JSON responses.

Bodies only ever carry route-relative URLs, never filesystem paths.
"""

from fastapi import status
from fastapi.responses import JSONResponse

from .conversion import (
    ConversionOutcome,
    ConversionTimeoutError,
    MediaKind,
    OrdinalServiceError,
    OutputMismatchError,
    SubprocessError,
    ValidationError,
)

_SUCCESS_MESSAGES = {
    MediaKind.VIDEO: "Conversion successful!",
    MediaKind.IMAGE: "Image converted to WEBP successfully!",
}

_FAILURE_MESSAGES = {
    MediaKind.VIDEO: "Error during conversion process.",
    MediaKind.IMAGE: "Error during image conversion process.",
}


def validation_error(err: ValidationError) -> JSONResponse:
    body: dict[str, object] = {"message": err.message}
    if err.detail:
        body["error"] = err.detail
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=body)


def subprocess_error(kind: str, err: SubprocessError, *, stdout: str = "", stderr: str = "") -> JSONResponse:
    if isinstance(err, (OutputMismatchError, ConversionTimeoutError)):
        # Stderr is only context here; lead with what went wrong.
        detail = "\n".join(part for part in (str(err), stderr) if part)
    else:
        detail = stderr or str(err)
    body: dict[str, object] = {"message": _FAILURE_MESSAGES[kind], "error": detail}
    if stdout:
        body["stdout"] = stdout
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=body)


def internal_error(err: Exception) -> JSONResponse:
    message = err.message if isinstance(err, OrdinalServiceError) else type(err).__name__
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"message": "Internal server error", "error": message},
    )


def conversion_result(kind: str, outcome: ConversionOutcome) -> JSONResponse:
    if not outcome.succeeded:
        assert outcome.error is not None
        return subprocess_error(kind, outcome.error, stdout=outcome.stdout, stderr=outcome.stderr)

    body: dict[str, object] = {"message": _SUCCESS_MESSAGES[kind]}
    if kind == MediaKind.VIDEO:
        body["gifUrl"] = outcome.urls["gif"]
        if "webp" in outcome.urls:
            body["webpUrl"] = outcome.urls["webp"]
    else:
        body["webpUrl"] = outcome.urls["webp"]
    body["script_stdout"] = outcome.stdout
    return JSONResponse(status_code=status.HTTP_200_OK, content=body)
