"""Error taxonomy for the upload/convert pipeline.

``ValidationError`` subclasses are client faults and map to 4xx responses.
``SubprocessError`` subclasses are server/environment faults and map to 5xx.
"""


class OrdinalServiceError(Exception):
    def __init__(self, message: str, detail: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail

    def __str__(self) -> str:
        if self.detail:
            return f"{self.message} ({self.detail})"
        return self.message


class ValidationError(OrdinalServiceError):
    pass


class MissingFileError(ValidationError):
    def __init__(self, detail: str | None = None) -> None:
        super().__init__("No file uploaded.", detail)


class UnsupportedMediaTypeError(ValidationError):
    pass


class UploadTooLargeError(ValidationError):
    pass


class SubprocessError(OrdinalServiceError):
    pass


class ConverterUnavailableError(SubprocessError):
    """The converter or its inputs failed the pre-launch checks."""


class ConversionProcessError(SubprocessError):
    pass


class ConversionTimeoutError(SubprocessError):
    pass


class OutputMismatchError(SubprocessError):
    """The converter exited cleanly but the primary artifact is absent."""
