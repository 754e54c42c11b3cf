"""
Domain layer for media conversion.
Provides gateways for the staging area and the external converter, the
output reconciliation policy, the retention sweeper, and a service that
orchestrates one upload end to end so the HTTP front-end stays thin.
"""

from .errors import (
    ConversionProcessError,
    ConversionTimeoutError,
    ConverterUnavailableError,
    MissingFileError,
    OrdinalServiceError,
    OutputMismatchError,
    SubprocessError,
    UnsupportedMediaTypeError,
    UploadTooLargeError,
    ValidationError,
)
from .interfaces import (
    ConversionJob,
    ConversionOutcome,
    ConverterGateway,
    ExpectedArtifact,
    MediaKind,
    OutcomeStatus,
    ProcessResult,
    StagingGateway,
    UploadedAsset,
)
from .reconcile import reconcile
from .service import ConversionService
from .sweeper import RetentionSweeper, SweepReport
