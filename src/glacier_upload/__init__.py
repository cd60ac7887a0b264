"""
Glacier Upload - resumable multipart archive uploads to Glacier vaults.

This package provides:
- CLI tool for uploading, inspecting and aborting multipart uploads
- Python SDK for programmatic access
- SHA-256 tree hash computation compatible with the vault API
- Retry, resume and cancellation for long-running uploads
"""

__version__ = "1.0.0"
__author__ = "Glacier Upload Team"

from .core.api import GlacierUploadAPI, abort_upload, upload_archive
from .core.cancellation import CancellationToken
from .core.config import UploaderConfig
from .core.exceptions import (
    ConfigurationError,
    FatalTransportError,
    GlacierUploadError,
    InvalidPartSizeError,
    InvalidResumePointError,
    PartSizeExceededError,
    SourceReadError,
    TransientTransportError,
    UploadCancelled,
    UploadNotFoundError,
    ValidationError,
)
from .core.models import UploadResult, UploadSession
from .core.orchestrator import UploadOrchestrator, run_upload
from .core.partition import choose_part_size, validate_part_size
from .core.progress import LoggingProgressReporter, ProgressReporter
from .core.transport import GlacierTransport, TransportClient
from .core.treehash import combine_tree_hashes, compute_tree_hash

__all__ = [
    # Core classes
    "GlacierUploadAPI",
    "UploadOrchestrator",
    "UploadSession",
    "UploadResult",
    "UploaderConfig",
    "CancellationToken",
    "ProgressReporter",
    "LoggingProgressReporter",
    "TransportClient",
    "GlacierTransport",
    # Exceptions
    "GlacierUploadError",
    "ConfigurationError",
    "InvalidPartSizeError",
    "InvalidResumePointError",
    "PartSizeExceededError",
    "ValidationError",
    "SourceReadError",
    "TransientTransportError",
    "FatalTransportError",
    "UploadNotFoundError",
    "UploadCancelled",
    # Convenience functions
    "upload_archive",
    "abort_upload",
    "run_upload",
    "choose_part_size",
    "validate_part_size",
    "compute_tree_hash",
    "combine_tree_hashes",
    # Metadata
    "__version__",
    "__author__",
]
