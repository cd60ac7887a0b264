"""
Exception classes for Glacier Upload.

Configuration errors are raised before any transfer begins, source errors
abort the run, and transport errors are split into transient (retried) and
fatal (propagated) failures.
"""

from typing import Any, Dict, Optional


class GlacierUploadError(Exception):
    """Base exception for all Glacier Upload errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} (Details: {self.details})"
        return self.message


class ConfigurationError(GlacierUploadError):
    """Raised for configuration-related errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, details)


class InvalidPartSizeError(ConfigurationError):
    """Raised when a part size is not a power-of-two number of MiB in range."""

    def __init__(self, part_size: int, reason: str) -> None:
        super().__init__(f"Invalid part size {part_size}: {reason}", {"part_size": part_size})
        self.part_size = part_size


class PartSizeExceededError(ConfigurationError):
    """Raised when an archive cannot be split without exceeding the part size limit."""

    def __init__(self, archive_size: int, part_size: int, max_part_size: int) -> None:
        super().__init__(
            f"Archive of {archive_size} bytes needs parts of {part_size} bytes, "
            f"above the {max_part_size} byte limit",
            {
                "archive_size": archive_size,
                "part_size": part_size,
                "max_part_size": max_part_size,
            },
        )
        self.archive_size = archive_size
        self.part_size = part_size


class InvalidResumePointError(ConfigurationError):
    """Raised when the resume part number falls outside the archive."""

    def __init__(self, resume_from_part: int, total_parts: int) -> None:
        super().__init__(
            f"Cannot resume from part {resume_from_part}: archive has {total_parts} parts",
            {"resume_from_part": resume_from_part, "total_parts": total_parts},
        )
        self.resume_from_part = resume_from_part
        self.total_parts = total_parts


class ValidationError(GlacierUploadError):
    """Raised for input validation errors."""

    def __init__(self, field: str, value: Any, message: str) -> None:
        details = {"field": field, "value": value}
        super().__init__(f"Validation error for {field}: {message}", details)
        self.field = field
        self.value = value


class SourceReadError(GlacierUploadError):
    """Raised when the source archive cannot be read."""

    def __init__(
        self, message: str, file_path: Optional[str] = None, offset: Optional[int] = None
    ) -> None:
        details: Dict[str, Any] = {}
        if file_path:
            details["file_path"] = file_path
        if offset is not None:
            details["offset"] = offset
        super().__init__(message, details)
        self.file_path = file_path
        self.offset = offset
        self.abort_error: Optional[BaseException] = None


class TransportError(GlacierUploadError):
    """Raised for errors reported by the remote vault service."""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
    ) -> None:
        details: Dict[str, Any] = {}
        if code:
            details["code"] = code
        if status_code:
            details["status_code"] = status_code
        super().__init__(message, details)
        self.code = code
        self.status_code = status_code


class TransientTransportError(TransportError):
    """Raised when a request failed in a way that is worth retrying."""


class FatalTransportError(TransportError):
    """Raised when a request failed in a way that retrying cannot fix."""


class UploadNotFoundError(FatalTransportError):
    """Raised when the multipart upload no longer exists on the remote side."""

    def __init__(self, upload_id: str, vault_name: Optional[str] = None) -> None:
        super().__init__(
            f"Multipart upload not found: {upload_id}", code="ResourceNotFoundException"
        )
        self.details.update({"upload_id": upload_id, "vault_name": vault_name})
        self.upload_id = upload_id
        self.vault_name = vault_name


class UploadCancelled(GlacierUploadError):
    """Raised inside a transfer to stop it once cancellation was requested."""

    def __init__(self, part_number: Optional[int] = None) -> None:
        details = {"part_number": part_number} if part_number else {}
        super().__init__("Upload cancelled", details)
        self.part_number = part_number
