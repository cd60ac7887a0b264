"""
Pydantic models for Glacier Upload.

The upload session is the one mutable record of a run; attempts, progress
events and results are short-lived values derived from it.
"""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .exceptions import ValidationError
from .partition import count_parts, part_length, validate_part_size
from .treehash import combine_tree_hashes


class AttemptOutcome(str, Enum):
    """Outcome of a single part attempt."""

    PENDING = "pending"
    SUCCESS = "success"
    TRANSIENT_FAILURE = "transient_failure"
    CANCELLED = "cancelled"
    SKIPPED = "skipped"


class PartAttempt(BaseModel):
    """One try at reading, hashing and sending a single part."""

    part_number: int = Field(..., ge=1, description="1-based part index")
    start: int = Field(..., ge=0, description="Byte offset of the part")
    length: int = Field(..., ge=0, description="Byte length of the part")
    attempt: int = Field(1, ge=1, description="Attempt counter, starting at 1")
    read_position: Optional[int] = Field(
        None, description="Source cursor position as last observed for this attempt"
    )
    checksum: Optional[str] = Field(None, description="Tree hash of the part (hex)")
    outcome: AttemptOutcome = Field(AttemptOutcome.PENDING)

    @property
    def end(self) -> int:
        """Exclusive end offset."""
        return self.start + self.length

    def retry(self) -> "PartAttempt":
        """Fresh attempt for the same byte range; nothing carries over but the counter."""
        return PartAttempt(
            part_number=self.part_number,
            start=self.start,
            length=self.length,
            attempt=self.attempt + 1,
        )


class UploadSession(BaseModel):
    """Client-side state of one multipart upload run."""

    vault_name: str = Field(..., min_length=1, description="Target vault")
    upload_id: str = Field(..., min_length=1, description="Multipart upload ID")
    archive_description: Optional[str] = Field(None, description="Archive description")
    part_size: int = Field(..., description="Bytes per part, fixed for the upload")
    total_bytes: int = Field(..., ge=1, description="Size of the source archive")
    total_parts: int = Field(..., ge=1, description="Number of parts")

    current_position: int = Field(0, ge=0, description="Offset of the next part")
    transferred_bytes: int = Field(0, ge=0, description="Bytes confirmed this run")
    transferred_parts: int = Field(0, ge=0, description="Parts confirmed this run")
    skipped_bytes: int = Field(0, ge=0, description="Bytes before the resume point")
    skipped_parts: int = Field(0, ge=0, description="Parts before the resume point")
    part_checksums: List[str] = Field(
        default_factory=list, description="Part tree hashes in part order"
    )

    cancelled: bool = Field(False, description="Run stopped on request")
    success: bool = Field(False, description="Every part was processed")
    failed: bool = Field(False, description="Run halted after exhausting retries")
    last_error: Optional[str] = Field(None, description="Last transport failure")
    elapsed_seconds: float = Field(0.0, ge=0, description="Duration of the run")

    model_config = ConfigDict(validate_assignment=True)

    @classmethod
    def start(
        cls,
        vault_name: str,
        upload_id: str,
        part_size: int,
        total_bytes: int,
        archive_description: Optional[str] = None,
    ) -> "UploadSession":
        """Create a session for an archive of ``total_bytes`` bytes.

        Raises:
            InvalidPartSizeError: if ``part_size`` is not acceptable.
            ValidationError: if the archive is empty.
        """
        validate_part_size(part_size)
        if total_bytes < 1:
            raise ValidationError("total_bytes", total_bytes, "archive must not be empty")
        return cls(
            vault_name=vault_name,
            upload_id=upload_id,
            archive_description=archive_description,
            part_size=part_size,
            total_bytes=total_bytes,
            total_parts=count_parts(total_bytes, part_size),
        )

    @property
    def current_part(self) -> int:
        """1-based number of the part starting at ``current_position``."""
        return self.current_position // self.part_size + 1

    @property
    def next_part(self) -> int:
        """Resume point: first part not yet confirmed by the remote."""
        return len(self.part_checksums) + 1

    @property
    def remaining_bytes(self) -> int:
        return max(0, self.total_bytes - self.current_position)

    @property
    def is_finished(self) -> bool:
        return self.current_position >= self.total_bytes

    @property
    def is_terminal(self) -> bool:
        return self.cancelled or self.success or self.failed

    def length_of(self, part_number: int) -> int:
        """Byte length of ``part_number`` within this archive."""
        return part_length(part_number, self.total_bytes, self.part_size)

    def record_skipped(self, attempt: PartAttempt) -> None:
        self.part_checksums.append(attempt.checksum)
        self.skipped_parts += 1
        self.skipped_bytes += attempt.length
        self.current_position = attempt.end

    def record_transferred(self, attempt: PartAttempt) -> None:
        self.part_checksums.append(attempt.checksum)
        self.transferred_parts += 1
        self.transferred_bytes += attempt.length
        self.current_position = attempt.end

    def mark_cancelled(self) -> None:
        self.cancelled, self.success, self.failed = True, False, False

    def mark_failed(self, error: Optional[str] = None) -> None:
        self.cancelled, self.success, self.failed = False, False, True
        if error:
            self.last_error = error

    def mark_succeeded(self) -> None:
        self.cancelled, self.success, self.failed = False, True, False

    def to_result(self) -> "UploadResult":
        """Snapshot of the session for the caller."""
        archive_checksum = None
        if self.success and len(self.part_checksums) == self.total_parts:
            archive_checksum = combine_tree_hashes(self.part_checksums)
        return UploadResult(
            success=self.success,
            cancelled=self.cancelled,
            vault_name=self.vault_name,
            upload_id=self.upload_id,
            part_size=self.part_size,
            total_bytes=self.total_bytes,
            transferred_bytes=self.transferred_bytes,
            total_parts=self.total_parts,
            transferred_parts=self.transferred_parts,
            skipped_parts=self.skipped_parts,
            next_part=self.next_part,
            part_checksums=list(self.part_checksums),
            archive_checksum=archive_checksum,
            last_error=self.last_error,
            elapsed_seconds=self.elapsed_seconds,
        )


class UploadResult(BaseModel):
    """Outcome of an upload run, as handed back to the caller."""

    success: bool = Field(..., description="Every part was uploaded or skipped")
    cancelled: bool = Field(..., description="Run stopped on request")
    vault_name: str = Field(..., description="Target vault")
    upload_id: str = Field(..., description="Multipart upload ID")
    part_size: int = Field(..., description="Bytes per part")
    total_bytes: int = Field(..., description="Archive size in bytes")
    transferred_bytes: int = Field(..., description="Bytes confirmed this run")
    total_parts: int = Field(..., description="Number of parts")
    transferred_parts: int = Field(..., description="Parts confirmed this run")
    skipped_parts: int = Field(0, description="Parts uploaded by an earlier run")
    next_part: int = Field(..., description="Part to resume from")
    part_checksums: List[str] = Field(
        default_factory=list, description="Part tree hashes in part order"
    )
    archive_checksum: Optional[str] = Field(None, description="Archive tree hash")
    archive_id: Optional[str] = Field(None, description="Archive ID after completion")
    location: Optional[str] = Field(None, description="Archive location after completion")
    last_error: Optional[str] = Field(None, description="Last transport failure")
    elapsed_seconds: float = Field(0.0, description="Duration of the run")

    @property
    def failed(self) -> bool:
        return not self.success and not self.cancelled


class ProgressEvent(BaseModel):
    """Snapshot of transfer progress, emitted during a run."""

    part_number: int = Field(..., ge=1)
    total_parts: int = Field(..., ge=1)
    attempt: int = Field(1, ge=1)
    bytes_done: int = Field(..., ge=0, description="Archive bytes sent this run")
    part_bytes_done: int = Field(..., ge=0, description="Bytes sent of the current part")
    part_length: int = Field(..., ge=0)
    total_bytes: int = Field(..., ge=0)
    skipped_bytes: int = Field(0, ge=0, description="Bytes a resumed run does not send")
    elapsed: float = Field(..., ge=0, description="Seconds since the run started")
    part_elapsed: float = Field(..., ge=0, description="Seconds since the part started")
    part_complete: bool = Field(False, description="Remote confirmed the part")


class ProgressStats(BaseModel):
    """Throughput and ETA derived from a progress event."""

    event: ProgressEvent
    percent: float = Field(..., ge=0)
    instantaneous_bps: float = Field(0.0, ge=0, description="Current part bytes/second")
    average_bps: float = Field(0.0, ge=0, description="Run bytes/second")
    eta_seconds: Optional[float] = Field(None, description="Estimated seconds remaining")
