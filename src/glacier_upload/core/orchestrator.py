"""Sequential multipart upload of an archive, with retry, resume and cancellation."""

import logging
import os
import time
from pathlib import Path
from typing import BinaryIO, Callable, Optional, Union

from .cancellation import CancellationToken
from .exceptions import (
    ConfigurationError,
    FatalTransportError,
    GlacierUploadError,
    InvalidResumePointError,
    SourceReadError,
    UploadCancelled,
    ValidationError,
)
from .models import AttemptOutcome, PartAttempt, ProgressEvent, UploadSession
from .progress import ProgressReporter, format_duration, human_mb_per_s
from .transport import TransportClient
from .treehash import compute_tree_hash, read_exact

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def read_part(fileobj: BinaryIO, attempt: PartAttempt, file_path: Optional[str] = None) -> bytes:
    """Read the byte range of ``attempt``, repositioning the cursor first.

    The cursor is never assumed to be where the previous read left it: a
    failed attempt may have left it anywhere.

    Raises:
        SourceReadError: if the range cannot be read in full.
    """
    try:
        position = fileobj.tell()
        if position != attempt.start:
            logger.debug(
                f"Part {attempt.part_number}: repositioning source from {position} to {attempt.start}"
            )
            fileobj.seek(attempt.start)
        attempt.read_position = fileobj.tell()
        if attempt.read_position != attempt.start:
            raise SourceReadError(
                f"Could not seek to offset {attempt.start}", file_path, attempt.start
            )

        data = read_exact(fileobj, attempt.length)
        attempt.read_position = fileobj.tell()
    except OSError as e:
        raise SourceReadError(f"Failed to read source: {e}", file_path, attempt.start) from e

    if len(data) != attempt.length:
        raise SourceReadError(
            f"Part {attempt.part_number}: expected {attempt.length} bytes, got {len(data)}",
            file_path,
            attempt.start,
        )
    return data


class UploadOrchestrator:
    """Drive one upload run over a session, one part at a time.

    Args:
        transport: Vault API transport
        retry_budget: Attempts per part before the run is halted
        retry_backoff: Seconds to wait before the first retry, doubled per retry
        progress: Optional reporter fed with progress events
        clock: Monotonic time source
    """

    def __init__(
        self,
        transport: TransportClient,
        retry_budget: int = 5,
        retry_backoff: float = 0.0,
        progress: Optional[ProgressReporter] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if retry_budget < 1:
            raise ConfigurationError(
                f"Retry budget must be at least 1, got {retry_budget}",
                {"retry_budget": retry_budget},
            )
        self.transport = transport
        self.retry_budget = retry_budget
        self.retry_backoff = retry_backoff
        self.progress = progress
        self.clock = clock

        self._run_start = 0.0

    def run(
        self,
        session: UploadSession,
        source: PathLike,
        resume_from_part: int = 1,
        cancel_token: Optional[CancellationToken] = None,
    ) -> UploadSession:
        """Upload every part of ``source`` and return the final session.

        Part failures, retry exhaustion and cancellation are recorded on the
        session rather than raised.

        Raises:
            InvalidResumePointError: if ``resume_from_part`` is outside the archive.
            SourceReadError: if the source cannot be read; the remote upload
                is aborted first.
            FatalTransportError: if the remote reports an unrecoverable error.
        """
        if not 1 <= resume_from_part <= session.total_parts:
            raise InvalidResumePointError(resume_from_part, session.total_parts)
        if session.current_position or session.part_checksums or session.is_terminal:
            raise ValidationError(
                "session", session.upload_id, "session has already been used for a run"
            )

        token = cancel_token or CancellationToken()
        file_path = str(source)

        logger.info(
            f"Uploading {file_path} to vault {session.vault_name}; upload {session.upload_id}"
        )
        logger.info(
            f"Archive size: {session.total_bytes} bytes; {session.total_parts} parts "
            f"of up to {session.part_size} bytes each"
        )
        if resume_from_part > 1:
            logger.info(f"Resuming from part {resume_from_part} of {session.total_parts}")

        self._run_start = self.clock()
        try:
            with self._open_source(file_path) as fileobj:
                self._check_source_size(fileobj, session, file_path)
                self._upload_parts(session, fileobj, file_path, resume_from_part, token)
        except (FatalTransportError, ConfigurationError):
            raise
        except Exception as exc:
            logger.error(f"Upload interrupted: {exc}")
            self._abort_after_error(session, exc)
            raise
        finally:
            session.elapsed_seconds = max(0.0, self.clock() - self._run_start)

        self._log_summary(session)
        return session

    @staticmethod
    def _open_source(file_path: str) -> BinaryIO:
        try:
            return open(file_path, "rb")
        except OSError as e:
            raise SourceReadError(f"Cannot open source: {e}", file_path=file_path) from e

    @staticmethod
    def _check_source_size(fileobj: BinaryIO, session: UploadSession, file_path: str) -> None:
        try:
            actual = os.fstat(fileobj.fileno()).st_size
        except OSError as e:
            raise SourceReadError(f"Cannot stat source: {e}", file_path=file_path) from e
        if actual != session.total_bytes:
            raise SourceReadError(
                f"Source is {actual} bytes but the upload expects {session.total_bytes}",
                file_path=file_path,
            )

    def _upload_parts(
        self,
        session: UploadSession,
        fileobj: BinaryIO,
        file_path: str,
        resume_from_part: int,
        token: CancellationToken,
    ) -> None:
        while not session.is_finished:
            if token.cancelled:
                logger.info(f"Cancelled before part {session.current_part}")
                session.mark_cancelled()
                return

            attempt = PartAttempt(
                part_number=session.current_part,
                start=session.current_position,
                length=min(session.part_size, session.remaining_bytes),
            )

            if attempt.part_number < resume_from_part:
                data = read_part(fileobj, attempt, file_path)
                attempt.checksum = compute_tree_hash(data)
                attempt.outcome = AttemptOutcome.SKIPPED
                session.record_skipped(attempt)
                logger.debug(f"Part {attempt.part_number}: already uploaded, hashed only")
                continue

            attempt = self._transmit_part(session, fileobj, file_path, attempt, token)
            if attempt.outcome is AttemptOutcome.CANCELLED:
                logger.info(f"Cancelled during part {attempt.part_number}")
                session.mark_cancelled()
                return
            if attempt.outcome is not AttemptOutcome.SUCCESS:
                logger.error(
                    f"Part {attempt.part_number}: exceeded retry budget ({self.retry_budget})"
                )
                session.mark_failed()
                return

        session.mark_succeeded()

    def _transmit_part(
        self,
        session: UploadSession,
        fileobj: BinaryIO,
        file_path: str,
        attempt: PartAttempt,
        token: CancellationToken,
    ) -> PartAttempt:
        """Run the attempt loop for one part and return the final attempt."""
        while True:
            if token.cancelled:
                attempt.outcome = AttemptOutcome.CANCELLED
                return attempt

            logger.info(
                f"Part {attempt.part_number}: reading bytes {attempt.start}-{attempt.end} "
                f"(attempt {attempt.attempt})"
            )
            data = read_part(fileobj, attempt, file_path)
            attempt.checksum = compute_tree_hash(data)

            part_start = self.clock()
            self._emit(session, attempt, 0, part_start)

            def on_progress(sent: int) -> None:
                if token.cancelled:
                    raise UploadCancelled(attempt.part_number)
                self._emit(session, attempt, min(sent, attempt.length), part_start)

            try:
                self.transport.upload_part(
                    session.vault_name,
                    session.upload_id,
                    attempt.start,
                    attempt.length,
                    data,
                    attempt.checksum,
                    on_progress,
                )
            except UploadCancelled:
                attempt.outcome = AttemptOutcome.CANCELLED
                return attempt
            except FatalTransportError:
                raise
            except Exception as exc:
                if token.cancelled:
                    attempt.outcome = AttemptOutcome.CANCELLED
                    return attempt
                attempt.outcome = AttemptOutcome.TRANSIENT_FAILURE
                session.last_error = str(exc)
                logger.warning(f"Part {attempt.part_number}: attempt {attempt.attempt} failed: {exc}")
                if attempt.attempt >= self.retry_budget:
                    return attempt

                attempt = attempt.retry()
                backoff = self.retry_backoff * 2 ** (attempt.attempt - 2)
                if backoff > 0:
                    logger.info(f"Part {attempt.part_number}: retrying in {backoff}s...")
                    token.wait(backoff)
                continue

            attempt.outcome = AttemptOutcome.SUCCESS
            session.record_transferred(attempt)
            self._emit(session, attempt, attempt.length, part_start, part_complete=True)
            return attempt

    def _emit(
        self,
        session: UploadSession,
        attempt: PartAttempt,
        part_bytes_done: int,
        part_start: float,
        part_complete: bool = False,
    ) -> None:
        if self.progress is None:
            return
        now = self.clock()
        # A completed part is already counted in transferred_bytes.
        in_flight = 0 if part_complete else part_bytes_done
        try:
            self.progress.observe(
                ProgressEvent(
                    part_number=attempt.part_number,
                    total_parts=session.total_parts,
                    attempt=attempt.attempt,
                    bytes_done=session.transferred_bytes + in_flight,
                    part_bytes_done=part_bytes_done,
                    part_length=attempt.length,
                    total_bytes=session.total_bytes,
                    skipped_bytes=session.skipped_bytes,
                    elapsed=max(0.0, now - self._run_start),
                    part_elapsed=max(0.0, now - part_start),
                    part_complete=part_complete,
                )
            )
        except Exception as e:
            logger.warning(f"Progress reporter error: {e}")

    def _abort_after_error(self, session: UploadSession, exc: Exception) -> None:
        """Best-effort abort of the remote upload; a failure is attached to ``exc``."""
        try:
            self.transport.abort_upload(session.vault_name, session.upload_id)
            logger.info(f"Aborted upload {session.upload_id} after error")
        except Exception as abort_exc:
            logger.error(f"Failed to abort upload {session.upload_id}: {abort_exc}")
            exc.abort_error = abort_exc
            if isinstance(exc, GlacierUploadError):
                exc.details["abort_error"] = str(abort_exc)

    @staticmethod
    def _log_summary(session: UploadSession) -> None:
        done = session.skipped_parts + session.transferred_parts
        if session.success:
            speed = human_mb_per_s(
                session.transferred_bytes / session.elapsed_seconds
                if session.elapsed_seconds > 0
                else 0.0
            )
            logger.info(
                f"Upload Speed {speed:.2f} MB/s, Duration {format_duration(session.elapsed_seconds)}"
            )
        elif session.cancelled:
            logger.info(
                f"UploadId {session.upload_id} left open for resumption. "
                f"Progress: {done}/{session.total_parts} parts uploaded; "
                f"resume from part {session.next_part}"
            )
        else:
            logger.error(
                f"Upload halted at part {session.next_part}: {session.last_error}. "
                f"Progress: {done}/{session.total_parts} parts uploaded"
            )


def run_upload(
    session: UploadSession,
    source: PathLike,
    transport: TransportClient,
    retry_budget: int = 5,
    resume_from_part: int = 1,
    progress: Optional[ProgressReporter] = None,
    cancel_token: Optional[CancellationToken] = None,
    retry_backoff: float = 0.0,
) -> UploadSession:
    """Quick function to run an upload with a one-off orchestrator."""
    orchestrator = UploadOrchestrator(
        transport, retry_budget=retry_budget, retry_backoff=retry_backoff, progress=progress
    )
    return orchestrator.run(
        session, source, resume_from_part=resume_from_part, cancel_token=cancel_token
    )
