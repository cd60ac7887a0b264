"""Transport to the Glacier vault API for multipart archive uploads."""

import io
import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Tuple

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError, HTTPClientError
from botocore.exceptions import ConnectionError as BotoConnectionError

from .config import UploaderConfig
from .exceptions import (
    FatalTransportError,
    TransientTransportError,
    UploadCancelled,
    UploadNotFoundError,
)
from .partition import format_range

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int], None]

TRANSIENT_ERROR_CODES = {
    "RequestTimeoutException",
    "ServiceUnavailableException",
    "ThrottlingException",
    "Throttling",
    "SlowDown",
    "InternalError",
    "InternalFailure",
}


class TransportClient(ABC):
    """The narrow slice of the vault API an upload run needs."""

    @abstractmethod
    def initiate_upload(
        self, vault_name: str, part_size: int, archive_description: Optional[str] = None
    ) -> str:
        """Start a multipart upload and return its upload ID."""

    @abstractmethod
    def upload_part(
        self,
        vault_name: str,
        upload_id: str,
        start: int,
        length: int,
        body: bytes,
        checksum: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> str:
        """Send one part; return the checksum acknowledged by the remote.

        ``on_progress`` receives the cumulative number of bytes sent. It may
        raise ``UploadCancelled`` to stop the transfer.

        Raises:
            TransientTransportError: the attempt failed but may be retried.
            FatalTransportError: the upload cannot continue.
        """

    @abstractmethod
    def complete_upload(
        self, vault_name: str, upload_id: str, archive_size: int, checksum: str
    ) -> Tuple[str, Optional[str]]:
        """Assemble the archive; return ``(archive_id, location)``."""

    @abstractmethod
    def abort_upload(
        self, vault_name: str, upload_id: str, fail_if_missing: bool = False
    ) -> None:
        """Abort a multipart upload.

        A missing upload is ignored unless ``fail_if_missing`` is set, in
        which case ``UploadNotFoundError`` is raised.
        """

    def list_uploads(self, vault_name: str) -> List[Dict[str, Any]]:
        """In-progress multipart uploads of a vault."""
        raise NotImplementedError

    def list_parts(
        self, vault_name: str, upload_id: str
    ) -> Tuple[Optional[int], List[Dict[str, Any]]]:
        """Part size and the parts the remote has accepted for an upload."""
        raise NotImplementedError


def parse_range(range_in_bytes: str) -> Tuple[int, int]:
    """Parse ``"start-end"`` (inclusive) into ``(start, length)``."""
    start, end = (int(v) for v in range_in_bytes.split("-", 1))
    return start, end - start + 1


def resume_point_from_parts(parts: Iterable[Dict[str, Any]], part_size: int) -> int:
    """First part number not yet accepted, given the remote's part list."""
    uploaded = set()
    for part in parts:
        start, _ = parse_range(part["RangeInBytes"])
        uploaded.add(start // part_size + 1)
    part_number = 1
    while part_number in uploaded:
        part_number += 1
    return part_number


class ProgressReader(io.RawIOBase):
    """Seekable view over a part body that reports how far it has been sent.

    Nothing is reported until ``arm()`` is called when the request goes out
    on the wire; earlier reads (payload hashing before signing) are not
    transfer. The reported count never goes backwards.
    """

    def __init__(self, data: bytes, on_progress: Optional[ProgressCallback] = None):
        super().__init__()
        self._view = memoryview(data)
        self._pos = 0
        self._reported = 0
        self._armed = False
        self._on_progress = on_progress

    def arm(self) -> None:
        self._armed = True

    def __len__(self) -> int:
        return len(self._view)

    def readable(self) -> bool:
        return True

    def seekable(self) -> bool:
        return True

    def tell(self) -> int:
        return self._pos

    def seek(self, offset: int, whence: int = io.SEEK_SET) -> int:
        if whence == io.SEEK_SET:
            pos = offset
        elif whence == io.SEEK_CUR:
            pos = self._pos + offset
        elif whence == io.SEEK_END:
            pos = len(self._view) + offset
        else:
            raise ValueError(f"Invalid whence: {whence}")
        self._pos = max(0, min(pos, len(self._view)))
        return self._pos

    def read(self, size: int = -1) -> bytes:
        if size is None or size < 0:
            size = len(self._view) - self._pos
        chunk = self._view[self._pos : self._pos + size].tobytes()
        self._pos += len(chunk)
        if self._armed and self._on_progress and self._pos > self._reported:
            self._reported = self._pos
            self._on_progress(self._reported)
        return chunk

    def readinto(self, buffer) -> int:
        chunk = self.read(len(buffer))
        buffer[: len(chunk)] = chunk
        return len(chunk)


class GlacierTransport(TransportClient):
    """Transport backed by a boto3 ``glacier`` client."""

    @staticmethod
    def error_code(exc: Exception) -> Optional[str]:
        if isinstance(exc, ClientError):
            return exc.response.get("Error", {}).get("Code")
        return None

    @staticmethod
    def status_code(exc: Exception) -> Optional[int]:
        if isinstance(exc, ClientError):
            return exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
        return None

    @classmethod
    def is_transient_error(cls, exc: Exception) -> bool:
        """Return True for throttling, timeouts, connection drops and 5xx."""
        if isinstance(exc, (BotoConnectionError, HTTPClientError)):
            return True
        if isinstance(exc, ClientError):
            if cls.error_code(exc) in TRANSIENT_ERROR_CODES:
                return True
            status = cls.status_code(exc)
            return status is not None and status >= 500
        return False

    @classmethod
    def is_not_found_error(cls, exc: Exception) -> bool:
        return cls.error_code(exc) == "ResourceNotFoundException"

    @staticmethod
    def cancellation_cause(exc: Exception) -> Optional[UploadCancelled]:
        """botocore wraps errors raised while streaming the body; dig ours out."""
        seen = set()
        current: Optional[BaseException] = exc
        while current is not None and id(current) not in seen:
            if isinstance(current, UploadCancelled):
                return current
            seen.add(id(current))
            wrapped = getattr(current, "kwargs", {}).get("error")
            current = wrapped or current.__cause__ or current.__context__
        return None

    def __init__(
        self,
        config: Optional[UploaderConfig] = None,
        client: Optional[Any] = None,
    ) -> None:
        """Initialize the Glacier transport.

        Args:
            config: Region, profile, account and retry settings
            client: Pre-built boto3 glacier client (skips client construction)
        """
        self.config = config or UploaderConfig()
        self.account_id = self.config.account_id

        if client is not None:
            self.glacier = client
            self.part_glacier = client
        else:
            self.session = boto3.Session(
                profile_name=self.config.profile,
                region_name=self.config.region,
            )
            self.botocore_cfg = Config(
                region_name=self.config.region,
                retries={"max_attempts": self.config.max_retries, "mode": "standard"},
            )
            self.glacier = self.session.client(
                "glacier", config=self.botocore_cfg, endpoint_url=self.config.endpoint_url
            )
            # Part sends are retried by the orchestrator's per-part budget only.
            self.part_glacier = self.session.client(
                "glacier",
                config=self.botocore_cfg.merge(
                    Config(retries={"total_max_attempts": 1, "mode": "standard"})
                ),
                endpoint_url=self.config.endpoint_url,
            )

        self.part_glacier.meta.events.register(
            "before-send.glacier.UploadMultipartPart",
            self.arm_progress,
            unique_id="glacier-upload-arm-progress",
        )

    @staticmethod
    def arm_progress(request=None, **kwargs) -> None:
        """Start progress reporting once the part request is handed to the HTTP layer."""
        body = getattr(request, "body", None)
        if isinstance(body, ProgressReader):
            body.arm()

    @contextmanager
    def _translate_errors(
        self, description: str, vault_name: str, upload_id: Optional[str] = None
    ) -> Iterator[None]:
        try:
            yield
        except (ClientError, BotoCoreError) as exc:
            cancelled = self.cancellation_cause(exc)
            if cancelled is not None:
                raise cancelled from exc
            if self.is_not_found_error(exc):
                if upload_id:
                    raise UploadNotFoundError(upload_id, vault_name) from exc
                raise FatalTransportError(
                    f"{description}: vault {vault_name} not found",
                    code=self.error_code(exc),
                    status_code=self.status_code(exc),
                ) from exc
            error_cls = (
                TransientTransportError if self.is_transient_error(exc) else FatalTransportError
            )
            raise error_cls(
                f"{description} failed: {exc}",
                code=self.error_code(exc),
                status_code=self.status_code(exc),
            ) from exc

    def initiate_upload(
        self, vault_name: str, part_size: int, archive_description: Optional[str] = None
    ) -> str:
        params = {
            "accountId": self.account_id,
            "vaultName": vault_name,
            "partSize": str(part_size),
        }
        if archive_description:
            params["archiveDescription"] = archive_description

        with self._translate_errors("initiate_multipart_upload", vault_name):
            resp = self.glacier.initiate_multipart_upload(**params)
        upload_id = resp["uploadId"]
        logger.info(f"Initiated multipart upload in vault {vault_name}: UploadId={upload_id}")
        return upload_id

    def upload_part(
        self,
        vault_name: str,
        upload_id: str,
        start: int,
        length: int,
        body: bytes,
        checksum: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> str:
        content_range = format_range(start, length)
        logger.debug(f"Sending {content_range} of upload {upload_id}")
        with self._translate_errors("upload_multipart_part", vault_name, upload_id):
            resp = self.part_glacier.upload_multipart_part(
                accountId=self.account_id,
                vaultName=vault_name,
                uploadId=upload_id,
                checksum=checksum,
                range=content_range,
                body=ProgressReader(body, on_progress),
            )

        remote_checksum = resp.get("checksum", checksum)
        if remote_checksum != checksum:
            raise TransientTransportError(
                f"Checksum mismatch for {content_range}: "
                f"sent {checksum}, remote computed {remote_checksum}",
                code="ChecksumMismatch",
            )
        return remote_checksum

    def complete_upload(
        self, vault_name: str, upload_id: str, archive_size: int, checksum: str
    ) -> Tuple[str, Optional[str]]:
        with self._translate_errors("complete_multipart_upload", vault_name, upload_id):
            resp = self.glacier.complete_multipart_upload(
                accountId=self.account_id,
                vaultName=vault_name,
                uploadId=upload_id,
                archiveSize=str(archive_size),
                checksum=checksum,
            )
        archive_id = resp["archiveId"]
        logger.info(f"Completed upload {upload_id}: ArchiveId={archive_id}")
        return archive_id, resp.get("location")

    def abort_upload(
        self, vault_name: str, upload_id: str, fail_if_missing: bool = False
    ) -> None:
        try:
            with self._translate_errors("abort_multipart_upload", vault_name, upload_id):
                self.glacier.abort_multipart_upload(
                    accountId=self.account_id,
                    vaultName=vault_name,
                    uploadId=upload_id,
                )
        except UploadNotFoundError:
            if fail_if_missing:
                raise
            logger.warning(f"Upload {upload_id} not found in vault {vault_name}; nothing to abort")
            return
        logger.info(f"Aborted multipart upload {upload_id} in vault {vault_name}")

    def list_uploads(self, vault_name: str) -> List[Dict[str, Any]]:
        uploads = []
        with self._translate_errors("list_multipart_uploads", vault_name):
            paginator = self.glacier.get_paginator("list_multipart_uploads")
            for page in paginator.paginate(accountId=self.account_id, vaultName=vault_name):
                for upload in page.get("UploadsList", []):
                    uploads.append(
                        {
                            "upload_id": upload["MultipartUploadId"],
                            "description": upload.get("ArchiveDescription"),
                            "part_size": upload.get("PartSizeInBytes"),
                            "created": upload.get("CreationDate"),
                        }
                    )
        return uploads

    def list_parts(
        self, vault_name: str, upload_id: str
    ) -> Tuple[Optional[int], List[Dict[str, Any]]]:
        part_size = None
        parts = []
        with self._translate_errors("list_parts", vault_name, upload_id):
            paginator = self.glacier.get_paginator("list_parts")
            for page in paginator.paginate(
                accountId=self.account_id, vaultName=vault_name, uploadId=upload_id
            ):
                part_size = page.get("PartSizeInBytes", part_size)
                parts.extend(page.get("Parts", []))
        return part_size, parts
