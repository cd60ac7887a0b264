"""Programmatic API for Glacier archive uploads."""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from .cancellation import CancellationToken
from .config import UploaderConfig
from .exceptions import InvalidPartSizeError, ValidationError
from .models import UploadResult, UploadSession
from .orchestrator import UploadOrchestrator
from .partition import choose_part_size, count_parts, validate_part_size
from .progress import ProgressReporter
from .transport import (
    GlacierTransport,
    TransportClient,
    parse_range,
    resume_point_from_parts,
)

logger = logging.getLogger(__name__)


class GlacierUploadAPI:
    """High-level API for uploading archives to a vault."""

    def __init__(
        self,
        config: Optional[UploaderConfig] = None,
        transport: Optional[TransportClient] = None,
    ):
        """Initialize the Glacier Upload API.

        Args:
            config: Uploader configuration (default: read from environment)
            transport: Vault transport (default: a boto3 backed GlacierTransport)
        """
        self.config = config or UploaderConfig.from_env()
        self._transport = transport

    @property
    def transport(self) -> TransportClient:
        if self._transport is None:
            self._transport = GlacierTransport(self.config)
        return self._transport

    @staticmethod
    def _archive_size(local_path: Path) -> int:
        if not local_path.exists():
            raise ValidationError("local_path", str(local_path), "file not found")
        if not local_path.is_file():
            raise ValidationError("local_path", str(local_path), "not a regular file")
        return local_path.stat().st_size

    def plan(
        self,
        local_path: Union[str, Path],
        part_size: Optional[int] = None,
        vault_name: Optional[str] = None,
        upload_id: Optional[str] = None,
    ) -> Tuple[int, int]:
        """Return ``(part_size, part_count)`` for a local file.

        An explicit part size (argument or config) is validated, not adjusted.
        With an ``upload_id`` the part size the upload was initiated with is
        used, and an explicit size that disagrees with it is rejected.
        """
        archive_size = self._archive_size(Path(local_path))
        part_size = part_size or self.config.part_size
        remote_size = self._remote_part_size(vault_name, upload_id) if upload_id else None
        if remote_size and part_size and part_size != remote_size:
            raise InvalidPartSizeError(
                part_size, f"upload {upload_id} was initiated with {remote_size} byte parts"
            )
        part_size = part_size or remote_size
        if part_size:
            validate_part_size(part_size)
        else:
            part_size = choose_part_size(archive_size)
        return part_size, count_parts(archive_size, part_size)

    def _remote_part_size(self, vault_name: Optional[str], upload_id: str) -> Optional[int]:
        if not vault_name:
            raise ValidationError("vault_name", vault_name, "required to continue an upload")
        try:
            part_size, _ = self.transport.list_parts(vault_name, upload_id)
        except NotImplementedError:
            logger.debug(f"Transport cannot list parts; not checking part size of {upload_id}")
            return None
        return int(part_size) if part_size else None

    def upload_archive(
        self,
        local_path: Union[str, Path],
        vault_name: str,
        description: Optional[str] = None,
        part_size: Optional[int] = None,
        upload_id: Optional[str] = None,
        resume_from_part: int = 1,
        progress: Optional[ProgressReporter] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> UploadResult:
        """Upload a file as an archive.

        Args:
            local_path: Local file path
            vault_name: Target vault
            description: Archive description
            part_size: Bytes per part (the upload's own when continuing, else auto-detected)
            upload_id: Existing multipart upload to continue
            resume_from_part: First part to send when continuing an upload
            progress: Optional progress reporter
            cancel_token: Optional cancellation token

        Returns:
            The run result; ``archive_id`` is set when the archive was completed
        """
        local_path = Path(local_path)
        archive_size = self._archive_size(local_path)
        part_size, _ = self.plan(local_path, part_size, vault_name, upload_id)

        if resume_from_part > 1 and not upload_id:
            raise ValidationError(
                "resume_from_part", resume_from_part, "resuming requires an upload ID"
            )

        if upload_id:
            logger.info(f"Continuing multipart upload {upload_id} from part {resume_from_part}")
        else:
            upload_id = self.transport.initiate_upload(vault_name, part_size, description)

        session = UploadSession.start(
            vault_name=vault_name,
            upload_id=upload_id,
            part_size=part_size,
            total_bytes=archive_size,
            archive_description=description,
        )
        orchestrator = UploadOrchestrator(
            self.transport,
            retry_budget=self.config.retry_budget,
            retry_backoff=self.config.retry_backoff,
            progress=progress,
        )
        orchestrator.run(
            session, local_path, resume_from_part=resume_from_part, cancel_token=cancel_token
        )

        result = session.to_result()
        if result.success:
            archive_id, location = self.transport.complete_upload(
                vault_name, upload_id, archive_size, result.archive_checksum
            )
            result.archive_id = archive_id
            result.location = location
        return result

    def abort_upload(self, vault_name: str, upload_id: str, fail_if_missing: bool = False) -> None:
        """Abort a multipart upload."""
        self.transport.abort_upload(vault_name, upload_id, fail_if_missing=fail_if_missing)

    def list_uploads(self, vault_name: str) -> List[Dict[str, Any]]:
        """List in-progress multipart uploads of a vault."""
        return self.transport.list_uploads(vault_name)

    def resume_point(self, vault_name: str, upload_id: str) -> Tuple[int, List[Dict[str, Any]]]:
        """Return the first missing part of an upload and the parts already accepted."""
        part_size, parts = self.transport.list_parts(vault_name, upload_id)
        if not parts:
            return 1, parts
        if not part_size:
            part_size = max(parse_range(p["RangeInBytes"])[1] for p in parts)
        return resume_point_from_parts(parts, int(part_size)), parts


# Convenience functions for quick usage
def upload_archive(
    local_path: Union[str, Path],
    vault_name: str,
    description: Optional[str] = None,
    config: Optional[UploaderConfig] = None,
) -> UploadResult:
    """Quick function to upload an archive."""
    api = GlacierUploadAPI(config)
    return api.upload_archive(local_path, vault_name, description)


def abort_upload(
    vault_name: str,
    upload_id: str,
    fail_if_missing: bool = False,
    config: Optional[UploaderConfig] = None,
) -> None:
    """Quick function to abort a multipart upload."""
    api = GlacierUploadAPI(config)
    api.abort_upload(vault_name, upload_id, fail_if_missing)
