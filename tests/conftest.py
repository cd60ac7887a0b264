"""Pytest fixtures for Glacier Upload tests."""
from typing import Callable, Dict, List, Optional, Set

import pytest

from glacier_upload.core.exceptions import (
    FatalTransportError,
    TransientTransportError,
    UploadNotFoundError,
)
from glacier_upload.core.partition import MIB
from glacier_upload.core.transport import TransportClient


class FakeTransport(TransportClient):
    """In-memory transport that records every call.

    Args:
        failures: Number of transient failures to raise per part start offset
        fatal_starts: Part start offsets that raise a fatal error
        on_part: Hook called as ``on_part(transport, start, on_progress)``
            before a part is accepted
        progress_steps: Progress callbacks issued per part
    """

    def __init__(
        self,
        failures: Optional[Dict[int, int]] = None,
        fatal_starts: Optional[Set[int]] = None,
        on_part: Optional[Callable] = None,
        progress_steps: int = 4,
    ):
        self.failures = dict(failures or {})
        self.fatal_starts = set(fatal_starts or ())
        self.on_part = on_part
        self.progress_steps = progress_steps

        self.initiated: List[dict] = []
        self.part_calls: List[dict] = []
        self.accepted: Dict[int, str] = {}
        self.accepted_lengths: Dict[int, int] = {}
        self.completed: List[dict] = []
        self.aborted: List[dict] = []
        self.abort_error: Optional[Exception] = None
        self.uploads: Dict[str, dict] = {}

    def initiate_upload(self, vault_name, part_size, archive_description=None):
        upload_id = f"upload-{len(self.initiated) + 1}"
        self.initiated.append(
            {"vault_name": vault_name, "part_size": part_size, "description": archive_description}
        )
        self.uploads[upload_id] = {"part_size": part_size}
        return upload_id

    def upload_part(self, vault_name, upload_id, start, length, body, checksum, on_progress=None):
        self.part_calls.append(
            {"start": start, "length": length, "checksum": checksum, "body": bytes(body)}
        )
        if self.on_part:
            self.on_part(self, start, on_progress)
        if on_progress:
            for step in range(1, self.progress_steps + 1):
                on_progress(length * step // self.progress_steps)
        if start in self.fatal_starts:
            raise FatalTransportError("vault is gone", code="ResourceNotFoundException")
        if self.failures.get(start, 0) > 0:
            self.failures[start] -= 1
            raise TransientTransportError("connection reset", code="RequestTimeoutException")
        self.accepted[start] = checksum
        self.accepted_lengths[start] = length
        return checksum

    def complete_upload(self, vault_name, upload_id, archive_size, checksum):
        self.completed.append(
            {"upload_id": upload_id, "archive_size": archive_size, "checksum": checksum}
        )
        return f"archive-for-{upload_id}", f"/-/vaults/{vault_name}/archives/x"

    def abort_upload(self, vault_name, upload_id, fail_if_missing=False):
        self.aborted.append({"vault_name": vault_name, "upload_id": upload_id})
        if self.abort_error:
            raise self.abort_error
        if fail_if_missing and upload_id not in self.uploads:
            raise UploadNotFoundError(upload_id, vault_name)

    def list_uploads(self, vault_name):
        return [
            {"upload_id": upload_id, "description": None, "part_size": info["part_size"], "created": None}
            for upload_id, info in self.uploads.items()
        ]

    def list_parts(self, vault_name, upload_id):
        part_size = self.uploads.get(upload_id, {}).get("part_size")
        parts = [
            {
                "RangeInBytes": f"{start}-{start + self.accepted_lengths[start] - 1}",
                "SHA256TreeHash": checksum,
            }
            for start, checksum in sorted(self.accepted.items())
        ]
        return part_size, parts

    def starts(self) -> List[int]:
        return [call["start"] for call in self.part_calls]


def archive_bytes(size: int) -> bytes:
    """Deterministic, non-repeating-per-MiB content."""
    pattern = bytes(range(256)) * 4096  # 1 MiB
    out = bytearray()
    block = 0
    while len(out) < size:
        out += bytes([block % 251]) + pattern[1:]
        block += 1
    return bytes(out[:size])


@pytest.fixture
def fake_transport():
    """Transport that accepts everything."""
    return FakeTransport()


@pytest.fixture
def transport_factory():
    """The FakeTransport class, for tests that need failures or hooks."""
    return FakeTransport


@pytest.fixture
def make_archive(tmp_path):
    """Factory writing an archive of ``size`` bytes and returning its path."""

    def _make(size: int, name: str = "archive.bin"):
        path = tmp_path / name
        path.write_bytes(archive_bytes(size))
        return path

    return _make


@pytest.fixture
def small_archive(make_archive):
    """3.5 MiB archive: three full 1 MiB parts and a half part."""
    return make_archive(3 * MIB + MIB // 2)
