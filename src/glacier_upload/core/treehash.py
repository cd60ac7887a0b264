"""SHA-256 tree hashes as used by the Glacier vault API.

Data is split into 1 MiB leaves, each leaf is hashed, and adjacent digests
are paired left to right and hashed together until one digest remains. An
odd node at the end of a level is carried up unchanged. Whole-archive hashes
use the same pairing over the ordered part hashes.
"""

import hashlib
import logging
import os
from typing import BinaryIO, List, Optional, Sequence, Union

from .exceptions import SourceReadError, ValidationError

logger = logging.getLogger(__name__)

LEAF_SIZE = 1024 * 1024

BytesLike = Union[bytes, bytearray, memoryview]


def _sha256(data: BytesLike) -> bytes:
    return hashlib.sha256(data).digest()


def reduce_digests(digests: Sequence[bytes]) -> bytes:
    """Collapse a level of digests into the root digest of their tree."""
    if not digests:
        raise ValidationError("digests", [], "at least one digest is required")

    level: List[bytes] = list(digests)
    while len(level) > 1:
        parents = []
        for i in range(0, len(level) - 1, 2):
            parents.append(_sha256(level[i] + level[i + 1]))
        if len(level) % 2:
            parents.append(level[-1])
        level = parents
    return level[0]


def leaf_digests(data: BytesLike) -> List[bytes]:
    """SHA-256 of every 1 MiB leaf of ``data``."""
    view = memoryview(data)
    if not len(view):
        return [_sha256(b"")]
    return [_sha256(view[i : i + LEAF_SIZE]) for i in range(0, len(view), LEAF_SIZE)]


def compute_tree_hash(data: BytesLike) -> str:
    """Return the hex tree hash of an in-memory byte range."""
    return reduce_digests(leaf_digests(data)).hex()


def combine_tree_hashes(checksums: Sequence[str]) -> str:
    """Combine part tree hashes, in ascending part order, into the archive hash."""
    if not checksums:
        raise ValidationError("checksums", [], "at least one part checksum is required")
    try:
        digests = [bytes.fromhex(checksum) for checksum in checksums]
    except ValueError as e:
        raise ValidationError("checksums", list(checksums), f"not hex encoded: {e}") from e
    return reduce_digests(digests).hex()


def read_exact(fileobj: BinaryIO, size: int) -> bytes:
    """Read ``size`` bytes, looping over short reads; shorter only at end of data."""
    buf = bytearray()
    while len(buf) < size:
        chunk = fileobj.read(size - len(buf))
        if not chunk:
            break
        buf += chunk
    return bytes(buf)


def tree_hash_stream(
    fileobj: BinaryIO, length: int, file_path: Optional[str] = None
) -> str:
    """Tree hash of the next ``length`` bytes of an open binary stream.

    Raises:
        SourceReadError: if the stream ends early or reading fails.
    """
    offset = None
    digests = []
    remaining = length
    try:
        offset = fileobj.tell()
        while remaining > 0:
            chunk = read_exact(fileobj, min(LEAF_SIZE, remaining))
            if len(chunk) < min(LEAF_SIZE, remaining):
                raise SourceReadError(
                    f"Unexpected end of data, {remaining - len(chunk)} bytes short",
                    file_path=file_path,
                    offset=offset,
                )
            digests.append(_sha256(chunk))
            remaining -= len(chunk)
    except OSError as e:
        raise SourceReadError(f"Failed to read source: {e}", file_path, offset) from e

    if not digests:
        return compute_tree_hash(b"")
    return reduce_digests(digests).hex()


def tree_hash_file(path: str) -> str:
    """Tree hash of a whole file on disk."""
    logger.info(f"Calculating tree hash for {path}")
    try:
        with open(path, "rb") as f:
            size = os.fstat(f.fileno()).st_size
            return tree_hash_stream(f, size, file_path=str(path))
    except OSError as e:
        raise SourceReadError(f"Failed to open source: {e}", file_path=str(path)) from e
