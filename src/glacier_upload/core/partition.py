"""Part planning for multipart archive uploads."""

import logging
import math
from typing import Iterator, Tuple

from .exceptions import InvalidPartSizeError, PartSizeExceededError, ValidationError

logger = logging.getLogger(__name__)

MIB = 1024 * 1024
GIB = 1024 * MIB

DEFAULT_PART_SIZE = 4 * MIB
MIN_PART_SIZE = MIB
MAX_PART_SIZE = 4 * GIB

# Planning stays below the service limits: 10000 parts and 4 GiB per part.
MAX_PLANNED_PARTS = 9000
MAX_PLANNED_PART_SIZE = 3 * GIB


def is_power_of_two_mib(part_size: int) -> bool:
    """Return True if ``part_size`` is 1, 2, 4, 8, ... MiB."""
    if part_size <= 0 or part_size % MIB:
        return False
    mib = part_size // MIB
    return mib & (mib - 1) == 0


def validate_part_size(part_size: int) -> int:
    """Check a caller supplied part size and return it unchanged.

    Raises:
        InvalidPartSizeError: if the size is out of range or not a power of
            two number of mebibytes.
    """
    if part_size < MIN_PART_SIZE:
        raise InvalidPartSizeError(part_size, f"must be at least {MIN_PART_SIZE} bytes")
    if part_size > MAX_PART_SIZE:
        raise InvalidPartSizeError(part_size, f"must be at most {MAX_PART_SIZE} bytes")
    if not is_power_of_two_mib(part_size):
        raise InvalidPartSizeError(part_size, "must be a power of two number of MiB")
    return part_size


def choose_part_size(archive_size: int, baseline: int = DEFAULT_PART_SIZE) -> int:
    """Pick the smallest part size that keeps the part count under the planning limit.

    Starting from ``baseline`` the size is doubled while the archive would
    need more than ``MAX_PLANNED_PARTS`` parts.

    Args:
        archive_size: Size of the archive in bytes
        baseline: Starting part size (power of two MiB)

    Returns:
        Part size in bytes

    Raises:
        PartSizeExceededError: if no part size up to ``MAX_PLANNED_PART_SIZE``
            satisfies the part count limit.
    """
    if archive_size < 0:
        raise ValidationError("archive_size", archive_size, "must not be negative")

    part_size = validate_part_size(baseline)
    while archive_size / part_size > MAX_PLANNED_PARTS:
        part_size *= 2

    if part_size > MAX_PLANNED_PART_SIZE:
        raise PartSizeExceededError(archive_size, part_size, MAX_PLANNED_PART_SIZE)

    logger.debug(
        f"Chose part size {part_size // MIB}MiB for {archive_size} bytes "
        f"({count_parts(archive_size, part_size)} parts)"
    )
    return part_size


def count_parts(total_bytes: int, part_size: int) -> int:
    """Number of parts needed for ``total_bytes``; never less than one."""
    return max(1, math.ceil(total_bytes / part_size))


def part_length(part_number: int, total_bytes: int, part_size: int) -> int:
    """Length of the 1-based ``part_number``; the last part may be short."""
    start = (part_number - 1) * part_size
    return max(0, min(part_size, total_bytes - start))


def part_ranges(total_bytes: int, part_size: int) -> Iterator[Tuple[int, int, int]]:
    """Yield ``(part_number, start, length)`` for every part of the archive."""
    for part_number in range(1, count_parts(total_bytes, part_size) + 1):
        start = (part_number - 1) * part_size
        yield part_number, start, part_length(part_number, total_bytes, part_size)


def format_range(start: int, length: int) -> str:
    """Content range header value for a part, e.g. ``bytes 0-1048575/*``."""
    return f"bytes {start}-{start + length - 1}/*"
