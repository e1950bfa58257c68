"""Business logic for storage quota operations.

Usage is measured on disk, recursively under the instance root, with
the recycle bin included. Checks run before any mutation; they are not
atomic with the write that follows, so concurrent operations against
the same root may overshoot the limit.
"""

import logging
import os
from collections.abc import Iterable
from typing import Final

from server.apps.filemanager.entities import InstanceConfig
from server.apps.filemanager.exceptions import QuotaExceededError

logger = logging.getLogger(__name__)

BYTES_PER_MB: Final = 1024 * 1024


def bytes_to_mb(size_bytes: int) -> float:
    """Convert bytes to (fractional) megabytes."""
    return size_bytes / BYTES_PER_MB


def get_directory_size(directory: str) -> int:
    """Sum the sizes of all files below a directory.

    Files removed while walking are skipped.

    Args:
        directory: Physical directory path.

    Returns:
        Total size in bytes.
    """
    total = 0
    for dirpath, _dirnames, filenames in os.walk(directory):
        for filename in filenames:
            try:
                total += os.path.getsize(os.path.join(dirpath, filename))
            except OSError:
                logger.debug('File vanished during size scan: %s', filename)
    return total


def get_items_size(paths: Iterable[str]) -> int:
    """Sum the on-disk sizes of files and folders.

    Args:
        paths: Physical paths of files or folders.

    Returns:
        Total size in bytes.
    """
    total = 0
    for path in paths:
        if os.path.isdir(path):
            total += get_directory_size(path)
        elif os.path.isfile(path):
            total += os.path.getsize(path)
    return total


def get_used_mb(root_path: str) -> int:
    """Get used space of a root in whole megabytes (truncated)."""
    return get_directory_size(root_path) // BYTES_PER_MB


def check_space(
    config: InstanceConfig,
    additional_mb: float = 0,
) -> None:
    """Check that an operation fits in the storage quota.

    Args:
        config: Instance configuration.
        additional_mb: Estimated megabytes the operation adds.

    Raises:
        QuotaExceededError: If the limit is set and would be exceeded.
    """
    limit = config.storage_max_size_mb
    if limit <= 0:
        return

    used = get_used_mb(config.root_path)
    if limit < used + additional_mb:
        logger.warning(
            'Quota exceeded for instance %s: need %.2f MB, used %d of %d MB',
            config.instance_id,
            additional_mb,
            used,
            limit,
        )
        raise QuotaExceededError(
            limit_mb=limit,
            used_mb=used,
            required_mb=additional_mb,
        )


def check_not_over_quota(config: InstanceConfig) -> None:
    """Reject operations on a root that is already over its quota.

    Args:
        config: Instance configuration.

    Raises:
        QuotaExceededError: If usage already exceeds the limit.
    """
    check_space(config)


def check_compression_size(config: InstanceConfig, size_mb: float) -> None:
    """Check the per-operation zip/unzip ceiling.

    Args:
        config: Instance configuration.
        size_mb: Megabytes the operation processes.

    Raises:
        QuotaExceededError: If the ceiling is set and exceeded.
    """
    limit = config.compression_max_size_mb
    if limit <= 0 or size_mb <= limit:
        return

    logger.warning(
        'Compression ceiling exceeded for instance %s: %.2f of %d MB',
        config.instance_id,
        size_mb,
        limit,
    )
    raise QuotaExceededError(
        limit_mb=limit,
        used_mb=0,
        required_mb=size_mb,
        message=(
            f'The selection is too big to process: {size_mb:g} MB, '
            f'the limit is {limit} MB.'
        ),
    )
