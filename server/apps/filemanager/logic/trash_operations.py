"""Business logic for recycle bin operations.

The recycle bin is an ordinary folder directly under the instance
root, named after the instance id. Deletes are redirected into it
when the instance enables it; anything deleted from inside it is
removed for good.
"""

import logging
import os
import re
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Final

from server.apps.filemanager.entities import InstanceConfig
from server.apps.filemanager.logic.tree_operations import (
    is_same_or_inside,
    remove_item,
)

logger = logging.getLogger(__name__)

RECYCLE_BIN_PREFIX: Final = 'recyclebin-'

_UNSAFE_CHARACTERS: Final = re.compile(r'[^\w.-]')

#: Receives the item path and the error of an item that failed to purge.
PurgeErrorHandler = Callable[[str, OSError], None]


def recycle_bin_name(instance_id: str) -> str:
    """Get the folder name of an instance's recycle bin.

    Args:
        instance_id: Identifier of the instance.

    Returns:
        Folder name (e.g., 'recyclebin-main'). Characters that are not
        safe in a single path component are replaced by underscores.
    """
    return RECYCLE_BIN_PREFIX + _UNSAFE_CHARACTERS.sub('_', instance_id)


def get_recycle_bin_path(config: InstanceConfig) -> str:
    """Get the physical path of the recycle bin (may not exist)."""
    return os.path.join(
        os.path.realpath(config.root_path),
        recycle_bin_name(config.instance_id),
    )


def ensure_recycle_bin(config: InstanceConfig) -> str:
    """Create the recycle bin on first use.

    Args:
        config: Instance configuration.

    Returns:
        Physical path of the recycle bin.
    """
    path = get_recycle_bin_path(config)
    if not os.path.isdir(path):
        os.makedirs(path, exist_ok=True)
        logger.info(
            'Recycle bin created for instance %s',
            config.instance_id,
        )
    return path


def is_in_recycle_bin(config: InstanceConfig, physical_path: str) -> bool:
    """Check if a path is the recycle bin or lies inside it."""
    return is_same_or_inside(physical_path, get_recycle_bin_path(config))


def list_expired_items(
    config: InstanceConfig,
    older_than: timedelta | None = None,
) -> list[str]:
    """List top-level recycle bin items older than a given age.

    Age is measured from each item's modification time.

    Args:
        config: Instance configuration.
        older_than: Minimum age; None selects every item.

    Returns:
        Physical paths sorted by name.
    """
    bin_path = get_recycle_bin_path(config)
    if not os.path.isdir(bin_path):
        return []

    cutoff = None
    if older_than is not None:
        cutoff = (datetime.now(tz=UTC) - older_than).timestamp()

    expired = []
    with os.scandir(bin_path) as entries:
        for entry in entries:
            modified = entry.stat(follow_symlinks=False).st_mtime
            if cutoff is None or modified < cutoff:
                expired.append(entry.path)
    return sorted(expired)


def purge_recycle_bin(
    config: InstanceConfig,
    older_than: timedelta | None = None,
    *,
    on_error: PurgeErrorHandler | None = None,
) -> int:
    """Permanently delete recycle bin items.

    Without ``on_error`` the first failure is raised. With it, every
    failure is reported to the handler and the remaining items are
    still purged.

    Args:
        config: Instance configuration.
        older_than: Only purge items older than this; None purges all.
        on_error: Handler for items that cannot be deleted.

    Returns:
        Number of top-level items deleted.

    Raises:
        OSError: If an item cannot be deleted and no handler is given.
    """
    count = 0
    for path in list_expired_items(config, older_than):
        try:
            remove_item(path)
        except OSError as exc:
            logger.exception('Failed to purge recycle bin item: %s', path)
            if on_error is None:
                raise
            on_error(path, exc)
            continue
        logger.info('Purged recycle bin item: %s', path)
        count += 1

    logger.info(
        'Recycle bin purged for instance %s: %d items deleted',
        config.instance_id,
        count,
    )
    return count
