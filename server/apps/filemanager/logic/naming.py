"""Business logic for name validation and collision resolution."""

import logging
import os
from collections.abc import Callable
from typing import Final

from server.apps.filemanager.exceptions import InvalidNameError

logger = logging.getLogger(__name__)

_FORBIDDEN_CHARACTERS: Final = frozenset(('/', '\\', '\x00'))
_RESERVED_NAMES: Final = frozenset(('', os.curdir, os.pardir))


def validate_name(name: str | None) -> str:
    """Validate a caller-supplied file or folder name.

    Args:
        name: Proposed name.

    Returns:
        The name without surrounding whitespace.

    Raises:
        InvalidNameError: If the name is empty, reserved or contains
            a path separator or NUL byte.
    """
    cleaned = (name or '').strip()
    if cleaned in _RESERVED_NAMES or _FORBIDDEN_CHARACTERS & set(cleaned):
        logger.warning('Invalid name rejected: %r', name)
        raise InvalidNameError(name or '')
    return cleaned


def unique_name(
    name: str,
    exists: Callable[[str], bool],
    *,
    keep_extension: bool = True,
) -> str:
    """Pick the first free name following the " (n)" policy.

    ``report.pdf`` becomes ``report (1).pdf``, ``report (2).pdf``, ...;
    with ``keep_extension=False`` (folders) the suffix goes at the end.

    Args:
        name: Desired name.
        exists: Predicate reporting whether a name is taken.
        keep_extension: Insert the suffix before the extension.

    Returns:
        ``name`` itself when free, else the first free suffixed name.
    """
    if not exists(name):
        return name

    if keep_extension:
        stem, extension = os.path.splitext(name)
    else:
        stem, extension = name, ''

    counter = 1
    while True:
        candidate = f'{stem} ({counter}){extension}'
        if not exists(candidate):
            logger.debug('Name collision resolved: %s -> %s', name, candidate)
            return candidate
        counter += 1


def unique_child_path(directory: str, name: str, *, is_dir: bool) -> str:
    """Get a free physical path for ``name`` inside ``directory``.

    Args:
        directory: Physical parent directory.
        name: Desired child name.
        is_dir: Whether the child is a folder.

    Returns:
        Physical path whose final component is collision free.
    """
    free_name = unique_name(
        name,
        lambda candidate: os.path.lexists(os.path.join(directory, candidate)),
        keep_extension=not is_dir,
    )
    return os.path.join(directory, free_name)
