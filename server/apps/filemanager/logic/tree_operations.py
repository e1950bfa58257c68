"""File system primitives shared by copy, move and delete.

Directory trees are walked with an explicit stack, so nesting depth is
bounded by memory rather than by the interpreter's recursion limit.
Symbolic links are never followed into: a linked folder is not copied
and removing a tree unlinks the link itself.
"""

import logging
import os
import shutil

logger = logging.getLogger(__name__)


def copy_file(source: str, destination: str) -> None:
    """Copy file bytes as they are (no re-encryption).

    Args:
        source: Physical source file.
        destination: Physical destination file.
    """
    shutil.copyfile(source, destination)


def copy_tree(source: str, destination: str) -> int:
    """Copy a directory tree, creating directories as encountered.

    Args:
        source: Physical source directory.
        destination: Physical destination directory.

    Returns:
        Number of files copied.
    """
    copied = 0
    stack = [(source, destination)]
    while stack:
        current_source, current_destination = stack.pop()
        os.makedirs(current_destination, exist_ok=True)
        with os.scandir(current_source) as entries:
            for entry in entries:
                target = os.path.join(current_destination, entry.name)
                if entry.is_symlink():
                    logger.debug('Skipping symbolic link: %s', entry.path)
                elif entry.is_dir():
                    stack.append((entry.path, target))
                elif entry.is_file():
                    copy_file(entry.path, target)
                    copied += 1
    return copied


def remove_tree(path: str) -> None:
    """Remove a directory and everything below it.

    Args:
        path: Physical directory to remove.
    """
    directories = []
    stack = [path]
    while stack:
        current = stack.pop()
        directories.append(current)
        with os.scandir(current) as entries:
            for entry in entries:
                if entry.is_dir(follow_symlinks=False):
                    stack.append(entry.path)
                else:
                    os.unlink(entry.path)

    # Parents are recorded before their children
    for directory in reversed(directories):
        os.rmdir(directory)


def remove_item(path: str) -> None:
    """Remove a file, a link or a whole directory tree."""
    if os.path.isdir(path) and not os.path.islink(path):
        remove_tree(path)
    else:
        os.unlink(path)


def is_same_or_inside(path: str, ancestor: str) -> bool:
    """Check if ``path`` equals ``ancestor`` or lies below it."""
    candidate = os.path.normcase(os.path.realpath(path))
    parent = os.path.normcase(os.path.realpath(ancestor))
    return candidate == parent or candidate.startswith(
        parent.rstrip(os.sep) + os.sep,
    )
