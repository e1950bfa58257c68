"""Business logic for folder listing and search."""

import fnmatch
import logging
import os

from server.apps.filemanager.entities import (
    FileEntry,
    FolderEntry,
    FolderListing,
    InstanceConfig,
)
from server.apps.filemanager.exceptions import DecryptionFailedError
from server.apps.filemanager.infrastructure.encryption import ContentCodec
from server.apps.filemanager.infrastructure.metadata import (
    format_size,
    format_timestamp,
)
from server.apps.filemanager.path_mapper import PathMapper

logger = logging.getLogger(__name__)

_WILDCARD = '*'


def get_content(
    config: InstanceConfig,
    virtual_path: str | None,
) -> FolderListing:
    """List the direct children of a folder.

    Paths outside the root or not naming a folder list the root.

    Args:
        config: Instance configuration.
        virtual_path: Folder to list.

    Returns:
        Listing with folders and files sorted by name.
    """
    mapper = PathMapper.for_config(config)
    folder = mapper.resolve_folder(virtual_path)
    return build_listing(config, mapper, folder)


def build_listing(
    config: InstanceConfig,
    mapper: PathMapper,
    folder: str,
) -> FolderListing:
    """Enumerate a resolved physical folder.

    Args:
        config: Instance configuration.
        mapper: Mapper of the instance root.
        folder: Physical folder inside the root.

    Returns:
        Fresh listing of the folder.
    """
    codec = ContentCodec.from_config(config)
    listing = FolderListing(current_path=mapper.to_virtual_path(folder))

    with os.scandir(folder) as scanned:
        entries = sorted(
            scanned,
            key=lambda entry: (entry.name.lower(), entry.name),
        )

    for entry in entries:
        if not mapper.is_inside_root(entry.path):
            continue
        if entry.is_dir():
            listing.folders.append(_folder_entry(mapper, entry.path))
        elif entry.is_file():
            listing.files.append(_file_entry(mapper, codec, entry.path))

    logger.debug(
        'Listed %s: %d folders, %d files',
        listing.current_path,
        len(listing.folders),
        len(listing.files),
    )
    return listing


def search(
    config: InstanceConfig,
    virtual_path: str | None,
    query: str | None,
) -> FolderListing:
    """Search a folder recursively by name.

    A query containing ``*`` is matched as a glob pattern against whole
    names; any other query is a substring. Both are case-insensitive.

    Args:
        config: Instance configuration.
        virtual_path: Folder to search from (root fallback).
        query: Name pattern.

    Returns:
        Matching folders and files ordered by virtual path.
    """
    mapper = PathMapper.for_config(config)
    codec = ContentCodec.from_config(config)
    folder = mapper.resolve_folder(virtual_path)
    listing = FolderListing(current_path=mapper.to_virtual_path(folder))
    pattern = (query or '').lower()

    for dirpath, dirnames, filenames in os.walk(folder):
        for dirname in dirnames:
            path = os.path.join(dirpath, dirname)
            if _matches(dirname, pattern) and mapper.is_inside_root(path):
                listing.folders.append(_folder_entry(mapper, path))
        for filename in filenames:
            path = os.path.join(dirpath, filename)
            if _matches(filename, pattern) and mapper.is_inside_root(path):
                listing.files.append(_file_entry(mapper, codec, path))

    listing.folders.sort(key=lambda folder_entry: folder_entry.virtual_path)
    listing.files.sort(key=lambda file_entry: file_entry.virtual_path)

    logger.debug(
        'Search %r in %s: %d folders, %d files',
        query,
        listing.current_path,
        len(listing.folders),
        len(listing.files),
    )
    return listing


def _matches(name: str, pattern: str) -> bool:
    if _WILDCARD in pattern:
        return fnmatch.fnmatchcase(name.lower(), pattern)
    return pattern in name.lower()


def _folder_entry(mapper: PathMapper, path: str) -> FolderEntry:
    stat = os.stat(path)
    return FolderEntry(
        folder_name=os.path.basename(path),
        virtual_path=mapper.to_virtual_path(path),
        created_at=format_timestamp(stat.st_ctime),
        modified_at=format_timestamp(stat.st_mtime),
    )


def _file_entry(
    mapper: PathMapper,
    codec: ContentCodec,
    path: str,
) -> FileEntry:
    stat = os.stat(path)
    with open(path, 'rb') as file_obj:
        encrypted = codec.is_encrypted(file_obj)
        try:
            size = codec.content_size(file_obj)
        except DecryptionFailedError:
            logger.warning('Damaged encryption envelope: %s', path)
            size = stat.st_size

    return FileEntry(
        file_name=os.path.basename(path),
        virtual_path=mapper.to_virtual_path(path),
        size=format_size(size),
        encrypted_size=format_size(stat.st_size),
        created_at=format_timestamp(stat.st_ctime),
        modified_at=format_timestamp(stat.st_mtime),
        is_encrypted=encrypted,
    )
