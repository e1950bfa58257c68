"""Business logic for zip archives.

Entries inside an archive are always stored decrypted; the archive file
as a whole carries the encryption envelope when the instance encrypts.
Extraction decrypts the archive and re-encrypts every extracted file
per the current instance configuration.
"""

import io
import logging
import os
import zipfile
import zlib
from collections.abc import Iterable
from typing import Final

from server.apps.filemanager.entities import FolderListing, InstanceConfig
from server.apps.filemanager.exceptions import OperationFailedError
from server.apps.filemanager.infrastructure.encryption import ContentCodec
from server.apps.filemanager.logic.file_operations import (
    iter_files,
    resolve_items,
    run_batch,
)
from server.apps.filemanager.logic.listing import build_listing
from server.apps.filemanager.logic.naming import (
    unique_child_path,
    validate_name,
)
from server.apps.filemanager.logic.quota_operations import (
    bytes_to_mb,
    check_compression_size,
    check_not_over_quota,
    check_space,
    get_items_size,
)
from server.apps.filemanager.logic.tree_operations import is_same_or_inside
from server.apps.filemanager.path_mapper import PathMapper

logger = logging.getLogger(__name__)

ZIP_EXTENSION: Final = '.zip'
DEFAULT_ARCHIVE_NAME: Final = 'archive'

_CORRUPT_ENTRY_ERRORS: Final = (
    zipfile.BadZipFile,
    RuntimeError,
    NotImplementedError,
    EOFError,
    zlib.error,
)
_ENTRY_SEPARATOR: Final = '/'


def zip_items(
    config: InstanceConfig,
    virtual_path: str | None,
    items: Iterable[str] | None,
    archive_name: str | None,
) -> FolderListing:
    """Create a zip archive of the selected items.

    Files are keyed by their path relative to the folder holding the
    selected item, so a directly selected file is keyed by its bare
    name and a selected folder keeps its own name as the first part.
    If any input fails, no archive is written.

    Args:
        config: Instance configuration.
        virtual_path: Folder receiving the archive (root fallback).
        items: Virtual paths of files or folders to archive.
        archive_name: Archive name, with or without ``.zip``.

    Returns:
        Listing of the target folder.

    Raises:
        QuotaExceededError: If the root is over quota, the selection
            exceeds the compression ceiling or would not fit.
    """
    check_not_over_quota(config)
    mapper = PathMapper.for_config(config)
    folder = mapper.resolve_folder(virtual_path)
    paths = resolve_items(mapper, items)

    size_mb = bytes_to_mb(get_items_size(paths))
    check_compression_size(config, size_mb)
    check_space(config, size_mb)

    base_name = validate_name(_archive_base_name(archive_name))
    target = unique_child_path(
        folder,
        base_name + ZIP_EXTENSION,
        is_dir=False,
    )
    codec = ContentCodec.from_config(config)

    with io.BytesIO() as buffer:
        with zipfile.ZipFile(
            buffer,
            'w',
            compression=zipfile.ZIP_DEFLATED,
            compresslevel=config.compression_level,
        ) as archive:

            def add(path: str) -> None:
                parent = os.path.dirname(path)
                for file_path in iter_files(path):
                    arcname = os.path.relpath(file_path, parent)
                    _add_entry(codec, archive, file_path, arcname)

            run_batch(config, paths, add, 'Zip')

        with codec.encrypt_stream(buffer) as processed:
            codec.save_stream_to_file(processed, target)

    logger.info(
        'Archive created: %s (%d items)',
        mapper.to_virtual_path(target),
        len(paths),
    )
    return build_listing(config, mapper, folder)


def unzip_items(
    config: InstanceConfig,
    virtual_path: str | None,
    items: Iterable[str] | None,
) -> FolderListing:
    """Extract the selected archives into a folder.

    Existing files are overwritten and directory entries skipped.
    Entries whose path would leave the folder are skipped.

    Args:
        config: Instance configuration.
        virtual_path: Destination folder (root fallback).
        items: Virtual paths of zip archives.

    Returns:
        Listing of the destination folder.

    Raises:
        QuotaExceededError: If the root is over quota, or the archives'
            on-disk size exceeds the compression ceiling or the quota.
    """
    check_not_over_quota(config)
    mapper = PathMapper.for_config(config)
    destination = mapper.resolve_folder(virtual_path)
    paths = [
        path
        for path in resolve_items(mapper, items)
        if os.path.isfile(path)
    ]

    size_mb = bytes_to_mb(get_items_size(paths))
    check_compression_size(config, size_mb)
    check_space(config, size_mb)

    codec = ContentCodec.from_config(config)

    def extract(path: str) -> None:
        count = _extract_archive(codec, path, destination)
        logger.info(
            'Archive extracted: %s -> %s (%d files)',
            mapper.to_virtual_path(path),
            mapper.to_virtual_path(destination),
            count,
        )

    run_batch(config, paths, extract, 'Unzip')
    return build_listing(config, mapper, destination)


def _archive_base_name(archive_name: str | None) -> str:
    name = (archive_name or '').strip().lstrip('/\\')
    if name.lower().endswith(ZIP_EXTENSION):
        name = name[:-len(ZIP_EXTENSION)]
    return name.strip() or DEFAULT_ARCHIVE_NAME


def _add_entry(
    codec: ContentCodec,
    archive: zipfile.ZipFile,
    file_path: str,
    arcname: str,
) -> None:
    """Add a file's decrypted content to an open archive."""
    entry_name = arcname.replace(os.sep, _ENTRY_SEPARATOR)
    with open(file_path, 'rb') as file_obj:
        plain = codec.decrypt_stream(file_obj)
    with plain, archive.open(entry_name, 'w', force_zip64=True) as entry:
        while chunk := plain.read(io.DEFAULT_BUFFER_SIZE):
            entry.write(chunk)


def _extract_archive(
    codec: ContentCodec,
    archive_path: str,
    destination: str,
) -> int:
    """Extract one archive, re-encrypting every file.

    Returns:
        Number of files written.

    Raises:
        OperationFailedError: If the content is not a zip archive.
    """
    with open(archive_path, 'rb') as file_obj:
        plain = codec.decrypt_stream(file_obj)

    archive_name = os.path.basename(archive_path)
    written = 0
    with plain:
        try:
            archive = zipfile.ZipFile(plain)
        except zipfile.BadZipFile as exc:
            raise OperationFailedError(
                f'{archive_name} is not a valid zip archive.',
            ) from exc

        with archive:
            for info in archive.infolist():
                if info.is_dir():
                    continue
                target = _entry_target(destination, info.filename)
                if target is None:
                    logger.warning(
                        'Skipping archive entry outside destination: %r',
                        info.filename,
                    )
                    continue

                try:
                    content = archive.read(info)
                except _CORRUPT_ENTRY_ERRORS as exc:
                    raise OperationFailedError(
                        f'{archive_name} is not a valid zip archive.',
                    ) from exc

                os.makedirs(os.path.dirname(target), exist_ok=True)
                with io.BytesIO(content) as extracted:
                    with codec.encrypt_stream(extracted) as processed:
                        codec.save_stream_to_file(processed, target)
                written += 1
    return written


def _entry_target(destination: str, entry_name: str) -> str | None:
    """Map an archive entry to a path confined to ``destination``."""
    parts = [
        part
        for part in entry_name.replace('\\', _ENTRY_SEPARATOR).split(
            _ENTRY_SEPARATOR,
        )
        if part not in {'', os.curdir}
    ]
    if not parts or os.pardir in parts:
        return None

    target = os.path.normpath(os.path.join(destination, *parts))
    if not is_same_or_inside(target, destination) or target == destination:
        return None
    return target
