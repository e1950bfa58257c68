"""Business logic for file operations.

Every operation resolves caller paths through the PathMapper first.
Folder arguments that do not resolve fall back to the root; items that
do not resolve are skipped; single-file operations raise NotFoundError.
Listing-style operations end by re-reading the target folder.
"""

import io
import logging
import os
import shutil
from collections.abc import Callable, Iterable, Iterator
from typing import BinaryIO, Final

from server.apps.filemanager.entities import (
    FileDownload,
    FilePreview,
    FileText,
    FolderListing,
    InstanceConfig,
)
from server.apps.filemanager.exceptions import (
    AlreadyExistsError,
    EncryptedConflictError,
    FileManagerError,
    NotEditableError,
    NotFoundError,
    OperationFailedError,
    RejectedExtensionError,
    TooLargeError,
)
from server.apps.filemanager.infrastructure.encryption import ContentCodec
from server.apps.filemanager.infrastructure.metadata import (
    BINARY_SAMPLE_SIZE,
    detect_mime_type,
    get_disposition,
    get_icon_key,
    is_binary,
    is_image,
    is_text_mime_type,
    strip_null_bytes,
)
from server.apps.filemanager.logic.listing import build_listing
from server.apps.filemanager.logic.naming import (
    unique_child_path,
    validate_name,
)
from server.apps.filemanager.logic.quota_operations import (
    bytes_to_mb,
    check_not_over_quota,
    check_space,
    get_items_size,
)
from server.apps.filemanager.logic.trash_operations import (
    ensure_recycle_bin,
    is_in_recycle_bin,
)
from server.apps.filemanager.logic.tree_operations import (
    copy_file,
    copy_tree,
    is_same_or_inside,
    remove_item,
    remove_tree,
)
from server.apps.filemanager.path_mapper import ItemKind, PathMapper

logger = logging.getLogger(__name__)

_TEXT_CONTENT_TYPE: Final = 'text/plain; charset=utf-8'


def run_batch(
    config: InstanceConfig,
    paths: Iterable[str],
    action: Callable[[str], object],
    operation: str,
) -> None:
    """Apply an action to every item of a batch.

    Completed items are never rolled back. With ``stop_on_error`` the
    first failure is raised at once; otherwise failures are logged, the
    remaining items are processed and the last failure is raised.

    Args:
        config: Instance configuration.
        paths: Physical item paths.
        action: Callable applied to each path.
        operation: Operation name used in log records.

    Raises:
        FileManagerError: The first or last item failure.
        OSError: The first or last unconverted I/O failure.
    """
    last_error: FileManagerError | OSError | None = None
    for path in paths:
        try:
            action(path)
        except (FileManagerError, OSError) as error:
            logger.exception('%s failed for item: %s', operation, path)
            if config.stop_on_error:
                raise
            last_error = error

    if last_error is not None:
        raise last_error


def resolve_items(
    mapper: PathMapper,
    items: Iterable[str] | None,
) -> list[str]:
    """Resolve selected items, skipping those that cannot be used.

    Items outside the root, missing items and the root itself are
    skipped with a warning.

    Args:
        mapper: Mapper of the instance root.
        items: Virtual paths of the selected items.

    Returns:
        Physical paths of the usable items, in request order.
    """
    resolved = []
    for item in items or ():
        result = mapper.resolve(item)
        if not result.ok or result.physical_path is None:
            logger.warning('Skipping unresolved item: %s', item)
            continue
        if mapper.is_root(result.physical_path):
            logger.warning('Skipping the root as an item: %s', item)
            continue
        resolved.append(result.physical_path)
    return resolved


def resolve_file(mapper: PathMapper, file_path: str | None) -> str:
    """Resolve a single existing file.

    Args:
        mapper: Mapper of the instance root.
        file_path: Virtual path of the file.

    Returns:
        Physical path of the file.

    Raises:
        NotFoundError: If the path is outside the root or no file.
    """
    result = mapper.resolve(file_path, ItemKind.FILE)
    if not result.ok or result.physical_path is None:
        raise NotFoundError
    return result.physical_path


def create_folder(
    config: InstanceConfig,
    virtual_path: str | None,
    folder_name: str | None,
) -> FolderListing:
    """Create a folder, suffixing the name on collision.

    Args:
        config: Instance configuration.
        virtual_path: Parent folder (root fallback).
        folder_name: Desired folder name.

    Returns:
        Listing of the parent folder.

    Raises:
        InvalidNameError: If the name is not a plain name.
    """
    mapper = PathMapper.for_config(config)
    folder = mapper.resolve_folder(virtual_path)
    name = validate_name(folder_name)

    path = unique_child_path(folder, name, is_dir=True)
    os.mkdir(path)
    logger.info('Folder created: %s', mapper.to_virtual_path(path))

    return build_listing(config, mapper, folder)


def create_file(
    config: InstanceConfig,
    virtual_path: str | None,
    file_name: str | None,
) -> FolderListing:
    """Create an empty file, suffixing the name on collision.

    Args:
        config: Instance configuration.
        virtual_path: Parent folder (root fallback).
        file_name: Desired file name.

    Returns:
        Listing of the parent folder.

    Raises:
        InvalidNameError: If the name is not a plain name.
    """
    mapper = PathMapper.for_config(config)
    folder = mapper.resolve_folder(virtual_path)
    name = validate_name(file_name)
    codec = ContentCodec.from_config(config)

    path = unique_child_path(folder, name, is_dir=False)
    with io.BytesIO() as empty, codec.encrypt_stream(empty) as content:
        codec.save_stream_to_file(content, path)
    logger.info('File created: %s', mapper.to_virtual_path(path))

    return build_listing(config, mapper, folder)


def delete_items(
    config: InstanceConfig,
    virtual_path: str | None,
    items: Iterable[str] | None,
) -> FolderListing:
    """Delete items, through the recycle bin when it is enabled.

    Items outside the recycle bin are moved into it; items inside it
    (and the bin itself) are removed permanently.

    Args:
        config: Instance configuration.
        virtual_path: Folder to list afterwards (root fallback).
        items: Virtual paths of the items to delete.

    Returns:
        Listing of the folder.
    """
    mapper = PathMapper.for_config(config)

    def delete(path: str) -> None:
        if config.use_recycle_bin and not is_in_recycle_bin(config, path):
            recycle_bin = ensure_recycle_bin(config)
            moved = move_item(path, recycle_bin)
            logger.info(
                'Moved to recycle bin: %s -> %s',
                mapper.to_virtual_path(path),
                mapper.to_virtual_path(moved or path),
            )
            return
        try:
            remove_item(path)
        except OSError as exc:
            raise OperationFailedError(
                f'Error deleting {os.path.basename(path)}: {exc.strerror}',
            ) from exc
        logger.info('Deleted: %s', mapper.to_virtual_path(path))

    run_batch(config, resolve_items(mapper, items), delete, 'Delete')
    return build_listing(config, mapper, mapper.resolve_folder(virtual_path))


def rename_items(
    config: InstanceConfig,
    virtual_path: str | None,
    items: Iterable[str] | None,
    new_name: str | None,
) -> FolderListing:
    """Rename items within their own parent folder.

    A file keeps its extension when the new name has none. Renaming to
    the current name is a no-op; other collisions get a " (n)" suffix.

    Args:
        config: Instance configuration.
        virtual_path: Folder to list afterwards (root fallback).
        items: Virtual paths of the items to rename.
        new_name: New name.

    Returns:
        Listing of the folder.

    Raises:
        InvalidNameError: If the new name is not a plain name.
    """
    mapper = PathMapper.for_config(config)
    name = validate_name(new_name)

    def rename(path: str) -> None:
        parent = os.path.dirname(path)
        is_dir = _is_directory(path)
        desired = name
        if not is_dir and not os.path.splitext(name)[1]:
            desired = name + os.path.splitext(path)[1]

        target = os.path.join(parent, desired)
        if os.path.normcase(target) == os.path.normcase(path):
            logger.debug('Rename to the same name skipped: %s', path)
            return

        target = unique_child_path(parent, desired, is_dir=is_dir)
        try:
            os.rename(path, target)
        except OSError as exc:
            raise OperationFailedError(
                f'Error renaming {os.path.basename(path)}: {exc.strerror}',
            ) from exc
        logger.info(
            'Renamed: %s -> %s',
            mapper.to_virtual_path(path),
            mapper.to_virtual_path(target),
        )

    run_batch(config, resolve_items(mapper, items), rename, 'Rename')
    return build_listing(config, mapper, mapper.resolve_folder(virtual_path))


def copy_items(
    config: InstanceConfig,
    virtual_path: str | None,
    items: Iterable[str] | None,
) -> FolderListing:
    """Copy items into a destination folder.

    Bytes are copied as stored, so the encryption state is preserved.

    Args:
        config: Instance configuration.
        virtual_path: Destination folder (root fallback).
        items: Virtual paths of the items to copy.

    Returns:
        Listing of the destination folder.

    Raises:
        QuotaExceededError: If the copies would exceed the quota.
    """
    mapper = PathMapper.for_config(config)
    destination = mapper.resolve_folder(virtual_path)
    paths = resolve_items(mapper, items)
    check_space(config, bytes_to_mb(get_items_size(paths)))

    def copy(path: str) -> None:
        target = copy_item(path, destination)
        logger.info(
            'Copied: %s -> %s',
            mapper.to_virtual_path(path),
            mapper.to_virtual_path(target),
        )

    run_batch(config, paths, copy, 'Copy')
    return build_listing(config, mapper, destination)


def cut_items(
    config: InstanceConfig,
    virtual_path: str | None,
    items: Iterable[str] | None,
) -> FolderListing:
    """Move items into a destination folder.

    Args:
        config: Instance configuration.
        virtual_path: Destination folder (root fallback).
        items: Virtual paths of the items to move.

    Returns:
        Listing of the destination folder.
    """
    mapper = PathMapper.for_config(config)
    destination = mapper.resolve_folder(virtual_path)

    def cut(path: str) -> None:
        target = move_item(path, destination)
        if target is not None:
            logger.info(
                'Moved: %s -> %s',
                mapper.to_virtual_path(path),
                mapper.to_virtual_path(target),
            )

    run_batch(config, resolve_items(mapper, items), cut, 'Cut')
    return build_listing(config, mapper, destination)


def copy_item(source: str, destination_folder: str) -> str:
    """Copy a file or folder into a folder under a free name.

    Args:
        source: Physical path of the item.
        destination_folder: Physical destination folder.

    Returns:
        Physical path of the copy.

    Raises:
        OperationFailedError: If a folder would be copied into itself
            or an I/O step fails.
    """
    is_dir = _is_directory(source)
    if is_dir and is_same_or_inside(destination_folder, source):
        raise OperationFailedError('A folder cannot be copied into itself.')

    target = unique_child_path(
        destination_folder,
        os.path.basename(source),
        is_dir=is_dir,
    )
    try:
        if is_dir:
            copy_tree(source, target)
        else:
            copy_file(source, target)
    except OSError as exc:
        raise OperationFailedError(
            f'Error copying {os.path.basename(source)}: {exc.strerror}',
        ) from exc
    return target


def move_item(source: str, destination_folder: str) -> str | None:
    """Move a file or folder into a folder under a free name.

    Folders are copied and the original removed only after the copy
    succeeded; the copy is kept if that removal fails.

    Args:
        source: Physical path of the item.
        destination_folder: Physical destination folder.

    Returns:
        Physical path of the moved item, or None when the item already
        is in the destination folder.

    Raises:
        OperationFailedError: If a folder would be moved into itself
            or an I/O step fails.
    """
    name = os.path.basename(source)
    same_place = os.path.join(destination_folder, name)
    if os.path.normcase(same_place) == os.path.normcase(source):
        return None

    is_dir = _is_directory(source)
    if is_dir and is_same_or_inside(destination_folder, source):
        raise OperationFailedError('A folder cannot be moved into itself.')

    target = unique_child_path(destination_folder, name, is_dir=is_dir)
    if not is_dir:
        try:
            shutil.move(source, target)
        except OSError as exc:
            raise OperationFailedError(
                f'Error during cut operation: {exc.strerror}',
            ) from exc
        return target

    try:
        copy_tree(source, target)
    except OSError as exc:
        raise OperationFailedError(
            f'Error during cut operation: {exc.strerror}',
        ) from exc
    try:
        remove_tree(source)
    except OSError as exc:
        raise OperationFailedError(
            f'Error deleting original directory after move: {exc.strerror}',
        ) from exc
    return target


def encrypt_items(
    config: InstanceConfig,
    virtual_path: str | None,
    items: Iterable[str] | None,
) -> FolderListing:
    """Encrypt selected files (folders recursively) in place.

    Files already encrypted are left untouched.

    Args:
        config: Instance configuration.
        virtual_path: Folder to list afterwards (root fallback).
        items: Virtual paths of files or folders.

    Returns:
        Listing of the folder.

    Raises:
        QuotaExceededError: If the root is already over its quota.
    """
    return _transform_items(config, virtual_path, items, encrypt=True)


def decrypt_items(
    config: InstanceConfig,
    virtual_path: str | None,
    items: Iterable[str] | None,
) -> FolderListing:
    """Decrypt selected files (folders recursively) in place.

    Plain files are left untouched.

    Args:
        config: Instance configuration.
        virtual_path: Folder to list afterwards (root fallback).
        items: Virtual paths of files or folders.

    Returns:
        Listing of the folder.

    Raises:
        QuotaExceededError: If the root is already over its quota.
    """
    return _transform_items(config, virtual_path, items, encrypt=False)


def _transform_items(
    config: InstanceConfig,
    virtual_path: str | None,
    items: Iterable[str] | None,
    *,
    encrypt: bool,
) -> FolderListing:
    check_not_over_quota(config)
    mapper = PathMapper.for_config(config)
    folder = mapper.resolve_folder(virtual_path)
    codec = ContentCodec.from_config(config)

    def transform(path: str) -> None:
        changed = sum(
            _transform_file(codec, file_path, encrypt=encrypt)
            for file_path in iter_files(path)
        )
        logger.info(
            '%s %d files: %s',
            'Encrypted' if encrypt else 'Decrypted',
            changed,
            mapper.to_virtual_path(path),
        )

    operation = 'Encrypt' if encrypt else 'Decrypt'
    run_batch(config, resolve_items(mapper, items), transform, operation)
    return build_listing(config, mapper, folder)


def _transform_file(codec: ContentCodec, path: str, *, encrypt: bool) -> bool:
    """Rewrite a file in place when its encryption state must change."""
    with open(path, 'r+b') as file_obj:
        if not codec.enabled or codec.is_encrypted(file_obj) is encrypt:
            return False
        transform = codec.encrypt_stream if encrypt else codec.decrypt_stream
        with transform(file_obj) as processed:
            file_obj.seek(0)
            file_obj.truncate()
            shutil.copyfileobj(processed, file_obj)
    return True


def iter_files(path: str) -> Iterator[str]:
    """Yield a file, or every file below a folder, skipping links.

    Args:
        path: Physical file or folder.

    Yields:
        Physical file paths, sorted per folder.
    """
    if not _is_directory(path):
        if os.path.isfile(path):
            yield path
        return

    for dirpath, dirnames, filenames in os.walk(path):
        dirnames.sort()
        for filename in sorted(filenames):
            file_path = os.path.join(dirpath, filename)
            if not os.path.islink(file_path):
                yield file_path


def edit_file(
    config: InstanceConfig,
    file_path: str | None,
    data: str | None,
) -> None:
    """Replace the content of a file with new text.

    Args:
        config: Instance configuration.
        file_path: Virtual path of the file.
        data: New text content.

    Raises:
        QuotaExceededError: If the new content does not fit.
        NotFoundError: If the file does not exist.
        EncryptedConflictError: If the file is encrypted but the
            instance cannot encrypt.
    """
    content = (data or '').encode('utf-8')
    check_space(config, bytes_to_mb(len(content)))

    mapper = PathMapper.for_config(config)
    path = resolve_file(mapper, file_path)
    codec = ContentCodec.from_config(config)

    with open(path, 'r+b') as file_obj:
        if codec.is_encrypted(file_obj) and not codec.enabled:
            logger.warning(
                'Edit of encrypted file refused: %s',
                mapper.to_virtual_path(path),
            )
            raise EncryptedConflictError
        with io.BytesIO(content) as source:
            with codec.encrypt_stream(source) as processed:
                file_obj.seek(0)
                file_obj.truncate()
                shutil.copyfileobj(processed, file_obj)

    logger.info('File edited: %s', mapper.to_virtual_path(path))


def upload_file(
    config: InstanceConfig,
    virtual_path: str | None,
    file_name: str | None,
    content: bytes | BinaryIO,
    chunk_index: int | None = None,
) -> None:
    """Store uploaded bytes, encrypted per the instance configuration.

    Chunk 0 (or a plain upload) creates the file; later chunks are
    appended to it. The target is replaced only once fully written.

    Args:
        config: Instance configuration.
        virtual_path: Destination folder (root fallback).
        file_name: Client-side file name (reduced to its base name).
        content: Uploaded bytes or a seekable stream.
        chunk_index: Index of this chunk in a chunked upload.

    Raises:
        QuotaExceededError: If the upload does not fit.
        TooLargeError: If the upload exceeds the upload size limit.
        RejectedExtensionError: If the extension is not accepted.
        AlreadyExistsError: If a new upload targets an existing name.
        EncryptedConflictError: If a chunk would be appended to an
            encrypted file while encryption is disabled.
    """
    if isinstance(content, bytes):
        content = io.BytesIO(content)
    size_mb = bytes_to_mb(content.seek(0, os.SEEK_END))
    content.seek(0)

    check_space(config, size_mb)
    max_size = config.max_upload_size_mb
    if max_size > 0 and max_size < size_mb:
        logger.warning('Upload too large: %.2f of %d MB', size_mb, max_size)
        raise TooLargeError

    client_name = (file_name or '').replace('\\', '/')
    name = validate_name(os.path.basename(client_name))
    extension = os.path.splitext(name)[1].lower()
    if config.accepted_files and extension not in config.accepted_files:
        logger.warning('Upload extension rejected: %r', extension)
        raise RejectedExtensionError(extension)

    mapper = PathMapper.for_config(config)
    folder = mapper.resolve_folder(virtual_path)
    target = os.path.join(folder, name)
    codec = ContentCodec.from_config(config)

    if not chunk_index:
        if os.path.lexists(target):
            raise AlreadyExistsError
        with codec.encrypt_stream(content) as processed:
            codec.save_stream_to_file(processed, target)
    elif not os.path.isfile(target):
        with codec.encrypt_stream(content) as processed:
            codec.save_stream_to_file(processed, target)
    else:
        with open(target, 'rb') as existing:
            if codec.is_encrypted(existing) and not codec.enabled:
                logger.warning(
                    'Append to encrypted file refused: %s',
                    mapper.to_virtual_path(target),
                )
                raise EncryptedConflictError
            combined = codec.decrypt_stream(existing)
        with combined:
            combined.seek(0, os.SEEK_END)
            content.seek(0)
            shutil.copyfileobj(content, combined)
            with codec.encrypt_stream(combined) as processed:
                codec.save_stream_to_file(processed, target)

    logger.info(
        'Uploaded %s (chunk %s)',
        mapper.to_virtual_path(target),
        chunk_index or 0,
    )


def download_file(
    config: InstanceConfig,
    file_path: str | None,
    *,
    view: bool = False,
) -> FileDownload:
    """Open a file's decrypted content for delivery.

    Args:
        config: Instance configuration.
        file_path: Virtual path of the file.
        view: Display in the browser rather than download.

    Returns:
        FileDownload owning the decrypted stream; the caller closes it.

    Raises:
        NotFoundError: If the file does not exist.
        DecryptionFailedError: If the content does not authenticate.
    """
    mapper = PathMapper.for_config(config)
    path = resolve_file(mapper, file_path)
    return _open_download(ContentCodec.from_config(config), path, view=view)


def _open_download(
    codec: ContentCodec,
    path: str,
    *,
    view: bool,
) -> FileDownload:
    filename = os.path.basename(path)
    mime_type = detect_mime_type(filename)
    disposition = get_disposition(mime_type, view)

    with open(path, 'rb') as file_obj:
        stream = codec.decrypt_stream(file_obj)

    if view and is_text_mime_type(mime_type):
        with stream:
            text = strip_null_bytes(stream.read().decode('utf-8', 'replace'))
        stream = io.BytesIO(text.encode('utf-8'))
        mime_type = _TEXT_CONTENT_TYPE

    logger.debug('Serving %s as %s (%s)', filename, mime_type, disposition)
    return FileDownload(
        stream=stream,
        filename=filename,
        mime_type=mime_type,
        disposition=disposition,
    )


def get_file_text(config: InstanceConfig, file_path: str | None) -> FileText:
    """Read a file's decrypted content as editable text.

    Args:
        config: Instance configuration.
        file_path: Virtual path of the file.

    Returns:
        UTF-8 text with NUL characters removed.

    Raises:
        NotFoundError: If the file does not exist.
        NotEditableError: If the content is binary.
    """
    mapper = PathMapper.for_config(config)
    path = resolve_file(mapper, file_path)
    filename = os.path.basename(path)
    codec = ContentCodec.from_config(config)

    with open(path, 'rb') as file_obj, codec.decrypt_stream(file_obj) as plain:
        sample = plain.read(BINARY_SAMPLE_SIZE)
        if is_binary(sample):
            raise NotEditableError(filename)
        data = sample + plain.read()

    return FileText(
        filename=filename,
        virtual_path=mapper.to_virtual_path(path),
        text=strip_null_bytes(data.decode('utf-8', 'replace')),
    )


def preview_file(config: InstanceConfig, file_path: str | None) -> FilePreview:
    """Build a thumbnail answer for a file.

    Args:
        config: Instance configuration.
        file_path: Virtual path of the file.

    Returns:
        An inline image stream for images, else a generic icon key.

    Raises:
        NotFoundError: If the file does not exist.
    """
    mapper = PathMapper.for_config(config)
    path = resolve_file(mapper, file_path)
    filename = os.path.basename(path)

    if is_image(filename):
        codec = ContentCodec.from_config(config)
        return FilePreview(
            filename=filename,
            download=_open_download(codec, path, view=True),
        )
    return FilePreview(filename=filename, icon=get_icon_key(filename))


def _is_directory(path: str) -> bool:
    return os.path.isdir(path) and not os.path.islink(path)
