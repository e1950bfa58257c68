"""Value objects exchanged between the engine and its dispatcher."""

import dataclasses
import enum
from collections.abc import Iterable
from typing import Any, BinaryIO, Final, Self, final

from django.conf import settings

_MIN_COMPRESSION_LEVEL: Final = 0
_MAX_COMPRESSION_LEVEL: Final = 9


class Command(enum.StrEnum):
    """Operation kinds accepted by the command processor."""

    LIST = 'list'
    SEARCH = 'search'
    NEW_FOLDER = 'new-folder'
    NEW_FILE = 'new-file'
    DELETE = 'delete'
    RENAME = 'rename'
    ENCRYPT = 'encrypt'
    DECRYPT = 'decrypt'
    ZIP = 'zip'
    UNZIP = 'unzip'
    COPY = 'copy'
    CUT = 'cut'
    EDIT = 'edit'
    DOWNLOAD = 'download'
    VIEW = 'view'
    GET_FILE_TEXT = 'get-file-text'
    UPLOAD = 'upload'
    PREVIEW = 'preview'


def parse_accepted_files(accepted: str | Iterable[str]) -> tuple[str, ...]:
    """Normalize an accepted-extension list.

    Args:
        accepted: Comma separated string (".pdf,.png") or iterable.

    Returns:
        Lower-cased extensions, each with a leading dot.
    """
    if isinstance(accepted, str):
        accepted = accepted.split(',')
    extensions = []
    for extension in accepted:
        normalized = extension.strip().lower()
        if not normalized:
            continue
        if not normalized.startswith('.'):
            normalized = f'.{normalized}'
        extensions.append(normalized)
    return tuple(extensions)


def clamp_compression_level(level: int) -> int:
    """Clamp a deflate level into the 0..9 range."""
    return max(_MIN_COMPRESSION_LEVEL, min(_MAX_COMPRESSION_LEVEL, level))


@final
@dataclasses.dataclass(frozen=True, slots=True)
class InstanceConfig:
    """Resolved configuration of one file manager instance.

    Immutable: re-invoking an instance replaces the whole object in the
    registry instead of mutating it.
    """

    instance_id: str
    root_path: str
    storage_max_size_mb: int = 1024
    compression_max_size_mb: int = 256
    max_upload_size_mb: int = 256
    accepted_files: tuple[str, ...] = ()
    encryption_key: str | None = None
    use_encryption: bool = False
    compression_level: int = 6
    use_recycle_bin: bool = True
    disabled_commands: frozenset[Command] = frozenset()
    stop_on_error: bool = False

    def __post_init__(self) -> None:
        """Normalize fields that accept loose input."""
        object.__setattr__(
            self,
            'compression_level',
            clamp_compression_level(self.compression_level),
        )
        object.__setattr__(
            self,
            'accepted_files',
            parse_accepted_files(self.accepted_files),
        )
        object.__setattr__(
            self,
            'disabled_commands',
            frozenset(Command(command) for command in self.disabled_commands),
        )

    @classmethod
    def from_settings(
        cls,
        instance_id: str,
        root_path: str,
        **overrides: Any,
    ) -> Self:
        """Build a config from Django settings defaults.

        Args:
            instance_id: Identifier of the instance.
            root_path: Physical root directory.
            **overrides: Field values replacing the settings defaults.

        Returns:
            New InstanceConfig.
        """
        defaults: dict[str, Any] = {
            'storage_max_size_mb': settings.FILEMANAGER_STORAGE_MAX_SIZE_MB,
            'compression_max_size_mb': (
                settings.FILEMANAGER_COMPRESSION_MAX_SIZE_MB
            ),
            'max_upload_size_mb': settings.FILEMANAGER_MAX_UPLOAD_SIZE_MB,
            'accepted_files': settings.FILEMANAGER_ACCEPTED_FILES,
            'encryption_key': settings.FILEMANAGER_ENCRYPTION_KEY,
            'use_encryption': settings.FILEMANAGER_USE_ENCRYPTION,
            'compression_level': settings.FILEMANAGER_COMPRESSION_LEVEL,
            'use_recycle_bin': settings.FILEMANAGER_USE_RECYCLE_BIN,
            'stop_on_error': settings.FILEMANAGER_STOP_ON_ERROR,
        }
        defaults.update(overrides)
        return cls(instance_id=instance_id, root_path=root_path, **defaults)

    def is_disabled(self, command: Command) -> bool:
        """Check whether a command is disabled for this instance."""
        return command in self.disabled_commands


@final
@dataclasses.dataclass(frozen=True, slots=True)
class FolderEntry:
    """Folder row of a listing."""

    folder_name: str
    virtual_path: str
    created_at: str
    modified_at: str

    def to_dict(self) -> dict[str, str]:
        """Serialize with the dispatcher's field names."""
        return {
            'folderName': self.folder_name,
            'virtualPath': self.virtual_path,
            'createdAt': self.created_at,
            'modifiedAt': self.modified_at,
        }


@final
@dataclasses.dataclass(frozen=True, slots=True)
class FileEntry:
    """File row of a listing.

    ``size`` is the human-readable plaintext size, ``encrypted_size``
    the human-readable size on disk.
    """

    file_name: str
    virtual_path: str
    size: str
    encrypted_size: str
    created_at: str
    modified_at: str
    is_encrypted: bool

    def to_dict(self) -> dict[str, str | bool]:
        """Serialize with the dispatcher's field names."""
        return {
            'fileName': self.file_name,
            'virtualPath': self.virtual_path,
            'size': self.size,
            'encryptedSize': self.encrypted_size,
            'createdAt': self.created_at,
            'modifiedAt': self.modified_at,
            'isEncrypted': self.is_encrypted,
        }


@final
@dataclasses.dataclass(slots=True)
class FolderListing:
    """Folder-listing payload returned by listing-style operations."""

    current_path: str
    folders: list[FolderEntry] = dataclasses.field(default_factory=list)
    files: list[FileEntry] = dataclasses.field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dictionary."""
        return {
            'currentPath': self.current_path,
            'folders': [folder.to_dict() for folder in self.folders],
            'files': [file_entry.to_dict() for file_entry in self.files],
        }


@final
@dataclasses.dataclass(slots=True)
class FileDownload:
    """Decrypted byte stream handed to the dispatcher.

    The consumer drains ``stream`` and then calls ``close()`` (or uses
    the object as a context manager) to release the file handle.
    """

    stream: BinaryIO
    filename: str
    mime_type: str
    disposition: str

    @property
    def content_disposition(self) -> str:
        """Header value for the response."""
        return f'{self.disposition}; filename="{self.filename}"'

    def read(self) -> bytes:
        """Drain the remaining content."""
        return self.stream.read()

    def close(self) -> None:
        """Release the underlying stream."""
        self.stream.close()

    def __enter__(self) -> Self:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


@final
@dataclasses.dataclass(frozen=True, slots=True)
class FileText:
    """Editable text of a file."""

    filename: str
    virtual_path: str
    text: str


@final
@dataclasses.dataclass(slots=True)
class FilePreview:
    """Thumbnail answer: an inline image stream or a generic icon key."""

    filename: str
    icon: str | None = None
    download: FileDownload | None = None

    def close(self) -> None:
        """Release the image stream, if any."""
        if self.download is not None:
            self.download.close()
