"""Exceptions for filemanager app."""

import os
from typing import Final

# Replaces the physical root in caller-visible messages
ROOT_PLACEHOLDER: Final = 'Root'


class FileManagerError(Exception):
    """Base class for errors surfaced to the caller as a message."""

    message = 'The operation could not be completed.'

    def __init__(self, message: str | None = None) -> None:
        """Initialize FileManagerError.

        Args:
            message: Optional message overriding the class default.
        """
        self.message = message or self.message
        super().__init__(self.message)


class InvalidRootError(FileManagerError):
    """Raised when the instance root is unknown or no longer exists."""

    message = 'Invalid root path.'


class NotFoundError(FileManagerError):
    """Raised when a virtual path does not resolve to an existing item."""

    message = 'File not found.'


class QuotaExceededError(FileManagerError):
    """Raised when an operation would exceed a storage limit."""

    def __init__(
        self,
        limit_mb: int,
        used_mb: float,
        required_mb: float,
        message: str | None = None,
    ) -> None:
        """Initialize QuotaExceededError.

        Args:
            limit_mb: Configured limit in megabytes.
            used_mb: Currently used megabytes.
            required_mb: Megabytes needed for the operation.
            message: Optional message replacing the default one.
        """
        self.limit_mb = limit_mb
        self.used_mb = used_mb
        self.required_mb = required_mb
        super().__init__(
            message or (
                f'Not enough space: need {required_mb:g} MB, '
                f'{used_mb:g} MB of {limit_mb} MB already used.'
            ),
        )


class TooLargeError(FileManagerError):
    """Raised when an upload or archive input exceeds its size limit."""

    message = 'The file is too big.'


class RejectedExtensionError(FileManagerError):
    """Raised when an uploaded file's extension is not accepted."""

    def __init__(self, extension: str) -> None:
        """Initialize RejectedExtensionError.

        Args:
            extension: The rejected extension (with leading dot).
        """
        self.extension = extension
        super().__init__(f"'{extension}' files are not accepted.")


class NotEditableError(FileManagerError):
    """Raised when binary content is requested for text editing."""

    def __init__(self, filename: str) -> None:
        """Initialize NotEditableError.

        Args:
            filename: Name of the binary file.
        """
        self.filename = filename
        super().__init__(f'{filename} is not an editable file.')


class EncryptedConflictError(FileManagerError):
    """Raised when editing encrypted content with encryption disabled."""

    message = (
        'The file is encrypted and cannot be edited '
        'without decrypting it first.'
    )


class AlreadyExistsError(FileManagerError):
    """Raised when an upload targets an existing file name."""

    message = 'A file with the same name already exists.'


class InvalidNameError(FileManagerError):
    """Raised when a supplied name is not a plain file or folder name."""

    def __init__(self, name: str) -> None:
        """Initialize InvalidNameError.

        Args:
            name: The rejected name.
        """
        self.name = name
        super().__init__(f"'{name}' is not a valid name.")


class DecryptionFailedError(FileManagerError):
    """Raised when an envelope fails authentication or is malformed."""

    message = 'The file could not be decrypted.'


class OperationFailedError(FileManagerError):
    """Raised when an I/O step of copy, move or delete fails.

    The underlying error is chained as ``__cause__``.
    """


class CommandDisabledError(FileManagerError):
    """Raised when the command is in the instance's disabled set."""

    message = 'This action is disabled.'


class UnknownCommandError(FileManagerError):
    """Raised when the command kind is not recognised."""

    message = 'Unknown command.'


def scrub_message(message: str, root_path: str | None) -> str:
    """Replace the physical root path in a message with a placeholder.

    Args:
        message: Message that may mention physical paths.
        root_path: Physical root of the instance, if known.

    Returns:
        Message safe to return to the caller.
    """
    if not root_path:
        return message
    root = root_path.rstrip(os.sep) or root_path
    return message.replace(root, ROOT_PLACEHOLDER)
