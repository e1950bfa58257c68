"""Metadata extraction utilities for files."""

import mimetypes
from datetime import UTC, datetime
from pathlib import Path
from typing import Final

_DEFAULT_MIME_TYPE: Final = 'application/octet-stream'
_TEXT_MIME_TYPE: Final = 'text/plain'
_PDF_MIME_TYPE: Final = 'application/pdf'

INLINE: Final = 'inline'
ATTACHMENT: Final = 'attachment'

_SIZE_UNITS: Final = ('B', 'KB', 'MB', 'GB', 'TB')
_SIZE_STEP: Final = 1024

# Bytes sampled when sniffing binary content
BINARY_SAMPLE_SIZE: Final = 8192

# Printable ASCII, common control characters and every byte >= 0x80.
# NUL is left out of the deletion table: text with embedded NULs stays
# editable, the NULs are stripped instead.
_TEXT_CHARACTERS: Final = bytes(
    {0, 7, 8, 9, 10, 12, 13, 27}
    | set(range(0x20, 0x7F))
    | set(range(0x80, 0x100)),
)

IMAGE_EXTENSIONS: Final = frozenset((
    'png', 'jpg', 'jpeg', 'webp', 'gif', 'svg', 'apng',
    'avif', 'ico', 'bmp', 'tif', 'tiff',
))

_ICON_KEYS: Final = {
    'zip': 'zip',
    'rar': 'zip',
    'tar': 'zip',
    '7z': 'zip',
    '7zip': 'zip',
    'gzip': 'zip',
    'gz': 'zip',
    'js': 'js',
    'jsx': 'js',
    'php': 'php',
    'html': 'html',
    'htm': 'html',
    'cshtml': 'html',
    'css': 'css',
    'json': 'json',
    'txt': 'txt',
    'pdf': 'pdf',
    'mp4': 'mp4',
    'mp3': 'mp3',
    'exe': 'exe',
    'dll': 'dll',
}
_DEFAULT_ICON: Final = 'file'


def detect_mime_type(filename: str) -> str:
    """Detect MIME type from file name.

    Uses Python's built-in mimetypes module to guess MIME type
    from filename extension.

    Args:
        filename: Filename with extension.

    Returns:
        MIME type string (e.g., 'image/jpeg', 'application/pdf').
        Returns 'application/octet-stream' if type cannot be determined.
    """
    mime_type, _ = mimetypes.guess_type(filename)
    if mime_type is None:
        return _DEFAULT_MIME_TYPE
    return mime_type


def is_text_mime_type(mime_type: str) -> bool:
    """Check if a MIME type is plain text."""
    return mime_type == _TEXT_MIME_TYPE


def get_disposition(mime_type: str, view: bool) -> str:
    """Choose between inline and attachment delivery.

    Args:
        mime_type: MIME type of the content.
        view: Whether the caller asked to view rather than download.

    Returns:
        'inline' for viewed text, images and PDFs, else 'attachment'.
    """
    if not view:
        return ATTACHMENT
    if (
        is_text_mime_type(mime_type)
        or mime_type.startswith('image/')
        or mime_type == _PDF_MIME_TYPE
    ):
        return INLINE
    return ATTACHMENT


def get_file_extension(filename: str) -> str:
    """Get file extension from filename.

    Args:
        filename: Filename (e.g., 'document.pdf').

    Returns:
        Extension without dot, lowercase (e.g., 'pdf').
        Returns empty string if no extension.
    """
    extension = Path(filename).suffix
    return extension.lstrip('.').lower()


def is_image(filename: str) -> bool:
    """Check if a file name has an image extension."""
    return get_file_extension(filename) in IMAGE_EXTENSIONS


def get_icon_key(filename: str) -> str:
    """Map a file name to a generic icon key for previews."""
    return _ICON_KEYS.get(get_file_extension(filename), _DEFAULT_ICON)


def format_size(size_bytes: int) -> str:
    """Format a byte count for display.

    Args:
        size_bytes: Size in bytes.

    Returns:
        Human-readable size (e.g., '512 B', '1.5 KB', '20 MB').
    """
    size = float(size_bytes)
    for unit in _SIZE_UNITS:
        if size < _SIZE_STEP or unit == _SIZE_UNITS[-1]:
            break
        size /= _SIZE_STEP
    if unit == _SIZE_UNITS[0]:
        return f'{int(size)} {unit}'
    return f'{size:.2f}'.rstrip('0').rstrip('.') + f' {unit}'


def format_timestamp(timestamp: float) -> str:
    """Format a POSIX timestamp as ISO 8601 in UTC."""
    return datetime.fromtimestamp(timestamp, tz=UTC).isoformat()


def is_binary(sample: bytes) -> bool:
    """Check if a content sample looks like binary data.

    Args:
        sample: Leading bytes of the (decrypted) content.

    Returns:
        True if the sample holds bytes never found in text.
    """
    return bool(sample.translate(None, _TEXT_CHARACTERS))


def strip_null_bytes(text: str) -> str:
    """Remove embedded NUL characters from text."""
    return text.replace('\x00', '')
