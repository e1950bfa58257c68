"""Self-describing encryption envelope for files at rest.

Container layout::

    MAGIC (4 bytes) | u16 header_len | header JSON | chunk*
    chunk = u32 ciphertext_len | ChaCha20-Poly1305 ciphertext

- The header is compact JSON with sorted keys; MAGIC, length and header
  bytes are authenticated as AAD of every chunk.
- A per-file subkey is derived from the configured key with HKDF-SHA256
  and a random 16-byte salt stored in the header.
- Nonce = 4-byte random prefix || 8-byte big-endian chunk counter.
- The last chunk is sealed with a distinct AAD marker so that dropping
  trailing chunks is detected; at least one chunk is always written.

Whether content is encrypted is read from the leading bytes only, so
no side index is needed and the check works without a key.
"""

import base64
import binascii
import json
import logging
import os
import secrets
import shutil
import struct
import tempfile
from typing import BinaryIO, Final, final

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import ChaCha20Poly1305
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from server.apps.filemanager.entities import InstanceConfig
from server.apps.filemanager.exceptions import DecryptionFailedError

logger = logging.getLogger(__name__)

MAGIC: Final = b'FME\x01'
VERSION: Final = 1

# 64 KiB plaintext per chunk
DEFAULT_CHUNK_SIZE: Final = 64 * 1024

# Transformed streams stay in memory up to this size, then spill to disk
SPOOL_MAX_SIZE: Final = 8 * 1024 * 1024

_SUITE: Final = 'chacha20poly1305'
_KDF: Final = 'hkdf-sha256'
_KDF_INFO: Final = b'filemanager.envelope.v1'
_KEY_SIZE: Final = 32
_SALT_SIZE: Final = 16
_NONCE_PREFIX_SIZE: Final = 4
_TAG_SIZE: Final = 16
_COPY_BUFFER_SIZE: Final = 1024 * 1024

_TEMP_PREFIX: Final = '.upload-'
_TEMP_TOKEN_BYTES: Final = 8
_TEMP_FLAGS: Final = os.O_WRONLY | os.O_CREAT | os.O_EXCL
_NEW_FILE_MODE: Final = 0o666

_HEADER_LENGTH: Final = struct.Struct('>H')
_CHUNK_LENGTH: Final = struct.Struct('>I')
_PREFIX_SIZE: Final = len(MAGIC) + _HEADER_LENGTH.size
_MAX_COUNTER: Final = 0xFFFFFFFFFFFFFFFF

_MIDDLE_CHUNK: Final = b'\x00'
_FINAL_CHUNK: Final = b'\x01'


def _b64e(raw: bytes) -> str:
    """urlsafe base64 without padding."""
    return base64.urlsafe_b64encode(raw).decode('ascii').rstrip('=')


def _b64d(text: str) -> bytes:
    """Decode urlsafe base64 that may omit padding."""
    padding = '=' * ((4 - len(text) % 4) % 4)
    return base64.urlsafe_b64decode(text + padding)


def _derive_file_key(key: bytes, salt: bytes) -> bytes:
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=_KEY_SIZE,
        salt=salt,
        info=_KDF_INFO,
    )
    return hkdf.derive(key)


def _nonce(prefix: bytes, index: int) -> bytes:
    if index > _MAX_COUNTER:
        raise ValueError('Chunk index exceeds 64-bit counter space')
    return prefix + index.to_bytes(8, 'big')


def _write_header(out_f: BinaryIO, header: dict[str, object]) -> bytes:
    """Write MAGIC, header length and header; return them as AAD."""
    header_bytes = json.dumps(
        header,
        separators=(',', ':'),
        sort_keys=True,
    ).encode('utf-8')
    prefix = MAGIC + _HEADER_LENGTH.pack(len(header_bytes)) + header_bytes
    out_f.write(prefix)
    return prefix


def _read_header(in_f: BinaryIO) -> tuple[dict[str, object], bytes]:
    """Read the envelope header, returning (header, aad)."""
    prefix = in_f.read(_PREFIX_SIZE)
    if len(prefix) != _PREFIX_SIZE or not prefix.startswith(MAGIC):
        raise DecryptionFailedError('Missing encryption header.')
    (header_length,) = _HEADER_LENGTH.unpack(prefix[len(MAGIC):])
    header_bytes = in_f.read(header_length)
    if len(header_bytes) != header_length:
        raise DecryptionFailedError('Truncated encryption header.')
    try:
        header = json.loads(header_bytes.decode('utf-8'))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise DecryptionFailedError('Invalid encryption header.') from exc
    if not isinstance(header, dict):
        raise DecryptionFailedError('Invalid encryption header.')
    return header, prefix + header_bytes


def _header_chunk_size(header: dict[str, object]) -> int:
    """Read the plaintext chunk size declared by a header.

    Raises:
        DecryptionFailedError: If the value is missing, not an integer
            or not positive.
    """
    value = header.get('chunk_size')
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise DecryptionFailedError('Invalid encryption header.')
    return value


def _read_chunk(in_f: BinaryIO, max_length: int) -> bytes | None:
    """Read one ciphertext chunk, or None at end of stream."""
    length_bytes = in_f.read(_CHUNK_LENGTH.size)
    if not length_bytes:
        return None
    if len(length_bytes) != _CHUNK_LENGTH.size:
        raise DecryptionFailedError('Truncated chunk length.')
    (length,) = _CHUNK_LENGTH.unpack(length_bytes)
    if length < _TAG_SIZE or length > max_length:
        raise DecryptionFailedError('Invalid chunk length.')
    ciphertext = in_f.read(length)
    if len(ciphertext) != length:
        raise DecryptionFailedError('Truncated ciphertext chunk.')
    return ciphertext


def has_envelope(stream: BinaryIO) -> bool:
    """Check whether a stream starts with the envelope prefix.

    The stream position is restored.

    Args:
        stream: Seekable binary stream.

    Returns:
        True if the leading bytes carry the envelope marker.
    """
    position = stream.tell()
    try:
        prefix = stream.read(_PREFIX_SIZE)
    finally:
        stream.seek(position)
    return len(prefix) == _PREFIX_SIZE and prefix.startswith(MAGIC)


def encrypt_to(
    in_f: BinaryIO,
    out_f: BinaryIO,
    *,
    key: bytes,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> None:
    """Encrypt a stream into the envelope format.

    Args:
        in_f: Readable binary input, read until EOF.
        out_f: Writable binary output.
        key: Key material (any length).
        chunk_size: Plaintext chunk size in bytes.
    """
    salt = os.urandom(_SALT_SIZE)
    nonce_prefix = os.urandom(_NONCE_PREFIX_SIZE)
    aead = ChaCha20Poly1305(_derive_file_key(key, salt))
    header = {
        'v': VERSION,
        'suite': _SUITE,
        'nonce_prefix': _b64e(nonce_prefix),
        'chunk_size': int(chunk_size),
        'kdf': _KDF,
        'kdf_salt': _b64e(salt),
    }
    aad = _write_header(out_f, header)

    index = 0
    current = in_f.read(chunk_size)
    while True:
        upcoming = in_f.read(chunk_size) if current else b''
        marker = _MIDDLE_CHUNK if upcoming else _FINAL_CHUNK
        ciphertext = aead.encrypt(
            _nonce(nonce_prefix, index),
            current,
            aad + marker,
        )
        out_f.write(_CHUNK_LENGTH.pack(len(ciphertext)))
        out_f.write(ciphertext)
        if not upcoming:
            break
        current = upcoming
        index += 1


def decrypt_to(in_f: BinaryIO, out_f: BinaryIO, *, key: bytes) -> None:
    """Decrypt an envelope stream.

    Args:
        in_f: Readable binary input positioned at the envelope start.
        out_f: Writable binary output.
        key: Key material used for encryption.

    Raises:
        DecryptionFailedError: On a bad header, truncation or
            authentication failure (wrong key or tampered content).
    """
    header, aad = _read_header(in_f)
    try:
        version = int(header['v'])
        suite = str(header['suite'])
        kdf = str(header['kdf'])
        nonce_prefix = _b64d(str(header['nonce_prefix']))
        salt = _b64d(str(header['kdf_salt']))
    except (
        KeyError,
        TypeError,
        ValueError,
        OverflowError,
        binascii.Error,
    ) as exc:
        raise DecryptionFailedError('Invalid encryption header.') from exc
    chunk_size = _header_chunk_size(header)

    if (
        version != VERSION
        or suite != _SUITE
        or kdf != _KDF
        or len(nonce_prefix) != _NONCE_PREFIX_SIZE
    ):
        raise DecryptionFailedError('Unsupported encryption header.')

    aead = ChaCha20Poly1305(_derive_file_key(key, salt))
    max_length = chunk_size + _TAG_SIZE

    ciphertext = _read_chunk(in_f, max_length)
    if ciphertext is None:
        raise DecryptionFailedError('Missing ciphertext.')

    index = 0
    while ciphertext is not None:
        following = _read_chunk(in_f, max_length)
        marker = _FINAL_CHUNK if following is None else _MIDDLE_CHUNK
        try:
            plaintext = aead.decrypt(
                _nonce(nonce_prefix, index),
                ciphertext,
                aad + marker,
            )
        except InvalidTag as exc:
            raise DecryptionFailedError from exc
        out_f.write(plaintext)
        ciphertext = following
        index += 1


def envelope_plaintext_size(stream: BinaryIO) -> int:
    """Compute the plaintext size of an envelope without decrypting.

    The stream position is restored.

    Args:
        stream: Seekable stream positioned at the envelope start.

    Returns:
        Plaintext size in bytes.
    """
    position = stream.tell()
    try:
        header, _aad = _read_header(stream)
        max_length = _header_chunk_size(header) + _TAG_SIZE
        total = 0
        while True:
            length_bytes = stream.read(_CHUNK_LENGTH.size)
            if len(length_bytes) != _CHUNK_LENGTH.size:
                break
            (length,) = _CHUNK_LENGTH.unpack(length_bytes)
            if length < _TAG_SIZE or length > max_length:
                raise DecryptionFailedError('Invalid chunk length.')
            total += length - _TAG_SIZE
            stream.seek(length, os.SEEK_CUR)
    finally:
        stream.seek(position)
    return total


def _spool() -> BinaryIO:
    spooled = tempfile.SpooledTemporaryFile(max_size=SPOOL_MAX_SIZE)
    return spooled  # type: ignore[return-value]


@final
class ContentCodec:
    """Encryption codec configured by a key and an enabled flag.

    With a key and the flag on, ``encrypt_stream``/``decrypt_stream``
    transform content that is not already in the requested state.
    Without a key or with the flag off both are byte-identity pass
    throughs, while ``is_encrypted`` keeps detecting envelopes.

    Every transform reads the input from its start and leaves it open;
    it returns a new stream positioned at 0 that the caller closes.
    """

    def __init__(
        self,
        key: str | None,
        enabled: bool,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        """Initialize codec.

        Args:
            key: Configured encryption key, if any.
            enabled: Whether the instance encrypts content.
            chunk_size: Plaintext chunk size for new envelopes.
        """
        self._key = key.encode('utf-8') if key else None
        self._enabled = enabled and self._key is not None
        self._chunk_size = chunk_size

    @classmethod
    def from_config(cls, config: InstanceConfig) -> 'ContentCodec':
        """Build the codec of an instance."""
        return cls(config.encryption_key, config.use_encryption)

    @property
    def enabled(self) -> bool:
        """Check if the codec transforms content."""
        return self._enabled

    def is_encrypted(self, stream: BinaryIO) -> bool:
        """Check whether a stream holds encrypted content.

        The stream is checked from its start and rewound to it.
        """
        stream.seek(0)
        return has_envelope(stream)

    def encrypt_stream(self, stream: BinaryIO) -> BinaryIO:
        """Return an encrypted view of ``stream``.

        Content already encrypted is passed through unchanged.
        """
        output = _spool()
        try:
            if self._enabled and not self.is_encrypted(stream):
                encrypt_to(
                    stream,
                    output,
                    key=self._key,  # type: ignore[arg-type]
                    chunk_size=self._chunk_size,
                )
            else:
                _copy(stream, output)
        except BaseException:
            output.close()
            raise
        output.seek(0)
        return output

    def decrypt_stream(self, stream: BinaryIO) -> BinaryIO:
        """Return a decrypted view of ``stream``.

        Plain content is passed through unchanged.

        Raises:
            DecryptionFailedError: If the envelope does not authenticate.
        """
        output = _spool()
        try:
            if self._enabled and self.is_encrypted(stream):
                stream.seek(0)
                decrypt_to(
                    stream,
                    output,
                    key=self._key,  # type: ignore[arg-type]
                )
            else:
                _copy(stream, output)
        except BaseException:
            output.close()
            raise
        output.seek(0)
        return output

    def encrypt_bytes(self, data: bytes) -> bytes:
        """Encrypt an in-memory payload."""
        with _bytes_stream(data) as source, self.encrypt_stream(source) as out:
            return out.read()

    def decrypt_bytes(self, data: bytes) -> bytes:
        """Decrypt an in-memory payload."""
        with _bytes_stream(data) as source, self.decrypt_stream(source) as out:
            return out.read()

    def content_size(self, stream: BinaryIO) -> int:
        """Get the plaintext size of a stream's content.

        Args:
            stream: Seekable stream, rewound to its start afterwards.

        Returns:
            Envelope plaintext size, or the raw size for plain content.
        """
        if self.is_encrypted(stream):
            try:
                return envelope_plaintext_size(stream)
            finally:
                stream.seek(0)
        size = stream.seek(0, os.SEEK_END)
        stream.seek(0)
        return size

    def save_stream_to_file(self, stream: BinaryIO, path: str) -> None:
        """Persist a stream to ``path``, replacing any existing file.

        Content is written to a temporary sibling that replaces the
        target only once complete, so a failure leaves no partial file.

        Args:
            stream: Stream to drain from its start.
            path: Destination physical path.
        """
        temp_path, handle = _create_sibling(os.path.dirname(path) or os.curdir)
        try:
            with handle:
                _copy(stream, handle)
            if os.path.isfile(path):
                shutil.copymode(path, temp_path)
            os.replace(temp_path, path)
        except BaseException:
            logger.exception('Failed to save file: %s', path)
            if os.path.exists(temp_path):
                os.unlink(temp_path)
            raise
        logger.debug('Saved file: %s', path)


def _create_sibling(directory: str) -> tuple[str, BinaryIO]:
    """Create an empty temporary file in ``directory``.

    The file gets the regular creation mode (0o666 minus the umask),
    so it keeps ordinary permissions once it replaces its target.
    """
    while True:
        candidate = os.path.join(
            directory,
            _TEMP_PREFIX + secrets.token_hex(_TEMP_TOKEN_BYTES),
        )
        try:
            descriptor = os.open(candidate, _TEMP_FLAGS, _NEW_FILE_MODE)
        except FileExistsError:
            continue
        return candidate, os.fdopen(descriptor, 'wb')

def _copy(source: BinaryIO, destination: BinaryIO) -> None:
    source.seek(0)
    shutil.copyfileobj(source, destination, _COPY_BUFFER_SIZE)


def _bytes_stream(data: bytes) -> BinaryIO:
    stream = _spool()
    stream.write(data)
    stream.seek(0)
    return stream
