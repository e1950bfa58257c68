"""Tests for the content encryption codec."""

import io
import os
import stat
import struct

import pytest

from server.apps.filemanager.exceptions import DecryptionFailedError
from server.apps.filemanager.infrastructure.encryption import (
    MAGIC,
    ContentCodec,
)

# Envelope bytes of one 16-byte chunk: u32 length + ciphertext + tag
_SMALL_CHUNK_SIZE = 16
_CHUNK_RECORD_SIZE = 4 + _SMALL_CHUNK_SIZE + 16


class TestRoundTrip:
    """Tests for encrypt/decrypt round trips."""

    @pytest.mark.parametrize('data', [
        b'',
        b'hello world',
        b'\x00' * 100,
        os.urandom(200 * 1024),
    ])
    def test_decrypt_restores_plaintext(self, codec, data):
        """Test that decrypt(encrypt(x)) == x."""
        encrypted = codec.encrypt_bytes(data)

        assert codec.decrypt_bytes(encrypted) == data

    def test_exact_chunk_multiple(self):
        """Test data that fills whole chunks."""
        codec = ContentCodec('key', enabled=True, chunk_size=_SMALL_CHUNK_SIZE)
        data = os.urandom(_SMALL_CHUNK_SIZE * 4)

        assert codec.decrypt_bytes(codec.encrypt_bytes(data)) == data

    def test_encryption_is_randomized(self, codec):
        """Test that equal plaintexts produce different envelopes."""
        assert codec.encrypt_bytes(b'same') != codec.encrypt_bytes(b'same')


class TestSniffing:
    """Tests for is_encrypted."""

    def test_encrypted_content_detected(self, codec):
        """Test that envelopes are recognized from their leading bytes."""
        encrypted = codec.encrypt_bytes(b'secret')

        assert encrypted.startswith(MAGIC)
        assert codec.is_encrypted(io.BytesIO(encrypted))

    @pytest.mark.parametrize('data', [
        b'',
        b'plain text',
        b'PK\x03\x04 zip-like',
        MAGIC[:2],
    ])
    def test_plaintext_not_detected(self, codec, data):
        """Test that arbitrary plaintext is not taken for an envelope."""
        assert not codec.is_encrypted(io.BytesIO(data))

    def test_sniff_rewinds_stream(self, codec):
        """Test that sniffing leaves the stream at its start."""
        stream = io.BytesIO(codec.encrypt_bytes(b'secret'))
        stream.seek(5)

        codec.is_encrypted(stream)

        assert stream.tell() == 0

    def test_sniff_works_without_key(self, codec):
        """Test that a disabled codec still detects envelopes."""
        encrypted = codec.encrypt_bytes(b'secret')

        assert ContentCodec(None, enabled=False).is_encrypted(
            io.BytesIO(encrypted),
        )


class TestStateAwareTransforms:
    """Tests for transforms that only act when the state changes."""

    def test_encrypt_is_idempotent(self, codec):
        """Test that encrypted content is not encrypted twice."""
        encrypted = codec.encrypt_bytes(b'secret')

        assert codec.encrypt_bytes(encrypted) == encrypted

    def test_decrypt_plaintext_passes_through(self, codec):
        """Test that plain content is returned unchanged."""
        assert codec.decrypt_bytes(b'plain') == b'plain'

    @pytest.mark.parametrize(('key', 'enabled'), [
        (None, True),
        ('', True),
        ('key', False),
    ])
    def test_disabled_codec_is_identity(self, key, enabled):
        """Test the pass-through variant."""
        codec = ContentCodec(key, enabled=enabled)

        assert codec.enabled is False
        assert codec.encrypt_bytes(b'data') == b'data'
        assert codec.decrypt_bytes(b'data') == b'data'

    def test_disabled_codec_leaves_envelopes_alone(self, codec):
        """Test that foreign envelopes survive a disabled codec."""
        encrypted = codec.encrypt_bytes(b'secret')

        disabled = ContentCodec(None, enabled=False)

        assert disabled.decrypt_bytes(encrypted) == encrypted


class TestIntegrity:
    """Tests for authentication failures."""

    def test_wrong_key(self, codec):
        """Test that another key cannot decrypt."""
        encrypted = codec.encrypt_bytes(b'secret')

        with pytest.raises(DecryptionFailedError):
            ContentCodec('other-key', enabled=True).decrypt_bytes(encrypted)

    def test_tampered_ciphertext(self, codec):
        """Test that flipped bits are detected."""
        encrypted = bytearray(codec.encrypt_bytes(b'secret message'))
        encrypted[-1] ^= 0x01

        with pytest.raises(DecryptionFailedError):
            codec.decrypt_bytes(bytes(encrypted))

    def test_dropped_final_chunk(self):
        """Test that truncation at a chunk boundary is detected."""
        codec = ContentCodec('key', enabled=True, chunk_size=_SMALL_CHUNK_SIZE)
        encrypted = codec.encrypt_bytes(os.urandom(_SMALL_CHUNK_SIZE * 4))

        with pytest.raises(DecryptionFailedError):
            codec.decrypt_bytes(encrypted[:-_CHUNK_RECORD_SIZE])

    def test_header_only(self):
        """Test that an envelope without chunks is rejected."""
        codec = ContentCodec('key', enabled=True, chunk_size=_SMALL_CHUNK_SIZE)
        encrypted = codec.encrypt_bytes(os.urandom(_SMALL_CHUNK_SIZE))

        with pytest.raises(DecryptionFailedError):
            codec.decrypt_bytes(encrypted[:-_CHUNK_RECORD_SIZE])

    @pytest.mark.parametrize('header', [
        b'{"chunk_size": null}',
        b'{"chunk_size": "abc"}',
        b'{"chunk_size": 1e400}',
        b'{"chunk_size": true}',
    ])
    def test_unusable_chunk_size(self, codec, header):
        """Test that a malformed chunk size is an integrity failure."""
        data = MAGIC + struct.pack('>H', len(header)) + header + b'rest'

        with pytest.raises(DecryptionFailedError):
            codec.content_size(io.BytesIO(data))
        with pytest.raises(DecryptionFailedError):
            codec.decrypt_bytes(data)


class TestStreams:
    """Tests for stream positions, sizes and persistence."""

    def test_transform_returns_rewound_stream(self, codec):
        """Test that outputs start at 0 and inputs stay open."""
        source = io.BytesIO(b'abc')

        with codec.encrypt_stream(source) as encrypted:
            assert encrypted.tell() == 0
            assert not source.closed
            assert codec.is_encrypted(encrypted)

    def test_content_size(self, codec):
        """Test plaintext size without decrypting."""
        data = os.urandom(150 * 1024)
        encrypted = codec.encrypt_bytes(data)

        assert codec.content_size(io.BytesIO(encrypted)) == len(data)
        assert codec.content_size(io.BytesIO(data)) == len(data)

    def test_save_stream_to_file(self, codec, tmp_path):
        """Test persisting a stream."""
        target = tmp_path / 'a.bin'

        codec.save_stream_to_file(io.BytesIO(b'content'), str(target))

        assert target.read_bytes() == b'content'
        assert [path.name for path in tmp_path.iterdir()] == ['a.bin']

    def test_save_failure_leaves_no_file(self, codec, tmp_path):
        """Test that a failed write leaves nothing behind."""

        class FailingStream(io.BytesIO):
            def read(self, size=-1):
                raise OSError('read failed')

        with pytest.raises(OSError, match='read failed'):
            codec.save_stream_to_file(FailingStream(), str(tmp_path / 'a'))

        assert list(tmp_path.iterdir()) == []

    def test_new_file_mode_follows_umask(self, codec, tmp_path):
        """Test that saved files get the regular creation mode."""
        target = tmp_path / 'a.bin'
        previous = os.umask(0o022)
        try:
            codec.save_stream_to_file(io.BytesIO(b'content'), str(target))
        finally:
            os.umask(previous)

        assert stat.S_IMODE(target.stat().st_mode) == 0o644

    def test_replaced_file_keeps_mode(self, codec, tmp_path):
        """Test that replacing a file keeps its permissions."""
        target = tmp_path / 'a.bin'
        target.write_bytes(b'old')
        target.chmod(0o640)

        codec.save_stream_to_file(io.BytesIO(b'new'), str(target))

        assert target.read_bytes() == b'new'
        assert stat.S_IMODE(target.stat().st_mode) == 0o640
