"""Tests for zip archive operations."""

import io
import os
import zipfile

import pytest

from server.apps.filemanager.exceptions import (
    OperationFailedError,
    QuotaExceededError,
)
from server.apps.filemanager.infrastructure.encryption import MAGIC
from server.apps.filemanager.logic import archive_operations
from server.apps.filemanager.logic.quota_operations import BYTES_PER_MB

_LOCAL_HEADER_SIZE = 30


def _zip_bytes(entries):
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, 'w') as archive:
        for name, content in entries.items():
            archive.writestr(name, content)
    return buffer.getvalue()


def _corrupt_content(data, name):
    """Flip the first stored byte of the archive's first entry."""
    damaged = bytearray(data)
    damaged[_LOCAL_HEADER_SIZE + len(name)] ^= 0xFF
    return bytes(damaged)


def _mark_encrypted(data):
    """Set the encryption flag on the archive's first entry."""
    damaged = bytearray(data)
    flags_offset = damaged.index(b'PK\x01\x02') + 8
    damaged[flags_offset] |= 0x01
    return bytes(damaged)


def _entry_names(data):
    with zipfile.ZipFile(io.BytesIO(data)) as archive:
        return sorted(archive.namelist())


@pytest.fixture
def selection(root):
    """Folder tree and a file to archive."""
    (root / 'docs' / 'sub').mkdir(parents=True)
    (root / 'docs' / 'x.txt').write_bytes(b'x content')
    (root / 'docs' / 'sub' / 'b.bin').write_bytes(os.urandom(4096))
    (root / 'a.txt').write_bytes(b'a content')
    return root


class TestZipItems:
    """Tests for zip_items function."""

    def test_entry_names(self, config, selection):
        """Test that entries are relative to the selected item's parent."""
        listing = archive_operations.zip_items(
            config,
            '/',
            ['/docs', '/a.txt'],
            'bundle',
        )

        assert 'bundle.zip' in [entry.file_name for entry in listing.files]
        assert _entry_names((selection / 'bundle.zip').read_bytes()) == [
            'a.txt',
            'docs/sub/b.bin',
            'docs/x.txt',
        ]

    def test_nested_selection(self, config, selection):
        """Test that a nested folder keeps only its own name."""
        archive_operations.zip_items(config, '/', ['/docs/sub'], 'sub')

        names = _entry_names((selection / 'sub.zip').read_bytes())

        assert names == ['sub/b.bin']

    @pytest.mark.parametrize(('archive_name', 'expected'), [
        (None, 'archive.zip'),
        ('', 'archive.zip'),
        ('backup.ZIP', 'backup.zip'),
        (' report ', 'report.zip'),
    ])
    def test_archive_name(self, config, selection, archive_name, expected):
        """Test default names and extension handling."""
        archive_operations.zip_items(config, '/', ['/a.txt'], archive_name)

        assert (selection / expected).is_file()

    def test_name_collision(self, config, selection):
        """Test that existing archives are not overwritten."""
        (selection / 'archive.zip').write_bytes(b'old')

        archive_operations.zip_items(config, '/', ['/a.txt'], None)

        assert (selection / 'archive.zip').read_bytes() == b'old'
        assert (selection / 'archive (1).zip').is_file()

    def test_target_folder(self, config, selection):
        """Test that the archive is written to the given folder."""
        listing = archive_operations.zip_items(
            config,
            '/docs',
            ['/a.txt'],
            'a',
        )

        assert listing.current_path == '/docs'
        assert (selection / 'docs' / 'a.zip').is_file()

    def test_encrypted_archive(self, encrypted_config, selection, codec):
        """Test that entries hold plaintext inside an encrypted archive."""
        (selection / 'secret.txt').write_bytes(codec.encrypt_bytes(b'pst'))

        archive_operations.zip_items(
            encrypted_config,
            '/',
            ['/secret.txt'],
            'secret',
        )

        stored = (selection / 'secret.zip').read_bytes()
        assert stored.startswith(MAGIC)
        with zipfile.ZipFile(io.BytesIO(codec.decrypt_bytes(stored))) as zf:
            assert zf.read('secret.txt') == b'pst'

    def test_compression_ceiling(self, make_config, root):
        """Test that oversized selections are refused."""
        config = make_config(compression_max_size_mb=1)
        (root / 'big.bin').write_bytes(b'\x00' * 2 * BYTES_PER_MB)

        with pytest.raises(QuotaExceededError, match='too big to process'):
            archive_operations.zip_items(config, '/', ['/big.bin'], 'big')

        assert os.listdir(root) == ['big.bin']

    def test_quota(self, make_config, root):
        """Test that the archive estimate must fit the quota."""
        config = make_config(storage_max_size_mb=3)
        (root / 'big.bin').write_bytes(b'\x00' * 2 * BYTES_PER_MB)

        with pytest.raises(QuotaExceededError):
            archive_operations.zip_items(config, '/', ['/big.bin'], 'big')

    def test_failed_input_writes_nothing(self, config, selection, monkeypatch):
        """Test that no partial archive is written."""

        def failing_add(codec, archive, file_path, arcname):
            raise OSError('read failed')

        monkeypatch.setattr(archive_operations, '_add_entry', failing_add)

        with pytest.raises(OSError, match='read failed'):
            archive_operations.zip_items(config, '/', ['/a.txt'], 'a')

        assert not (selection / 'a.zip').exists()


class TestUnzipItems:
    """Tests for unzip_items function."""

    def test_round_trip(self, encrypted_config, selection, codec):
        """Test that extraction reproduces names and content."""
        originals = {
            'docs/x.txt': (selection / 'docs' / 'x.txt').read_bytes(),
            'docs/sub/b.bin': (
                selection / 'docs' / 'sub' / 'b.bin'
            ).read_bytes(),
            'a.txt': (selection / 'a.txt').read_bytes(),
        }
        archive_operations.zip_items(
            encrypted_config,
            '/',
            ['/docs', '/a.txt'],
            'bundle',
        )
        (selection / 'out').mkdir()

        listing = archive_operations.unzip_items(
            encrypted_config,
            '/out',
            ['/bundle.zip'],
        )

        assert listing.current_path == '/out'
        for name, content in originals.items():
            stored = (selection / 'out' / name).read_bytes()
            assert stored.startswith(MAGIC)
            assert codec.decrypt_bytes(stored) == content

    def test_overwrites_existing(self, config, root):
        """Test that extracted files replace existing ones."""
        (root / 'a.zip').write_bytes(_zip_bytes({'ok.txt': b'new'}))
        (root / 'ok.txt').write_bytes(b'old')

        archive_operations.unzip_items(config, '/', ['/a.zip'])

        assert (root / 'ok.txt').read_bytes() == b'new'

    def test_skips_escaping_entries(self, config, root, tmp_path):
        """Test that entries leaving the destination are skipped."""
        (root / 'out').mkdir()
        (root / 'a.zip').write_bytes(_zip_bytes({
            '../evil.txt': b'evil',
            'sub/../../evil2.txt': b'evil',
            'ok.txt': b'ok',
            'dir/': b'',
        }))

        archive_operations.unzip_items(config, '/out', ['/a.zip'])

        assert os.listdir(root / 'out') == ['ok.txt']
        assert not (root / 'evil.txt').exists()
        assert not (root / 'evil2.txt').exists()
        assert not (tmp_path / 'evil.txt').exists()

    def test_invalid_archive(self, config, root):
        """Test that non-zip content is reported by name."""
        (root / 'bad.zip').write_bytes(b'not a zip file')

        with pytest.raises(OperationFailedError) as exc_info:
            archive_operations.unzip_items(config, '/', ['/bad.zip'])

        assert exc_info.value.message == 'bad.zip is not a valid zip archive.'

    @pytest.mark.parametrize('damage', [
        lambda data: _corrupt_content(data, 'a.txt'),
        _mark_encrypted,
    ], ids=['bad-crc', 'encrypted-entry'])
    def test_unreadable_entry(self, config, root, damage):
        """Test that entries that cannot be read are reported by name."""
        (root / 'out').mkdir()
        (root / 'a.zip').write_bytes(
            damage(_zip_bytes({'a.txt': b'hello archive'})),
        )

        with pytest.raises(OperationFailedError) as exc_info:
            archive_operations.unzip_items(config, '/out', ['/a.zip'])

        assert exc_info.value.message == 'a.zip is not a valid zip archive.'
        assert os.listdir(root / 'out') == []

    def test_unreadable_entry_in_batch(self, config, root):
        """Test that a damaged archive does not stop the others."""
        (root / 'out').mkdir()
        (root / 'a.zip').write_bytes(
            _mark_encrypted(_zip_bytes({'a.txt': b'a'})),
        )
        (root / 'b.zip').write_bytes(_zip_bytes({'b.txt': b'b'}))

        with pytest.raises(OperationFailedError):
            archive_operations.unzip_items(
                config,
                '/out',
                ['/a.zip', '/b.zip'],
            )

        assert os.listdir(root / 'out') == ['b.txt']

    def test_folders_ignored(self, config, root):
        """Test that selected folders are not treated as archives."""
        (root / 'docs').mkdir()

        listing = archive_operations.unzip_items(config, '/', ['/docs'])

        assert [folder.folder_name for folder in listing.folders] == ['docs']

    def test_compression_ceiling(self, make_config, root):
        """Test that oversized archives are refused."""
        config = make_config(compression_max_size_mb=1)
        (root / 'a.zip').write_bytes(
            _zip_bytes({'big.bin': os.urandom(2 * BYTES_PER_MB)}),
        )

        with pytest.raises(QuotaExceededError):
            archive_operations.unzip_items(config, '/', ['/a.zip'])

        assert os.listdir(root) == ['a.zip']
