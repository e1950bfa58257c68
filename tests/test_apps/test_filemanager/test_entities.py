"""Tests for filemanager value objects."""

import io

import pytest

from server.apps.filemanager.entities import (
    Command,
    FileDownload,
    FileEntry,
    FolderEntry,
    FolderListing,
    InstanceConfig,
    parse_accepted_files,
)


class TestInstanceConfig:
    """Tests for InstanceConfig."""

    @pytest.mark.parametrize(('level', 'expected'), [
        (-3, 0),
        (0, 0),
        (6, 6),
        (9, 9),
        (12, 9),
    ])
    def test_compression_level_clamped(self, root, level, expected):
        """Test that the deflate level is clamped to 0..9."""
        config = InstanceConfig('main', str(root), compression_level=level)

        assert config.compression_level == expected

    def test_accepted_files_parsed(self, root):
        """Test parsing a comma separated extension list."""
        config = InstanceConfig('main', str(root), accepted_files='.PDF, png,')

        assert config.accepted_files == ('.pdf', '.png')

    def test_disabled_commands_parsed(self, root):
        """Test that disabled commands accept plain strings."""
        config = InstanceConfig(
            'main',
            str(root),
            disabled_commands=frozenset({'delete', 'zip'}),
        )

        assert config.is_disabled(Command.DELETE)
        assert config.is_disabled(Command.ZIP)
        assert not config.is_disabled(Command.LIST)

    def test_defaults(self, root):
        """Test default limits and flags."""
        config = InstanceConfig('main', str(root))

        assert config.storage_max_size_mb == 1024
        assert config.compression_max_size_mb == 256
        assert config.max_upload_size_mb == 256
        assert config.compression_level == 6
        assert config.use_recycle_bin is True
        assert config.use_encryption is False
        assert config.stop_on_error is False

    def test_from_settings(self, root, settings):
        """Test that settings provide defaults and overrides win."""
        settings.FILEMANAGER_STORAGE_MAX_SIZE_MB = 5
        settings.FILEMANAGER_USE_RECYCLE_BIN = False
        settings.FILEMANAGER_ACCEPTED_FILES = '.txt'

        config = InstanceConfig.from_settings(
            'main',
            str(root),
            use_recycle_bin=True,
        )

        assert config.storage_max_size_mb == 5
        assert config.use_recycle_bin is True
        assert config.accepted_files == ('.txt',)


def test_parse_accepted_files_from_iterable():
    """Test parsing an iterable of extensions."""
    assert parse_accepted_files(['JPG', '.gif', '']) == ('.jpg', '.gif')


def test_listing_to_dict():
    """Test the serialized field names of a listing."""
    listing = FolderListing(
        current_path='/docs',
        folders=[FolderEntry('old', '/docs/old', 'c', 'm')],
        files=[
            FileEntry('a.txt', '/docs/a.txt', '5 B', '90 B', 'c', 'm', True),
        ],
    )

    assert listing.to_dict() == {
        'currentPath': '/docs',
        'folders': [{
            'folderName': 'old',
            'virtualPath': '/docs/old',
            'createdAt': 'c',
            'modifiedAt': 'm',
        }],
        'files': [{
            'fileName': 'a.txt',
            'virtualPath': '/docs/a.txt',
            'size': '5 B',
            'encryptedSize': '90 B',
            'createdAt': 'c',
            'modifiedAt': 'm',
            'isEncrypted': True,
        }],
    }


def test_file_download_closes_stream():
    """Test that the download owns and closes its stream."""
    stream = io.BytesIO(b'content')

    download = FileDownload(stream, 'a.pdf', 'application/pdf', 'inline')
    with download:
        assert download.read() == b'content'
        assert download.content_disposition == 'inline; filename="a.pdf"'

    assert stream.closed
