"""Tests for metadata extraction utilities."""

import pytest

from server.apps.filemanager.infrastructure.metadata import (
    detect_mime_type,
    format_size,
    format_timestamp,
    get_disposition,
    get_file_extension,
    get_icon_key,
    is_binary,
    is_image,
    strip_null_bytes,
)


class TestDetectMimeType:
    """Tests for detect_mime_type function."""

    @pytest.mark.parametrize(('filename', 'expected'), [
        ('report.pdf', 'application/pdf'),
        ('notes.txt', 'text/plain'),
        ('photo.PNG', 'image/png'),
        ('unknown.zzzunknown', 'application/octet-stream'),
        ('no_extension', 'application/octet-stream'),
    ])
    def test_detects_from_extension(self, filename, expected):
        """Test MIME detection from the file name."""
        assert detect_mime_type(filename) == expected


class TestGetDisposition:
    """Tests for get_disposition function."""

    @pytest.mark.parametrize('mime_type', [
        'text/plain',
        'image/png',
        'application/pdf',
    ])
    def test_viewable_types_inline(self, mime_type):
        """Test that text, images and PDFs are viewed inline."""
        assert get_disposition(mime_type, view=True) == 'inline'

    def test_other_types_attachment(self):
        """Test that other types are downloaded even when viewed."""
        assert get_disposition('application/zip', view=True) == 'attachment'

    def test_download_always_attachment(self):
        """Test that downloads are attachments."""
        assert get_disposition('image/png', view=False) == 'attachment'


class TestFormatSize:
    """Tests for format_size function."""

    @pytest.mark.parametrize(('size', 'expected'), [
        (0, '0 B'),
        (512, '512 B'),
        (1024, '1 KB'),
        (1536, '1.5 KB'),
        (1024 * 1024, '1 MB'),
        (5 * 1024 ** 3, '5 GB'),
    ])
    def test_human_readable(self, size, expected):
        """Test human-readable sizes."""
        assert format_size(size) == expected


class TestIsBinary:
    """Tests for is_binary function."""

    @pytest.mark.parametrize('sample', [
        b'',
        b'hello\nworld\t!',
        'zażółć gęślą jaźń'.encode(),
        b'text with \x00 embedded null',
    ])
    def test_text(self, sample):
        """Test that text samples are not binary."""
        assert not is_binary(sample)

    def test_binary(self):
        """Test that control bytes mark binary data."""
        assert is_binary(b'\x01\x02\x03\x04')


def test_strip_null_bytes():
    """Test NUL removal."""
    assert strip_null_bytes('a\x00b\x00') == 'ab'


def test_get_file_extension():
    """Test extension extraction."""
    assert get_file_extension('Archive.TAR') == 'tar'
    assert get_file_extension('README') == ''


@pytest.mark.parametrize(('filename', 'expected'), [
    ('a.7z', 'zip'),
    ('b.jsx', 'js'),
    ('c.cshtml', 'html'),
    ('d.MP3', 'mp3'),
    ('e.xyz', 'file'),
])
def test_get_icon_key(filename, expected):
    """Test icon keys for non-image previews."""
    assert get_icon_key(filename) == expected


def test_is_image():
    """Test image extension detection."""
    assert is_image('photo.JPEG')
    assert not is_image('doc.pdf')


def test_format_timestamp():
    """Test ISO 8601 UTC timestamps."""
    assert format_timestamp(0) == '1970-01-01T00:00:00+00:00'
