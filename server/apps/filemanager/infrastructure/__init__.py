"""Infrastructure layer for filemanager app.

This package contains integrations with the file system:
- Encryption envelope and content codec
- Metadata extraction (MIME type, sizes, binary sniffing)

Keep infrastructure concerns separate from business logic.
"""
