"""Business logic layer for filemanager app.

This package contains all business logic for file operations:
- Folder listing and search
- Create, delete, rename, copy, move and in-place edits
- Encryption of files at rest, zip and unzip
- Quota checks, naming collisions and the recycle bin

Every function receives an InstanceConfig and resolves caller paths
through the PathMapper before touching the file system.
"""
