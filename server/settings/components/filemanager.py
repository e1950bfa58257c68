"""File manager defaults applied to every instance without overrides."""

from server.settings.components import config

# Total storage per instance root, in megabytes (0 = unlimited)
FILEMANAGER_STORAGE_MAX_SIZE_MB = config(
    'FILEMANAGER_STORAGE_MAX_SIZE_MB',
    cast=int,
    default=1024,
)

# Bytes processed by a single zip/unzip, in megabytes (0 = unlimited)
FILEMANAGER_COMPRESSION_MAX_SIZE_MB = config(
    'FILEMANAGER_COMPRESSION_MAX_SIZE_MB',
    cast=int,
    default=256,
)

FILEMANAGER_MAX_UPLOAD_SIZE_MB = config(
    'FILEMANAGER_MAX_UPLOAD_SIZE_MB',
    cast=int,
    default=256,
)

# Comma separated extensions, e.g. ".pdf,.png" (empty = accept all)
FILEMANAGER_ACCEPTED_FILES = config(
    'FILEMANAGER_ACCEPTED_FILES',
    default='',
)

FILEMANAGER_ENCRYPTION_KEY = config(
    'FILEMANAGER_ENCRYPTION_KEY',
    default=None,
)

FILEMANAGER_USE_ENCRYPTION = config(
    'FILEMANAGER_USE_ENCRYPTION',
    cast=bool,
    default=False,
)

# Deflate level, 0 (fastest) to 9 (best compression)
FILEMANAGER_COMPRESSION_LEVEL = config(
    'FILEMANAGER_COMPRESSION_LEVEL',
    cast=int,
    default=6,
)

FILEMANAGER_USE_RECYCLE_BIN = config(
    'FILEMANAGER_USE_RECYCLE_BIN',
    cast=bool,
    default=True,
)

# Batch operations raise on the first failing item instead of the last
FILEMANAGER_STOP_ON_ERROR = config(
    'FILEMANAGER_STOP_ON_ERROR',
    cast=bool,
    default=False,
)
