"""Django app configuration for filemanager app."""

import sys

if sys.version_info >= (3, 12):
    from typing import override
else:
    from typing_extensions import override

from django.apps import AppConfig

from server.apps.filemanager.registry import InstanceRegistry


class FileManagerConfig(AppConfig):
    """Configuration for filemanager app.

    Owns the process-wide instance registry so that its lifetime
    matches the application's.
    """

    default_auto_field = 'django.db.models.BigAutoField'
    name = 'server.apps.filemanager'
    label = 'filemanager'
    verbose_name = 'File Manager'

    registry: InstanceRegistry

    @override
    def ready(self) -> None:
        """Create the instance registry when app is ready."""
        self.registry = InstanceRegistry()
