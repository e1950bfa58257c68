"""Registry of configured file manager instances.

Each instance is identified by an id and carries its own root,
quotas and encryption settings. The registry is shared by every
concurrent operation; writers swap in a new mapping under a lock
while readers only take a reference to the current one.
"""

import logging
import os
import threading
from types import MappingProxyType
from typing import final

from server.apps.filemanager.entities import InstanceConfig
from server.apps.filemanager.exceptions import InvalidRootError

logger = logging.getLogger(__name__)


@final
class InstanceRegistry:
    """Thread-safe instance id -> InstanceConfig store."""

    def __init__(self) -> None:
        """Initialize an empty registry."""
        self._lock = threading.Lock()
        self._configs: MappingProxyType[str, InstanceConfig] = (
            MappingProxyType({})
        )

    def register(self, config: InstanceConfig) -> InstanceConfig:
        """Create or replace the configuration of an instance.

        Creates the physical root directory when it does not exist yet.

        Args:
            config: Configuration to store.

        Returns:
            The stored configuration.

        Raises:
            ValueError: If the instance id or root path is empty.
        """
        if not config.instance_id or not config.instance_id.strip():
            raise ValueError('Instance id cannot be empty')
        if not config.root_path:
            raise ValueError('Root path cannot be empty')

        os.makedirs(config.root_path, exist_ok=True)

        with self._lock:
            updated = dict(self._configs)
            replaced = config.instance_id in updated
            updated[config.instance_id] = config
            self._configs = MappingProxyType(updated)

        logger.info(
            'Instance %s %s (root: %s)',
            config.instance_id,
            'updated' if replaced else 'registered',
            config.root_path,
        )
        return config

    def unregister(self, instance_id: str) -> bool:
        """Remove an instance.

        Args:
            instance_id: Identifier of the instance.

        Returns:
            True if the instance was registered, False otherwise.
        """
        with self._lock:
            if instance_id not in self._configs:
                return False
            updated = dict(self._configs)
            del updated[instance_id]
            self._configs = MappingProxyType(updated)

        logger.info('Instance %s unregistered', instance_id)
        return True

    def get(self, instance_id: str) -> InstanceConfig:
        """Look up the configuration of an instance.

        Args:
            instance_id: Identifier of the instance.

        Returns:
            The instance configuration.

        Raises:
            InvalidRootError: If the instance is unknown.
        """
        config = self._configs.get(instance_id)
        if config is None:
            logger.warning('Unknown instance requested: %s', instance_id)
            raise InvalidRootError
        return config

    def instance_ids(self) -> list[str]:
        """Get ids of all registered instances, sorted."""
        return sorted(self._configs)

    def __contains__(self, instance_id: object) -> bool:
        return instance_id in self._configs

    def __len__(self) -> int:
        return len(self._configs)
