"""Shared fixtures for filemanager app tests."""

import pytest

from server.apps.filemanager.entities import InstanceConfig
from server.apps.filemanager.infrastructure.encryption import ContentCodec
from server.apps.filemanager.logic.commands import CommandProcessor
from server.apps.filemanager.registry import InstanceRegistry

INSTANCE_ID = 'main'
ENCRYPTION_KEY = 'test-encryption-key'


@pytest.fixture
def root(tmp_path):
    """Create an empty instance root.

    Returns:
        Path of the root directory.
    """
    root_path = tmp_path / 'root'
    root_path.mkdir()
    return root_path


@pytest.fixture
def make_config(root):
    """Build instance configs bound to the test root.

    Returns:
        Factory accepting InstanceConfig field overrides.
    """
    def factory(**overrides):
        return InstanceConfig(
            instance_id=INSTANCE_ID,
            root_path=str(root),
            **overrides,
        )

    return factory


@pytest.fixture
def config(make_config):
    """Plain instance config (no encryption, recycle bin on)."""
    return make_config()


@pytest.fixture
def encrypted_config(make_config):
    """Instance config encrypting content at rest."""
    return make_config(encryption_key=ENCRYPTION_KEY, use_encryption=True)


@pytest.fixture
def codec():
    """Enabled codec using the test key."""
    return ContentCodec(ENCRYPTION_KEY, enabled=True)


@pytest.fixture
def registry(config):
    """Registry holding the plain test instance."""
    instances = InstanceRegistry()
    instances.register(config)
    return instances


@pytest.fixture
def processor(registry):
    """Command processor bound to the test registry."""
    return CommandProcessor(registry)
