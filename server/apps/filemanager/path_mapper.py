"""Path translation between virtual paths and physical paths.

Virtual paths are what callers see: /documents/report.pdf
Physical paths live under the instance root: /srv/files/documents/report.pdf

Every physical path produced for a caller-supplied virtual path is
confined to the instance root. Callers decide, from the tagged
ResolveResult, whether to fall back to the root or to fail.
"""

import dataclasses
import enum
import logging
import os
from typing import Final, final

from server.apps.filemanager.entities import InstanceConfig
from server.apps.filemanager.exceptions import InvalidRootError

logger = logging.getLogger(__name__)

# Separator of virtual paths
_PATH_SEPARATOR: Final = '/'

_ROOT_PATH: Final = '/'


class ResolveStatus(enum.Enum):
    """Outcome of resolving a virtual path."""

    OK = 'ok'
    NOT_FOUND = 'not_found'
    OUTSIDE_ROOT = 'outside_root'


class ItemKind(enum.Enum):
    """Kind of item a resolution expects to find."""

    ANY = 'any'
    FILE = 'file'
    DIRECTORY = 'directory'


@final
@dataclasses.dataclass(frozen=True, slots=True)
class ResolveResult:
    """Tagged result of PathMapper.resolve.

    ``physical_path`` is set for OK and NOT_FOUND (the confined path that
    does not exist yet) and is None for OUTSIDE_ROOT.
    """

    status: ResolveStatus
    physical_path: str | None = None

    @property
    def ok(self) -> bool:
        """Check if the path resolved to an existing item."""
        return self.status is ResolveStatus.OK


@final
class PathMapper:
    """Translates between virtual paths and physical paths of one root."""

    def __init__(self, root_path: str) -> None:
        """Initialize path mapper with the physical root.

        Args:
            root_path: Physical root directory of the instance.
        """
        self._root = os.path.realpath(root_path)

    @classmethod
    def for_config(cls, config: InstanceConfig) -> 'PathMapper':
        """Create a mapper for an instance whose root must exist.

        Args:
            config: Instance configuration.

        Returns:
            PathMapper bound to the instance root.

        Raises:
            InvalidRootError: If the root directory no longer exists.
        """
        if not config.root_path or not os.path.isdir(config.root_path):
            logger.warning(
                'Root of instance %s is missing: %s',
                config.instance_id,
                config.root_path,
            )
            raise InvalidRootError
        return cls(config.root_path)

    @property
    def root_path(self) -> str:
        """Get the normalized physical root."""
        return self._root

    def to_physical_path(self, virtual_path: str | None) -> str:
        """Convert a virtual path to a normalized physical path.

        Both separators are accepted; empty segments and ``.`` are
        dropped and ``..`` is collapsed. The result is NOT checked for
        confinement, use ``resolve`` for caller-supplied paths.

        Args:
            virtual_path: Caller-visible path (e.g., /documents/file.pdf).

        Returns:
            Normalized physical path.
        """
        normalized = (virtual_path or '').replace('\\', _PATH_SEPARATOR)
        parts = [
            part
            for part in normalized.split(_PATH_SEPARATOR)
            if part not in {'', '.'}
        ]
        return os.path.normpath(os.path.join(self._root, *parts))

    def to_virtual_path(self, physical_path: str) -> str:
        """Convert a physical path under the root to a virtual path.

        Args:
            physical_path: Physical path (e.g., /srv/files/docs/file).

        Returns:
            Virtual path (e.g., /docs/file). Paths outside the root
            map to the virtual root.
        """
        relative = os.path.relpath(os.path.normpath(physical_path), self._root)
        if relative == os.curdir or relative.startswith(os.pardir):
            return _ROOT_PATH
        return _PATH_SEPARATOR + relative.replace(os.sep, _PATH_SEPARATOR)

    def is_inside_root(self, physical_path: str) -> bool:
        """Check that a physical path is the root or one of its descendants.

        Symlinks are followed, so a link pointing outside the root is
        reported as outside.

        Args:
            physical_path: Physical path to check.

        Returns:
            True if the path is confined to the root.
        """
        candidate = os.path.normcase(os.path.realpath(physical_path))
        root = os.path.normcase(self._root)
        if candidate == root:
            return True
        return candidate.startswith(root.rstrip(os.sep) + os.sep)

    def is_root(self, physical_path: str) -> bool:
        """Check if a physical path is the root itself."""
        root = os.path.normcase(self._root)
        return os.path.normcase(os.path.realpath(physical_path)) == root

    def resolve(
        self,
        virtual_path: str | None,
        kind: ItemKind = ItemKind.ANY,
    ) -> ResolveResult:
        """Resolve a caller-supplied virtual path.

        Args:
            virtual_path: Caller-visible path.
            kind: Kind of item expected at the path.

        Returns:
            OK with the physical path, NOT_FOUND with the confined
            physical path, or OUTSIDE_ROOT.
        """
        if virtual_path and '\x00' in virtual_path:
            logger.warning('Path with NUL byte rejected: %r', virtual_path)
            return ResolveResult(ResolveStatus.OUTSIDE_ROOT)

        physical_path = self.to_physical_path(virtual_path)
        if not self.is_inside_root(physical_path):
            logger.warning(
                'Path escapes root and was rejected: %s',
                virtual_path,
            )
            return ResolveResult(ResolveStatus.OUTSIDE_ROOT)

        if not _exists_as(physical_path, kind):
            logger.debug('Path not found: %s', virtual_path)
            return ResolveResult(ResolveStatus.NOT_FOUND, physical_path)

        return ResolveResult(ResolveStatus.OK, physical_path)

    def resolve_folder(self, virtual_path: str | None) -> str:
        """Resolve a folder, falling back to the root.

        Args:
            virtual_path: Caller-visible folder path.

        Returns:
            Physical path of the folder, or of the root when the path is
            outside the root or is not an existing directory.
        """
        result = self.resolve(virtual_path, ItemKind.DIRECTORY)
        if result.ok and result.physical_path is not None:
            return result.physical_path
        return self._root


def _exists_as(physical_path: str, kind: ItemKind) -> bool:
    if kind is ItemKind.FILE:
        return os.path.isfile(physical_path)
    if kind is ItemKind.DIRECTORY:
        return os.path.isdir(physical_path)
    return os.path.exists(physical_path)
