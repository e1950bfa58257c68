"""Command processor: the engine facade used by a dispatcher.

The dispatcher decodes a request into a command kind plus already
parsed parameters (snake_case keys) and hands them to
``CommandProcessor.process``. Failures come back as
``{'error': message}`` with the physical root scrubbed from the message.
"""

import asyncio
import logging
import os
from collections.abc import Callable, Mapping
from typing import Any, Final, final

from server.apps.filemanager.entities import Command, InstanceConfig
from server.apps.filemanager.exceptions import (
    CommandDisabledError,
    FileManagerError,
    UnknownCommandError,
    scrub_message,
)
from server.apps.filemanager.logic import (
    archive_operations,
    file_operations,
    listing,
)
from server.apps.filemanager.registry import InstanceRegistry

logger = logging.getLogger(__name__)

_OK_RESULT: Final = 'OK'

_Params = Mapping[str, Any]
_Handler = Callable[[InstanceConfig, _Params], Any]


def _items(params: _Params) -> list[str]:
    items = params.get('items')
    if items is None:
        return []
    if isinstance(items, str):
        return [items]
    return list(items)


def _chunk_index(params: _Params) -> int | None:
    value = params.get('chunk_index')
    if value is None or value == '':
        return None
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise FileManagerError(f'Invalid chunk index: {value!r}.') from exc


def _list(config: InstanceConfig, params: _Params) -> dict[str, Any]:
    return listing.get_content(config, params.get('path')).to_dict()


def _search(config: InstanceConfig, params: _Params) -> dict[str, Any]:
    return listing.search(
        config,
        params.get('path'),
        params.get('query'),
    ).to_dict()


def _new_folder(config: InstanceConfig, params: _Params) -> dict[str, Any]:
    return file_operations.create_folder(
        config,
        params.get('path'),
        params.get('folder_name'),
    ).to_dict()


def _new_file(config: InstanceConfig, params: _Params) -> dict[str, Any]:
    return file_operations.create_file(
        config,
        params.get('path'),
        params.get('file_name'),
    ).to_dict()


def _delete(config: InstanceConfig, params: _Params) -> dict[str, Any]:
    return file_operations.delete_items(
        config,
        params.get('path'),
        _items(params),
    ).to_dict()


def _rename(config: InstanceConfig, params: _Params) -> dict[str, Any]:
    return file_operations.rename_items(
        config,
        params.get('path'),
        _items(params),
        params.get('new_name'),
    ).to_dict()


def _encrypt(config: InstanceConfig, params: _Params) -> dict[str, Any]:
    return file_operations.encrypt_items(
        config,
        params.get('path'),
        _items(params),
    ).to_dict()


def _decrypt(config: InstanceConfig, params: _Params) -> dict[str, Any]:
    return file_operations.decrypt_items(
        config,
        params.get('path'),
        _items(params),
    ).to_dict()


def _zip(config: InstanceConfig, params: _Params) -> dict[str, Any]:
    return archive_operations.zip_items(
        config,
        params.get('path'),
        _items(params),
        params.get('file_name'),
    ).to_dict()


def _unzip(config: InstanceConfig, params: _Params) -> dict[str, Any]:
    return archive_operations.unzip_items(
        config,
        params.get('path'),
        _items(params),
    ).to_dict()


def _copy(config: InstanceConfig, params: _Params) -> dict[str, Any]:
    return file_operations.copy_items(
        config,
        params.get('path'),
        _items(params),
    ).to_dict()


def _cut(config: InstanceConfig, params: _Params) -> dict[str, Any]:
    return file_operations.cut_items(
        config,
        params.get('path'),
        _items(params),
    ).to_dict()


def _edit(config: InstanceConfig, params: _Params) -> dict[str, str]:
    file_operations.edit_file(
        config,
        params.get('file_path'),
        params.get('data'),
    )
    return {'message': _OK_RESULT}


def _download(config: InstanceConfig, params: _Params) -> Any:
    return file_operations.download_file(config, params.get('file_path'))


def _view(config: InstanceConfig, params: _Params) -> Any:
    return file_operations.download_file(
        config,
        params.get('file_path'),
        view=True,
    )


def _get_file_text(config: InstanceConfig, params: _Params) -> Any:
    return file_operations.get_file_text(config, params.get('file_path'))


def _upload(config: InstanceConfig, params: _Params) -> dict[str, str]:
    file_operations.upload_file(
        config,
        params.get('path'),
        params.get('file_name'),
        params.get('content') or b'',
        chunk_index=_chunk_index(params),
    )
    return {'message': _OK_RESULT}


def _preview(config: InstanceConfig, params: _Params) -> Any:
    return file_operations.preview_file(config, params.get('file_path'))


_HANDLERS: Final[dict[Command, _Handler]] = {
    Command.LIST: _list,
    Command.SEARCH: _search,
    Command.NEW_FOLDER: _new_folder,
    Command.NEW_FILE: _new_file,
    Command.DELETE: _delete,
    Command.RENAME: _rename,
    Command.ENCRYPT: _encrypt,
    Command.DECRYPT: _decrypt,
    Command.ZIP: _zip,
    Command.UNZIP: _unzip,
    Command.COPY: _copy,
    Command.CUT: _cut,
    Command.EDIT: _edit,
    Command.DOWNLOAD: _download,
    Command.VIEW: _view,
    Command.GET_FILE_TEXT: _get_file_text,
    Command.UPLOAD: _upload,
    Command.PREVIEW: _preview,
}


def parse_command(command: str | Command) -> Command:
    """Parse an operation kind.

    Args:
        command: Command value (e.g., 'new-folder').

    Returns:
        The matching Command.

    Raises:
        UnknownCommandError: If the value is not a known command.
    """
    try:
        return Command(command)
    except ValueError as exc:
        raise UnknownCommandError from exc


@final
class CommandProcessor:
    """Runs commands against the instances of a registry."""

    def __init__(self, registry: InstanceRegistry) -> None:
        """Initialize processor.

        Args:
            registry: Registry resolving instance ids to configurations.
        """
        self._registry = registry

    def process(
        self,
        instance_id: str,
        command: str | Command,
        params: _Params | None = None,
    ) -> Any:
        """Run one command.

        Args:
            instance_id: Identifier of the instance.
            command: Operation kind.
            params: Already parsed parameters of the operation.

        Returns:
            A listing dict, ``{'message': 'OK'}``, a FileDownload,
            FileText or FilePreview; ``{'error': message}`` on failure.
        """
        config: InstanceConfig | None = None
        try:
            config = self._registry.get(instance_id)
            kind = parse_command(command)
            if config.is_disabled(kind):
                logger.warning(
                    'Disabled command %s requested for instance %s',
                    kind,
                    instance_id,
                )
                raise CommandDisabledError
            logger.debug('Running %s for instance %s', kind, instance_id)
            return _HANDLERS[kind](config, params or {})
        except FileManagerError as error:
            logger.info(
                'Command %s failed for instance %s: %s',
                command,
                instance_id,
                error.message,
            )
            return {'error': _scrub(error.message, config)}
        except OSError as error:
            logger.exception(
                'Command %s failed for instance %s',
                command,
                instance_id,
            )
            return {'error': _scrub(str(error), config)}

    async def aprocess(
        self,
        instance_id: str,
        command: str | Command,
        params: _Params | None = None,
    ) -> Any:
        """Run one command on a worker thread."""
        return await asyncio.to_thread(
            self.process,
            instance_id,
            command,
            params,
        )


def _scrub(message: str, config: InstanceConfig | None) -> str:
    if config is None:
        return message
    # The mapper works on the resolved root, callers configure the raw one
    message = scrub_message(message, os.path.realpath(config.root_path))
    return scrub_message(message, config.root_path)
