"""Configuration profiles managed by the OpenVPN 3 configuration service."""

import logging
from pathlib import Path
from typing import List

from .constants import CONFIG_INTERFACE, CONFIG_ROOT_PATH, CONFIG_SERVICE
from .errors import (
    ConfigImportError,
    ConfigRemoveError,
    FileReadError,
    InvalidRequest,
    RpcError,
)
from .models import Config, ImportRequest
from .validator import MAX_CONFIG_FILE_SIZE, require_object_path, validate_import_request

log = logging.getLogger(__name__)


class ConfigRegistry:
    """Lists, imports and removes configuration objects."""

    def __init__(self, bus):
        """Initialize the registry.

        Args:
            bus: Connected BusConnection
        """
        self._bus = bus

    async def list_configs(self) -> List[Config]:
        """Get all configurations known to the daemon.

        One extra round-trip per configuration is needed to read its
        name and use count.

        Returns:
            Configurations in the daemon's enumeration order

        Raises:
            RpcError: If the enumeration or any detail read fails
        """
        paths = await self._bus.call(
            CONFIG_SERVICE, CONFIG_ROOT_PATH, CONFIG_INTERFACE, "FetchAvailableConfigs"
        )
        configs = []
        for path in paths or []:
            configs.append(await self._fetch_config(path))
        log.debug(f"Fetched {len(configs)} configuration(s)")
        return configs

    async def _fetch_config(self, path: str) -> Config:
        name = await self._bus.get_property(CONFIG_SERVICE, path, CONFIG_INTERFACE, "name")
        used_count = await self._bus.get_property(CONFIG_SERVICE, path, CONFIG_INTERFACE, "used_count")
        try:
            return Config(path=path, name=str(name), used_count=int(used_count))
        except (TypeError, ValueError) as e:
            raise RpcError(
                f"Malformed properties on {path}: {e}", method="Get", path=path
            ) from e

    async def import_config(self, request: ImportRequest) -> str:
        """Import a configuration file into the daemon.

        Args:
            request: Name, file path and flags

        Returns:
            Object path of the new configuration

        Raises:
            InvalidRequest: If the request is malformed
            FileReadError: If the file cannot be read
            ConfigImportError: If the daemon rejects the import
        """
        valid, error = validate_import_request(request)
        if not valid:
            raise InvalidRequest(error)

        content = read_config_file(request.config_file_path)

        log.info(f"Importing configuration '{request.config_name}' from {request.config_file_path}")
        try:
            path = await self._bus.call(
                CONFIG_SERVICE,
                CONFIG_ROOT_PATH,
                CONFIG_INTERFACE,
                "Import",
                request.config_name,
                content,
                request.single_use,
                request.persistent,
                signature="ssbb",
            )
        except RpcError as e:
            log.error(f"Failed to import configuration '{request.config_name}': {e}")
            raise ConfigImportError(f"Failed to import configuration: {e}") from e

        log.info(f"Imported configuration '{request.config_name}' as {path}")
        return path

    async def remove_config(self, path: str) -> None:
        """Remove a configuration.

        Raises:
            InvalidRequest: If ``path`` is not an object path
            ConfigRemoveError: If the daemon fails to remove it
        """
        require_object_path(path, "configuration path")
        try:
            await self._bus.call(CONFIG_SERVICE, path, CONFIG_INTERFACE, "Remove")
        except RpcError as e:
            raise ConfigRemoveError(
                f"Failed to remove configuration {path}: {e}",
                method="Remove",
                path=path,
                dbus_name=e.dbus_name,
            ) from e
        log.info(f"Removed configuration {path}")


def read_config_file(file_path: str) -> str:
    """Read a configuration file as text.

    Raises:
        FileReadError: If the file is missing, unreadable, too large or not text
    """
    path = Path(file_path).expanduser()
    try:
        if path.stat().st_size > MAX_CONFIG_FILE_SIZE:
            raise FileReadError(f"Configuration file too large: {path}", str(path))
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise FileReadError(f"Failed to read configuration file {path}: {e}", str(path)) from e
