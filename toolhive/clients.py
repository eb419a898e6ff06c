"""Discovery of MCP client configuration files and registration of servers in them."""

from __future__ import annotations

import enum
import logging
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Mapping, Sequence

from toolhive.appconfig import AppConfig, get_config
from toolhive.client_editor import JSONConfigUpdater, MCPServer, parse_hujson
from toolhive.middleware import SSE_ENDPOINT

logger = logging.getLogger(__name__)


class MCPClient(str, enum.Enum):
    """The supported MCP clients."""

    ROO_CODE = "roo-code"
    CURSOR = "cursor"
    VSCODE_INSIDER = "vscode-insider"
    VSCODE = "vscode"

    def __str__(self) -> str:
        return self.value


_DESKTOP_PREFIXES = {
    "linux": (".config",),
    "darwin": ("Library", "Application Support"),
}


@dataclass(frozen=True)
class ClientIntegration:
    """Where a client keeps its configuration and where MCP servers live in it."""

    client_type: MCPClient | str
    description: str
    rel_path: tuple[str, ...]
    mcp_servers_path_prefix: str
    platform_prefix: Mapping[str, Sequence[str]] = field(default_factory=dict)
    extension: str = "json"


SUPPORTED_CLIENT_INTEGRATIONS: tuple[ClientIntegration, ...] = (
    ClientIntegration(
        client_type=MCPClient.ROO_CODE,
        description="VS Code Roo Code extension",
        rel_path=(
            "Code", "User", "globalStorage", "rooveterinaryinc.roo-cline", "settings",
            "mcp_settings.json",
        ),
        platform_prefix=_DESKTOP_PREFIXES,
        mcp_servers_path_prefix="/mcpServers",
    ),
    ClientIntegration(
        client_type=MCPClient.VSCODE_INSIDER,
        description="Visual Studio Code Insiders",
        rel_path=("Code - Insiders", "User", "settings.json"),
        platform_prefix=_DESKTOP_PREFIXES,
        mcp_servers_path_prefix="/mcp/servers",
    ),
    ClientIntegration(
        client_type=MCPClient.VSCODE,
        description="Visual Studio Code",
        rel_path=("Code", "User", "settings.json"),
        platform_prefix=_DESKTOP_PREFIXES,
        mcp_servers_path_prefix="/mcp/servers",
    ),
    ClientIntegration(
        client_type=MCPClient.CURSOR,
        description="Cursor editor",
        rel_path=(".cursor", "mcp.json"),
        mcp_servers_path_prefix="/mcpServers",
    ),
)


@dataclass
class ConfigFile:
    """A discovered client configuration file."""

    path: str
    client_type: MCPClient | str
    config_updater: JSONConfigUpdater
    extension: str = "json"


def _platform_name() -> str:
    if sys.platform.startswith("linux"):
        return "linux"
    if sys.platform == "win32":
        return "windows"
    return sys.platform


def build_config_file_path(
    rel_path: Iterable[str],
    platform_prefix: Mapping[str, Sequence[str]],
    base: str | os.PathLike[str],
) -> str:
    """Join the base directory, the current platform's prefix and the relative path."""
    prefix = platform_prefix.get(_platform_name(), ())
    return os.path.normpath(os.path.join(os.fspath(base), *prefix, *rel_path))


def _client_name(client: MCPClient | str) -> str:
    return client.value if isinstance(client, MCPClient) else str(client)


def find_client_configs(
    app_config: AppConfig | None = None,
    integrations: Iterable[ClientIntegration] | None = None,
    home: str | os.PathLike[str] | None = None,
) -> list[ConfigFile]:
    """Find the configuration files of the enabled clients that exist on disk.

    Raises ValueError if a found file is not valid JSON.
    """
    config = app_config if app_config is not None else get_config()
    filters: set[str] = set()
    if not config.clients.auto_discovery:
        if not config.clients.registered_clients:
            return []
        filters = set(config.clients.registered_clients)

    base = home if home is not None else Path.home()
    candidates = integrations if integrations is not None else SUPPORTED_CLIENT_INTEGRATIONS
    found: list[ConfigFile] = []
    for integration in candidates:
        if filters and _client_name(integration.client_type) not in filters:
            continue
        path = build_config_file_path(integration.rel_path, integration.platform_prefix, base)
        if not os.path.exists(path):
            logger.warning("failed to validate config file: file does not exist: %s", path)
            continue
        found.append(
            ConfigFile(
                path=path,
                client_type=integration.client_type,
                config_updater=JSONConfigUpdater(
                    path=path, mcp_servers_path_prefix=integration.mcp_servers_path_prefix
                ),
                extension=integration.extension,
            )
        )

    for config_file in found:
        try:
            parse_hujson(Path(config_file.path).read_bytes())
        except OSError as exc:
            raise ValueError(
                f"failed to validate config file format: failed to read file "
                f"{config_file.path}: {exc}"
            ) from exc
        except (ValueError, UnicodeDecodeError) as exc:
            raise ValueError(
                f"failed to validate config file format: failed to parse JSON for file "
                f"{config_file.path}: {exc}"
            ) from exc
    return found


def upsert(config_file: ConfigFile, name: str, url: str) -> None:
    """Add or update an MCP server in a client's configuration file."""
    if config_file.client_type in (MCPClient.VSCODE, MCPClient.VSCODE_INSIDER):
        server = MCPServer(url=url, type="sse")
    else:
        server = MCPServer(url=url)
    config_file.config_updater.upsert(name, server)


def generate_mcp_server_url(host: str, port: int, container_name: str) -> str:
    """Return the SSE URL clients use to reach a running MCP server."""
    return f"http://{host}:{port}{SSE_ENDPOINT}#{container_name}"