"""The application configuration file: loading, first-run creation and writing."""

from __future__ import annotations

import functools
import logging
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, TextIO

import yaml

logger = logging.getLogger(__name__)

ENCRYPTED_PROVIDER = "encrypted"
_APP_DIR = "toolhive"


def _config_home() -> Path:
    env = os.environ.get("XDG_CONFIG_HOME")
    if env:
        return Path(env)
    home = Path.home()
    if sys.platform == "darwin":
        return home / "Library" / "Application Support"
    if sys.platform == "win32":
        return Path(os.environ.get("LOCALAPPDATA") or home / "AppData" / "Local")
    return home / ".config"


def _data_home() -> Path:
    env = os.environ.get("XDG_DATA_HOME")
    if env:
        return Path(env)
    home = Path.home()
    if sys.platform == "darwin":
        return home / "Library" / "Application Support"
    if sys.platform == "win32":
        return Path(os.environ.get("LOCALAPPDATA") or home / "AppData" / "Local")
    return home / ".local" / "share"


def default_config_path() -> Path:
    """Return the config file path, creating its directory if needed."""
    path = _config_home() / _APP_DIR / "config.yaml"
    path.parent.mkdir(parents=True, exist_ok=True)
    return path


@dataclass
class SecretsSettings:
    """Settings for secrets management."""

    provider_type: str = ENCRYPTED_PROVIDER


@dataclass
class ClientsSettings:
    """Settings for MCP client configuration."""

    auto_discovery: bool = False
    registered_clients: list[str] = field(default_factory=list)


def _section(data: dict[str, Any], key: str) -> dict[str, Any]:
    value = data.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError(f"{key} must be a mapping")
    return value


@dataclass
class AppConfig:
    """The application configuration."""

    secrets: SecretsSettings = field(default_factory=SecretsSettings)
    clients: ClientsSettings = field(default_factory=ClientsSettings)

    @classmethod
    def _from_dict(cls, data: dict[str, Any]) -> AppConfig:
        secrets = _section(data, "secrets")
        clients = _section(data, "clients")
        provider = secrets.get("provider_type")
        if provider is None:
            provider = ""
        if not isinstance(provider, str):
            raise ValueError("provider_type must be a string")
        auto = clients.get("auto_discovery")
        if auto is None:
            auto = False
        if not isinstance(auto, bool):
            raise ValueError("auto_discovery must be a boolean")
        registered = clients.get("registered_clients")
        if registered is None:
            registered = []
        if not isinstance(registered, list) or not all(isinstance(c, str) for c in registered):
            raise ValueError("registered_clients must be a list of strings")
        return cls(
            secrets=SecretsSettings(provider_type=provider),
            clients=ClientsSettings(auto_discovery=auto, registered_clients=list(registered)),
        )

    def _to_dict(self) -> dict[str, Any]:
        return {
            "secrets": {"provider_type": self.secrets.provider_type},
            "clients": {
                "auto_discovery": self.clients.auto_discovery,
                "registered_clients": list(self.clients.registered_clients),
            },
        }

    def write(self, path: str | os.PathLike[str] | None = None) -> None:
        """Serialize the configuration as YAML, to the default path unless one is given."""
        target = Path(path) if path is not None else default_config_path()
        text = yaml.safe_dump(self._to_dict(), sort_keys=False)
        fd = os.open(target, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(text)


def _create_default(config_path: Path, stream: TextIO | None) -> AppConfig:
    config = AppConfig(
        secrets=SecretsSettings(provider_type=ENCRYPTED_PROVIDER),
        clients=ClientsSettings(auto_discovery=True),
    )
    logger.info(
        "Would you like to enable auto discovery and configuraion of MCP clients? (y/n) [n]: "
    )
    try:
        answer = (stream if stream is not None else sys.stdin).readline()
    except (OSError, ValueError):
        logger.info("Unable to read input, defaulting to No.")
        answer = ""
    config.clients.auto_discovery = answer in ("y\n", "Y\n")
    logger.info("initializing configuration file at %s", config_path)
    config.write(config_path)
    return config


def load_or_create_config(
    path: str | os.PathLike[str] | None = None, stream: TextIO | None = None
) -> AppConfig:
    """Load the configuration, creating it with defaults if the file is missing.

    On creation the user is asked, through ``stream`` (stdin by default),
    whether MCP client auto discovery should be enabled.
    """
    config_path = Path(os.path.normpath(path)) if path is not None else default_config_path()
    try:
        os.stat(config_path)
    except FileNotFoundError:
        return _create_default(config_path, stream)

    text = config_path.read_text(encoding="utf-8")
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ValueError(f"failed to parse config file yaml: {exc}") from exc
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValueError("failed to parse config file yaml: top level must be a mapping")
    try:
        config = AppConfig._from_dict(data)
    except ValueError as exc:
        raise ValueError(f"failed to parse config file yaml: {exc}") from exc

    if config.secrets.provider_type == "basic":
        print("cleaning up basic secrets provider")
        try:
            (_data_home() / _APP_DIR / "secrets").unlink()
        except OSError:
            pass
        config.secrets.provider_type = ENCRYPTED_PROVIDER
        try:
            config.write(config_path)
        except OSError as exc:
            print(f"error updating config: {exc}", end="")
    return config


@functools.lru_cache(maxsize=None)
def get_config() -> AppConfig:
    """Return the application configuration, loaded once per process."""
    try:
        return load_or_create_config()
    except (OSError, ValueError) as exc:
        logger.error("error loading configuration: %s", exc)
        raise