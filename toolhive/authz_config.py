"""Loading authorization configuration files and building middleware from them."""

from __future__ import annotations

import enum
import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

import yaml

from toolhive.authorizer import AuthzError, CedarAuthorizer, CedarAuthorizerConfig
from toolhive.middleware import AuthorizationMiddleware, WSGIApp

MiddlewareFactory = Callable[[WSGIApp], AuthorizationMiddleware]


class ConfigType(str, enum.Enum):
    """The kinds of authorization configuration."""

    CEDAR_V1 = "cedarv1"

    def __str__(self) -> str:
        return self.value


@dataclass
class CedarConfig:
    """Cedar-specific settings: policy texts and an entities JSON document."""

    policies: list[str] = field(default_factory=list)
    entities_json: str = ""


def _optional_str(data: dict[str, Any], key: str) -> str:
    value = data.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError(f"field {key!r} must be a string")
    return value


def _cedar_from_dict(data: Any) -> CedarConfig | None:
    if data is None:
        return None
    if not isinstance(data, dict):
        raise ValueError("field 'cedar' must be an object")
    policies = data.get("policies")
    if policies is None:
        policies = []
    if not isinstance(policies, list) or not all(isinstance(p, str) for p in policies):
        raise ValueError("field 'policies' must be a list of strings")
    return CedarConfig(policies=list(policies), entities_json=_optional_str(data, "entities_json"))


@dataclass
class AuthzConfig:
    """An authorization configuration: format version, type and type-specific settings."""

    version: str = ""
    type: ConfigType | str = ""
    cedar: CedarConfig | None = None

    @classmethod
    def _from_dict(cls, data: Any) -> AuthzConfig:
        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise ValueError("configuration must be an object")
        type_text = _optional_str(data, "type")
        try:
            config_type: ConfigType | str = ConfigType(type_text)
        except ValueError:
            config_type = type_text
        return cls(
            version=_optional_str(data, "version"),
            type=config_type,
            cedar=_cedar_from_dict(data.get("cedar")),
        )

    def validate(self) -> None:
        """Raise ValueError if the configuration is incomplete or unsupported."""
        if not self.version:
            raise ValueError("version is required")
        if not self.type:
            raise ValueError("type is required")
        if self.type != ConfigType.CEDAR_V1:
            raise ValueError(f"unsupported configuration type: {self.type}")
        if self.cedar is None:
            raise ValueError(f"cedar configuration is required for type {self.type}")
        if not self.cedar.policies:
            raise ValueError(f"at least one policy is required for type {self.type}")

    def create_middleware(self) -> MiddlewareFactory:
        """Return a function that wraps a WSGI app in the configured authorization."""
        if self.type != ConfigType.CEDAR_V1:
            raise ValueError(f"unsupported configuration type: {self.type}")
        if self.cedar is None:
            raise ValueError(f"cedar configuration is required for type {self.type}")
        try:
            authorizer = CedarAuthorizer(
                CedarAuthorizerConfig(
                    policies=list(self.cedar.policies),
                    entities_json=self.cedar.entities_json,
                )
            )
        except AuthzError as exc:
            raise AuthzError(f"failed to create Cedar authorizer: {exc}") from exc

        def wrap(app: WSGIApp) -> AuthorizationMiddleware:
            return AuthorizationMiddleware(app, authorizer)

        return wrap


def load_config(path: str | os.PathLike[str]) -> AuthzConfig:
    """Load and validate a JSON or YAML authorization configuration file."""
    file_path = Path(path)
    data = file_path.read_bytes()
    ext = file_path.suffix.lower()
    if ext in (".yaml", ".yml"):
        try:
            config = AuthzConfig._from_dict(yaml.safe_load(data))
        except (yaml.YAMLError, ValueError) as exc:
            raise ValueError(
                f"failed to parse YAML authorization configuration file: {exc}"
            ) from exc
    elif ext in (".json", ""):
        try:
            config = AuthzConfig._from_dict(json.loads(data))
        except ValueError as exc:
            raise ValueError(
                f"failed to parse JSON authorization configuration file: {exc}"
            ) from exc
    else:
        raise ValueError(
            f"unsupported file format: {ext} (supported formats: .json, .yaml, .yml)"
        )
    config.validate()
    return config


def middleware_from_file(path: str | os.PathLike[str]) -> MiddlewareFactory:
    """Load a configuration file and build its middleware factory."""
    return load_config(path).create_middleware()