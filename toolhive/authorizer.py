"""Authorization of MCP operations against Cedar policies."""

from __future__ import annotations

import enum
import threading
from dataclasses import dataclass, field
from typing import Any, Mapping

from toolhive.cedar import (
    CedarError,
    Decision,
    Entity,
    EntityUID,
    PolicySet,
    Request,
    entities_from_json,
    parse_policy,
)
from toolhive.entities import EntityFactory, parse_entity_id, to_cedar_record


class AuthzError(Exception):
    """Base class for authorization failures."""


class NoPoliciesError(AuthzError):
    """Raised when no policies are supplied."""

    def __init__(self, message: str = "no policies loaded") -> None:
        super().__init__(message)


class MissingPrincipalError(AuthzError):
    """Raised when the request has no principal."""

    def __init__(self, message: str = "missing principal") -> None:
        super().__init__(message)


class MissingActionError(AuthzError):
    """Raised when the request has no action."""

    def __init__(self, message: str = "missing action") -> None:
        super().__init__(message)


class MissingResourceError(AuthzError):
    """Raised when the request has no resource."""

    def __init__(self, message: str = "missing resource") -> None:
        super().__init__(message)


class MCPFeature(str, enum.Enum):
    """The MCP features that can be authorized."""

    TOOL = "tool"
    PROMPT = "prompt"
    RESOURCE = "resource"


class MCPOperation(str, enum.Enum):
    """The operations on MCP features."""

    LIST = "list"
    GET = "get"
    CALL = "call"
    READ = "read"


def _text(value: Any) -> str:
    return value.value if isinstance(value, enum.Enum) else str(value)


@dataclass
class CedarAuthorizerConfig:
    """Policies and optional entities JSON for a CedarAuthorizer."""

    policies: list[str] = field(default_factory=list)
    entities_json: str = ""


_URI_TRANSLATION = str.maketrans({ch: "_" for ch in ":/\\?&=# ."})


def sanitize_uri(uri: str) -> str:
    """Replace characters unsuitable for a Cedar entity id with underscores."""
    return uri.translate(_URI_TRANSLATION)


def _build_policy_set(policies: list[str]) -> PolicySet:
    if not policies:
        raise NoPoliciesError()
    policy_set = PolicySet()
    for index, text in enumerate(policies):
        try:
            policy = parse_policy(text)
        except CedarError as exc:
            raise AuthzError(f"failed to parse policy {index}: {exc}") from exc
        policy_set.add(f"policy{index}", policy)
    return policy_set


def _load_entities(entities_json: str) -> dict[EntityUID, Entity]:
    try:
        return entities_from_json(entities_json)
    except CedarError as exc:
        raise AuthzError(f"failed to parse entities JSON: {exc}") from exc


def _parse_id(entity_id: str) -> tuple[str, str]:
    try:
        return parse_entity_id(entity_id)
    except ValueError as exc:
        raise AuthzError(str(exc)) from exc


def _prefix_claims(claims: Mapping[str, Any]) -> dict[str, Any]:
    return {f"claim_{key}": value for key, value in claims.items()}


def _prefix_arguments(arguments: Mapping[str, Any] | None) -> dict[str, Any] | None:
    if arguments is None:
        return None
    result: dict[str, Any] = {}
    for key, value in arguments.items():
        if isinstance(value, (str, bool, int, float)):
            result[f"arg_{key}"] = value
        else:
            result[f"arg_{key}_present"] = True
    return result


def _merge(*maps: Mapping[str, Any] | None) -> dict[str, Any]:
    merged: dict[str, Any] = {}
    for mapping in maps:
        if mapping:
            merged.update(mapping)
    return merged


class CedarAuthorizer:
    """Authorizes MCP operations using a set of Cedar policies."""

    def __init__(self, config: CedarAuthorizerConfig) -> None:
        self.policy_set = _build_policy_set(config.policies)
        self.entities: dict[EntityUID, Entity] = (
            _load_entities(config.entities_json) if config.entities_json else {}
        )
        self.entity_factory = EntityFactory()
        self._lock = threading.RLock()

    def update_policies(self, policies: list[str]) -> None:
        """Replace all policies."""
        with self._lock:
            self.policy_set = _build_policy_set(policies)

    def update_entities(self, entities_json: str) -> None:
        """Replace the entity store from a JSON list of entities."""
        with self._lock:
            self.entities = _load_entities(entities_json)

    def add_entity(self, entity: Entity) -> None:
        with self._lock:
            self.entities[entity.uid] = entity

    def remove_entity(self, uid: EntityUID) -> None:
        with self._lock:
            self.entities.pop(uid, None)

    def get_entity(self, uid: EntityUID) -> Entity | None:
        with self._lock:
            return self.entities.get(uid)

    def is_authorized(
        self,
        principal: str,
        action: str,
        resource: str,
        context: Mapping[str, Any] | None = None,
        entities: Mapping[EntityUID, Entity] | None = None,
    ) -> bool:
        """Evaluate a request given as "Type::ID" strings plus a context map."""
        with self._lock:
            if not principal:
                raise MissingPrincipalError()
            if not action:
                raise MissingActionError()
            if not resource:
                raise MissingResourceError()
            request = Request(
                principal=EntityUID(*_parse_id(principal)),
                action=EntityUID(*_parse_id(action)),
                resource=EntityUID(*_parse_id(resource)),
                context=to_cedar_record(context),
            )
            entity_map: Mapping[EntityUID, Entity] = self.entities
            if entities is not None:
                entity_map = {**self.entities, **entities}
            decision, errors = self.policy_set.is_authorized(entity_map, request)
            if errors:
                raise AuthzError(f"authorization error: {errors}")
            return decision is Decision.ALLOW

    def _authorize(
        self,
        client_id: str,
        action: str,
        resource: str,
        base_attributes: dict[str, Any],
        claims: dict[str, Any],
        attributes: dict[str, Any] | None,
    ) -> bool:
        principal = f"Client::{client_id}"
        merged_attributes = _merge(base_attributes, attributes)
        try:
            entities = self.entity_factory.create_entities_for_request(
                principal, action, resource, claims, merged_attributes
            )
        except ValueError as exc:
            raise AuthzError(f"failed to create Cedar entities: {exc}") from exc
        return self.is_authorized(principal, action, resource, _merge(claims, attributes), entities)

    def authorize_with_claims(
        self,
        claims: Mapping[str, Any] | None,
        feature: MCPFeature | str,
        operation: MCPOperation | str,
        resource_id: str,
        arguments: Mapping[str, Any] | None = None,
    ) -> bool:
        """Authorize an MCP operation for the subject of the given JWT claims."""
        if claims is None:
            raise MissingPrincipalError()
        client_id = claims.get("sub")
        if not isinstance(client_id, str) or not client_id:
            raise MissingPrincipalError()

        feature_name = _text(feature)
        operation_name = _text(operation)
        claim_context = _prefix_claims(claims)
        args = _prefix_arguments(arguments)

        if feature_name == MCPFeature.TOOL.value and operation_name == MCPOperation.CALL.value:
            return self._authorize(
                client_id,
                "Action::call_tool",
                f"Tool::{resource_id}",
                {"name": resource_id, "operation": "call", "feature": "tool"},
                claim_context,
                args,
            )
        if feature_name == MCPFeature.PROMPT.value and operation_name == MCPOperation.GET.value:
            return self._authorize(
                client_id,
                "Action::get_prompt",
                f"Prompt::{resource_id}",
                {"name": resource_id, "operation": "get", "feature": "prompt"},
                claim_context,
                args,
            )
        if feature_name == MCPFeature.RESOURCE.value and operation_name == MCPOperation.READ.value:
            return self._authorize(
                client_id,
                "Action::read_resource",
                f"Resource::{sanitize_uri(resource_id)}",
                {"uri": resource_id, "operation": "read", "feature": "resource"},
                claim_context,
                args,
            )
        if operation_name == MCPOperation.LIST.value:
            return self._authorize(
                client_id,
                f"Action::list_{feature_name}s",
                f"FeatureType::{feature_name}",
                {"type": feature_name, "operation": "list", "feature": feature_name},
                claim_context,
                args,
            )
        raise AuthzError(
            f"unsupported feature/operation combination: {feature_name}/{operation_name}"
        )