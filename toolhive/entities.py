"""Building Cedar entities and records from plain Python data."""

from __future__ import annotations

from typing import Any, Mapping

from toolhive.cedar import CedarError, CedarSet, Decimal, Entity, EntityUID

_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1


def parse_entity_id(entity_id: str) -> tuple[str, str]:
    """Split "Type::ID" into its type and id."""
    entity_type, sep, ident = entity_id.partition("::")
    if not sep:
        raise ValueError(f"invalid entity ID format: {entity_id}")
    return entity_type, ident


def _scalar(value: Any) -> Any:
    if isinstance(value, (bool, str)):
        return value
    if isinstance(value, int):
        return value if _INT64_MIN <= value <= _INT64_MAX else None
    if isinstance(value, float):
        try:
            return Decimal.from_float(value)
        except CedarError:
            return None
    return None


def to_cedar_value(value: Any) -> Any:
    """Convert a Python value to a Cedar value, or None if it is unsupported."""
    if isinstance(value, (list, tuple)):
        return CedarSet(v for v in map(_scalar, value) if v is not None)
    return _scalar(value)


def to_cedar_record(data: Mapping[str, Any] | None) -> dict[str, Any]:
    """Convert a mapping to a Cedar record, dropping unsupported values."""
    if not data:
        return {}
    record = {}
    for key, value in data.items():
        converted = to_cedar_value(value)
        if converted is not None:
            record[key] = converted
    return record


class EntityFactory:
    """Creates the entities needed for an authorization request."""

    def create_principal_entity(
        self, principal_type: str, principal_id: str, attributes: Mapping[str, Any] | None
    ) -> tuple[EntityUID, Entity]:
        uid = EntityUID(principal_type, principal_id)
        return uid, Entity(uid=uid, attributes=to_cedar_record(attributes))

    def create_action_entity(
        self, action_type: str, action_id: str, attributes: Mapping[str, Any] | None
    ) -> tuple[EntityUID, Entity]:
        uid = EntityUID(action_type, action_id)
        attrs = {**(attributes or {}), "operation": action_id}
        return uid, Entity(uid=uid, attributes=to_cedar_record(attrs))

    def create_resource_entity(
        self, resource_type: str, resource_id: str, attributes: Mapping[str, Any] | None
    ) -> tuple[EntityUID, Entity]:
        uid = EntityUID(resource_type, resource_id)
        attrs = {**(attributes or {}), "name": resource_id}
        return uid, Entity(uid=uid, attributes=to_cedar_record(attrs))

    def create_entities_for_request(
        self,
        principal: str,
        action: str,
        resource: str,
        claims: Mapping[str, Any] | None,
        attributes: Mapping[str, Any] | None,
    ) -> dict[EntityUID, Entity]:
        principal_type, principal_id = parse_entity_id(principal)
        action_type, action_id = parse_entity_id(action)
        resource_type, resource_id = parse_entity_id(resource)
        entities: dict[EntityUID, Entity] = {}
        for uid, entity in (
            self.create_principal_entity(principal_type, principal_id, claims),
            self.create_action_entity(action_type, action_id, None),
            self.create_resource_entity(resource_type, resource_id, attributes),
        ):
            entities[uid] = entity
        return entities