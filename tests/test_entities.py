import math

import pytest

from toolhive.cedar import CedarSet, Decimal, EntityUID
from toolhive.entities import EntityFactory, parse_entity_id, to_cedar_record


@pytest.mark.parametrize(
    "principal, action, resource, claims, attributes",
    [
        (
            "Client::user123",
            "Action::call_tool",
            "Tool::weather",
            {"claim_sub": "user123", "claim_name": "John Doe", "claim_roles": ["user", "admin"]},
            {"name": "weather", "operation": "call", "feature": "tool"},
        ),
        (
            "Client::user123",
            "Action::call_tool",
            "Tool::calculator",
            {
                "claim_sub": "user123",
                "claim_name": "John Doe",
                "claim_roles": ["user", "admin"],
                "claim_clearance_level": 5,
            },
            {
                "name": "calculator",
                "operation": "call",
                "feature": "tool",
                "arg_operation": "add",
                "arg_value1": 5,
                "arg_value2": 10,
                "tags": ["math", "utility"],
                "priority": 1,
                "enabled": True,
            },
        ),
    ],
)
def test_create_entities_valid(principal, action, resource, claims, attributes):
    entities = EntityFactory().create_entities_for_request(principal, action, resource, claims, attributes)
    assert len(entities) == 3

    p_type, p_id = parse_entity_id(principal)
    principal_entity = entities[EntityUID(p_type, p_id)]
    assert principal_entity.uid == EntityUID(p_type, p_id)

    a_type, a_id = parse_entity_id(action)
    action_entity = entities[EntityUID(a_type, a_id)]
    assert action_entity.attributes["operation"] == a_id

    r_type, r_id = parse_entity_id(resource)
    resource_entity = entities[EntityUID(r_type, r_id)]
    assert resource_entity.attributes["name"] == r_id

    for key, value in claims.items():
        assert key in principal_entity.attributes
        if isinstance(value, str):
            assert principal_entity.attributes[key] == value


@pytest.mark.parametrize(
    "principal, action, resource",
    [
        ("user123", "Action::call_tool", "Tool::weather"),
        ("Client::user123", "call_tool", "Tool::weather"),
        ("Client::user123", "Action::call_tool", "weather"),
    ],
)
def test_create_entities_invalid(principal, action, resource):
    with pytest.raises(ValueError):
        EntityFactory().create_entities_for_request(principal, action, resource, {}, {})


def test_action_entity_does_not_mutate_input():
    attrs = {"x": "y"}
    _, entity = EntityFactory().create_action_entity("Action", "get_prompt", attrs)
    assert entity.attributes == {"x": "y", "operation": "get_prompt"}
    assert attrs == {"x": "y"}


@pytest.mark.parametrize(
    "data, expected",
    [
        ({}, {}),
        (None, {}),
        ({"true_value": True, "false_value": False}, {"true_value": True, "false_value": False}),
        ({"string1": "hello", "string2": "world"}, {"string1": "hello", "string2": "world"}),
        (
            {"int1": 42, "int2": 9223372036854775807},
            {"int1": 42, "int2": 9223372036854775807},
        ),
        (
            {"float1": 3.14, "float2": 2.71828},
            {"float1": Decimal.from_float(3.14), "float2": Decimal.from_float(2.71828)},
        ),
        ({"roles": ["admin", "user", "guest"]}, {"roles": CedarSet(["admin", "user", "guest"])}),
        (
            {"mixed": ["string", 42, True, 3.14]},
            {"mixed": CedarSet(["string", 42, True, Decimal.from_float(3.14)])},
        ),
        (
            {
                "string": "hello",
                "int": 42,
                "bool": True,
                "float": 3.14,
                "array": ["a", "b", "c"],
                "mixed": [1, "two", True],
                "ignored": {"key": "value"},
            },
            {
                "string": "hello",
                "int": 42,
                "bool": True,
                "float": Decimal.from_float(3.14),
                "array": CedarSet(["a", "b", "c"]),
                "mixed": CedarSet([1, "two", True]),
            },
        ),
        ({"mixed": [1, "two", True, math.inf]}, {"mixed": CedarSet([1, "two", True])}),
        ({"invalid_float": math.inf}, {}),
        (
            {"map": {"nested": "value"}, "struct": object(), "valid": "this should be included"},
            {"valid": "this should be included"},
        ),
        ({"bools": [False]}, {"bools": CedarSet([False])}),
        ({"int64s": [9223372036854775807]}, {"int64s": CedarSet([9223372036854775807])}),
    ],
)
def test_to_cedar_record(data, expected):
    record = to_cedar_record(data)
    assert len(record) == len(expected)
    for key, value in expected.items():
        assert key in record
        assert type(record[key]) is type(value)
        if isinstance(value, Decimal):
            assert str(record[key]) == str(value)
        else:
            assert record[key] == value


def test_mixed_set_keeps_bool_and_long():
    record = to_cedar_record({"mixed": [1, "two", True]})
    assert len(record["mixed"]) == 3