import pytest

from toolhive.cedar import (
    CedarError,
    CedarSet,
    Decimal,
    Decision,
    EntityUID,
    PolicyParseError,
    PolicySet,
    Request,
    entities_from_json,
    parse_policy,
)


def _request(context=None):
    return Request(
        principal=EntityUID("Client", "user123"),
        action=EntityUID("Action", "call_tool"),
        resource=EntityUID("Tool", "weather"),
        context=context or {},
    )


def _decide(policies, request, entities=None):
    policy_set = PolicySet()
    for i, text in enumerate(policies):
        policy_set.add(f"policy{i}", parse_policy(text))
    return policy_set.is_authorized(entities or {}, request)


def test_permit_all_allows():
    decision, errors = _decide(["permit(principal, action, resource);"], _request())
    assert decision is Decision.ALLOW
    assert errors == []


def test_no_policies_denies():
    decision, _ = _decide([], _request())
    assert decision is Decision.DENY


def test_forbid_overrides_permit():
    decision, _ = _decide(
        ["permit(principal, action, resource);", "forbid(principal, action, resource);"], _request()
    )
    assert decision is Decision.DENY


@pytest.mark.parametrize(
    "resource, expected",
    [("weather", Decision.ALLOW), ("calculator", Decision.DENY)],
)
def test_scope_equality(resource, expected):
    policy = 'permit(principal, action == Action::"call_tool", resource == Tool::"weather");'
    request = _request()
    request.resource = EntityUID("Tool", resource)
    assert _decide([policy], request)[0] is expected


@pytest.mark.parametrize("name, expected", [("John Doe", Decision.ALLOW), ("Jane Smith", Decision.DENY)])
def test_when_condition(name, expected):
    policy = 'permit(principal, action, resource) when { context.claim_name == "John Doe" };'
    assert _decide([policy], _request({"claim_name": name}))[0] is expected


def test_contains_and_conjunction():
    policy = (
        'permit(principal, action, resource) when { context.groups.contains("editor") '
        '&& context.arg_value1 == 5 };'
    )
    ctx = {"groups": CedarSet(["reader", "editor"]), "arg_value1": 5}
    assert _decide([policy], _request(ctx))[0] is Decision.ALLOW
    ctx["arg_value1"] = 6
    assert _decide([policy], _request(ctx))[0] is Decision.DENY


def test_unless_condition():
    policy = 'permit(principal, action, resource) unless { context.blocked };'
    assert _decide([policy], _request({"blocked": True}))[0] is Decision.DENY
    assert _decide([policy], _request({"blocked": False}))[0] is Decision.ALLOW


def test_missing_attribute_reports_error():
    policy = 'permit(principal, action, resource) when { context.claim_role == "admin" };'
    decision, errors = _decide([policy], _request())
    assert decision is Decision.DENY
    assert len(errors) == 1


def test_bool_and_long_are_distinct():
    policy = "permit(principal, action, resource) when { context.flag == 1 };"
    assert _decide([policy], _request({"flag": True}))[0] is Decision.DENY


@pytest.mark.parametrize("text", ["invalid policy syntax", "permit(principal, action);", "permit(principal, action, resource)"])
def test_parse_errors(text):
    with pytest.raises(PolicyParseError):
        parse_policy(text)


def test_entities_from_json_and_in():
    entities = entities_from_json(
        '[{"uid": {"type": "User", "id": "alice"}, "attrs": {"level": 3},'
        ' "parents": [{"type": "Group", "id": "admins"}]}]'
    )
    alice = EntityUID("User", "alice")
    assert entities[alice].attributes == {"level": 3}
    request = Request(alice, EntityUID("Action", "read"), EntityUID("Doc", "x"))
    policy = 'permit(principal in Group::"admins", action, resource) when { principal.level >= 3 };'
    assert _decide([policy], request, entities)[0] is Decision.ALLOW


def test_entities_from_json_invalid():
    with pytest.raises(CedarError):
        entities_from_json("invalid json")


def test_empty_entities_json():
    assert entities_from_json("[]") == {}


def test_decimal_from_float():
    assert str(Decimal.from_float(3.14)) == "3.14"
    assert Decimal.from_float(3.14) == Decimal.parse("3.14")
    with pytest.raises(CedarError):
        Decimal.from_float(float("inf"))


def test_cedar_set_keeps_types_apart():
    items = CedarSet([1, "two", True])
    assert len(items) == 3
    assert items == CedarSet([True, 1, "two"])