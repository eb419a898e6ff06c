import pytest

from toolhive.cedar import Entity, EntityUID
from toolhive.authorizer import (
    AuthzError,
    CedarAuthorizer,
    CedarAuthorizerConfig,
    MCPFeature,
    MCPOperation,
    MissingActionError,
    MissingPrincipalError,
    MissingResourceError,
    NoPoliciesError,
    sanitize_uri,
)


def make(policies, entities_json="[]"):
    return CedarAuthorizer(CedarAuthorizerConfig(policies=policies, entities_json=entities_json))


@pytest.mark.parametrize(
    "policies, entities_json",
    [
        (["permit(principal, action, resource);"], "[]"),
        (["permit(principal, action, resource);", "forbid(principal, action, resource);"], "[]"),
        (
            ["permit(principal, action, resource);"],
            '[{"uid": {"type": "User", "id": "alice"}, "attrs": {}, "parents": []}]',
        ),
    ],
)
def test_new_authorizer_valid(policies, entities_json):
    authorizer = make(policies, entities_json)
    assert len(authorizer.policy_set) == len(policies)
    assert isinstance(authorizer.entities, dict)


def test_new_authorizer_loads_entities():
    authorizer = make(
        ["permit(principal, action, resource);"],
        '[{"uid": {"type": "User", "id": "alice"}, "attrs": {}, "parents": []}]',
    )
    assert authorizer.get_entity(EntityUID("User", "alice")).uid == EntityUID("User", "alice")


def test_new_authorizer_invalid_policy():
    with pytest.raises(AuthzError, match="failed to parse policy 0"):
        make(["invalid policy syntax"])


def test_new_authorizer_no_policies():
    with pytest.raises(NoPoliciesError):
        make([])


def test_new_authorizer_invalid_entities_json():
    with pytest.raises(AuthzError, match="entities JSON"):
        make(["permit(principal, action, resource);"], "invalid json")


NAME_POLICY = """
    permit(
        principal,
        action == Action::"call_tool",
        resource == Tool::"weather"
    )
    when {
        context.claim_name == "John Doe"
    };
"""


@pytest.mark.parametrize(
    "policy, claims, feature, operation, resource_id, arguments, expected",
    [
        (
            NAME_POLICY,
            {"sub": "user123", "name": "John Doe", "roles": ["user", "reader"]},
            MCPFeature.TOOL, MCPOperation.CALL, "weather", None, True,
        ),
        (
            NAME_POLICY,
            {"sub": "user123", "name": "Jane Smith", "roles": ["user", "reader"]},
            MCPFeature.TOOL, MCPOperation.CALL, "weather", None, False,
        ),
        (
            """permit(principal, action == Action::"call_tool", resource)
               when { context.claim_role == "admin" };""",
            {"sub": "admin123", "name": "Admin User", "role": "admin"},
            MCPFeature.TOOL, MCPOperation.CALL, "any_tool", None, True,
        ),
        (
            """permit(principal, action == Action::"call_tool", resource == Tool::"calculator")
               when { context.arg_operation == "add" && context.arg_value1 == 5 };""",
            {"sub": "user123", "name": "John Doe"},
            MCPFeature.TOOL, MCPOperation.CALL, "calculator",
            {"operation": "add", "value1": 5, "value2": 10}, True,
        ),
        (
            """permit(principal, action == Action::"read_resource", resource == Resource::"sensitive_data")
               when { context.claim_groups.contains("editor") };""",
            {"sub": "user123", "name": "John Doe", "groups": ["reader", "editor", "viewer"]},
            MCPFeature.RESOURCE, MCPOperation.READ, "sensitive_data", None, True,
        ),
        (
            'permit(principal, action == Action::"get_prompt", resource == Prompt::"greeting");',
            {"sub": "user123", "name": "John Doe", "role": "user"},
            MCPFeature.PROMPT, MCPOperation.GET, "greeting", None, True,
        ),
        (
            'permit(principal, action == Action::"list_tools", resource == FeatureType::"tool");',
            {"sub": "user123", "name": "John Doe", "role": "user"},
            MCPFeature.TOOL, MCPOperation.LIST, "", None, True,
        ),
        (
            'permit(principal, action == Action::"list_prompts", resource == FeatureType::"prompt");',
            {"sub": "user123", "name": "John Doe", "role": "user"},
            MCPFeature.PROMPT, MCPOperation.LIST, "", None, True,
        ),
        (
            'permit(principal, action == Action::"list_resources", resource == FeatureType::"resource");',
            {"sub": "user123", "name": "John Doe", "role": "user"},
            MCPFeature.RESOURCE, MCPOperation.LIST, "", None, True,
        ),
    ],
)
def test_authorize_with_claims(policy, claims, feature, operation, resource_id, arguments, expected):
    authorizer = make([policy])
    assert authorizer.authorize_with_claims(claims, feature, operation, resource_id, arguments) is expected


@pytest.mark.parametrize(
    "claims",
    [
        None,
        {"name": "John Doe", "role": "user"},
        {"sub": "", "name": "John Doe", "role": "user"},
    ],
)
def test_authorize_with_claims_missing_principal(claims):
    authorizer = make(["permit(principal, action, resource);"])
    with pytest.raises(MissingPrincipalError):
        authorizer.authorize_with_claims(claims, MCPFeature.TOOL, MCPOperation.CALL, "weather", None)


def test_authorize_with_claims_unsupported_combination():
    authorizer = make(["permit(principal, action, resource);"])
    with pytest.raises(AuthzError, match="unsupported feature/operation combination"):
        authorizer.authorize_with_claims(
            {"sub": "user123", "name": "John Doe"}, "invalid_feature", "invalid_operation", "resource", None
        )


def test_plain_string_feature_and_operation():
    authorizer = make(['permit(principal, action == Action::"call_tool", resource == Tool::"weather");'])
    assert authorizer.authorize_with_claims({"sub": "u"}, "tool", "call", "weather", None) is True


def test_complex_arguments_marked_present():
    authorizer = make(
        ['permit(principal, action == Action::"call_tool", resource) when { context.arg_options_present };']
    )
    allowed = authorizer.authorize_with_claims(
        {"sub": "u"}, MCPFeature.TOOL, MCPOperation.CALL, "t", {"options": {"a": 1}}
    )
    assert allowed is True


def test_resource_uri_is_sanitized():
    authorizer = make(
        ['permit(principal, action == Action::"read_resource", resource == Resource::"file____data_txt");']
    )
    assert authorizer.authorize_with_claims(
        {"sub": "u"}, MCPFeature.RESOURCE, MCPOperation.READ, "file:///data.txt", None
    ) is True


def test_sanitize_uri():
    assert sanitize_uri("file:///data/x.txt?a=b#c d") == "file____data_x_txt_a_b_c_d"
    assert sanitize_uri("C:\\dir&x") == "C__dir_x"


def test_is_authorized_missing_parts():
    authorizer = make(["permit(principal, action, resource);"])
    with pytest.raises(MissingPrincipalError):
        authorizer.is_authorized("", "Action::a", "Tool::t")
    with pytest.raises(MissingActionError):
        authorizer.is_authorized("Client::c", "", "Tool::t")
    with pytest.raises(MissingResourceError):
        authorizer.is_authorized("Client::c", "Action::a", "")


def test_is_authorized_invalid_entity_id():
    authorizer = make(["permit(principal, action, resource);"])
    with pytest.raises(AuthzError, match="invalid entity ID format"):
        authorizer.is_authorized("client", "Action::a", "Tool::t")


def test_is_authorized_evaluation_error():
    authorizer = make(["permit(principal, action, resource) when { context.missing == 1 };"])
    with pytest.raises(AuthzError, match="authorization error"):
        authorizer.is_authorized("Client::c", "Action::a", "Tool::t", {})


def test_forbid_overrides_permit():
    authorizer = make(["permit(principal, action, resource);", "forbid(principal, action, resource);"])
    assert authorizer.is_authorized("Client::c", "Action::a", "Tool::t") is False


def test_entity_store_membership():
    authorizer = make(
        ['permit(principal in Group::"admins", action, resource);'],
        '[{"uid": {"type": "User", "id": "alice"}, "attrs": {},'
        ' "parents": [{"type": "Group", "id": "admins"}]}]',
    )
    assert authorizer.is_authorized("User::alice", "Action::view", "Doc::1") is True
    assert authorizer.is_authorized("User::bob", "Action::view", "Doc::1") is False

    bob = Entity(uid=EntityUID("User", "bob"), parents=frozenset({EntityUID("Group", "admins")}))
    authorizer.add_entity(bob)
    assert authorizer.get_entity(EntityUID("User", "bob")) is bob
    assert authorizer.is_authorized("User::bob", "Action::view", "Doc::1") is True

    authorizer.remove_entity(EntityUID("User", "bob"))
    assert authorizer.get_entity(EntityUID("User", "bob")) is None
    assert authorizer.is_authorized("User::bob", "Action::view", "Doc::1") is False


def test_request_entities_merge_with_store():
    authorizer = make(['permit(principal in Group::"admins", action, resource);'])
    extra = {
        EntityUID("User", "carol"): Entity(
            uid=EntityUID("User", "carol"), parents=frozenset({EntityUID("Group", "admins")})
        )
    }
    assert authorizer.is_authorized("User::carol", "Action::view", "Doc::1", None, extra) is True
    assert authorizer.is_authorized("User::carol", "Action::view", "Doc::1") is False


def test_update_entities_replaces_store():
    authorizer = make(
        ["permit(principal, action, resource);"],
        '[{"uid": {"type": "User", "id": "alice"}, "attrs": {}, "parents": []}]',
    )
    authorizer.update_entities('[{"uid": {"type": "User", "id": "dave"}, "attrs": {}, "parents": []}]')
    assert authorizer.get_entity(EntityUID("User", "alice")) is None
    assert authorizer.get_entity(EntityUID("User", "dave")).uid == EntityUID("User", "dave")
    with pytest.raises(AuthzError):
        authorizer.update_entities("not json")


def test_update_policies():
    authorizer = make(["forbid(principal, action, resource);"])
    assert authorizer.is_authorized("Client::c", "Action::a", "Tool::t") is False
    authorizer.update_policies(["permit(principal, action, resource);"])
    assert authorizer.is_authorized("Client::c", "Action::a", "Tool::t") is True
    with pytest.raises(NoPoliciesError):
        authorizer.update_policies([])
    with pytest.raises(AuthzError):
        authorizer.update_policies(["nonsense"])
    assert authorizer.is_authorized("Client::c", "Action::a", "Tool::t") is True