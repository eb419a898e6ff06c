# toolhive

Authorization and client-configuration tools for MCP (Model Context Protocol) servers.

The package has three parts:

- **Policy authorization** (`toolhive.cedar`, `toolhive.entities`, `toolhive.authorizer`). A small engine for a subset of the Cedar policy language decides whether an MCP operation is allowed. The decision can use the caller's JWT claims and the tool call's arguments.
- **WSGI middleware** (`toolhive.middleware`, `toolhive.authz_config`). It reads JSON-RPC requests and maps MCP methods to features and operations. When a request is denied, it answers `403 Forbidden` with a JSON-RPC error.
- **Client configuration** (`toolhive.appconfig`, `toolhive.clients`, `toolhive.client_editor`). It finds the configuration files of supported MCP clients and adds or removes MCP server entries in them. The supported clients are VS Code, VS Code Insiders, Cursor and Roo Code.

## Installation

```
pip install .
```

To run the tests:

```
pip install .[test]
pytest
```

## Authorizing requests

```python
from toolhive.authorizer import CedarAuthorizer, CedarAuthorizerConfig, MCPFeature, MCPOperation

authorizer = CedarAuthorizer(CedarAuthorizerConfig(
    policies=[
        'permit(principal, action == Action::"call_tool", resource == Tool::"weather") '
        'when { context.claim_name == "John Doe" };',
    ],
    entities_json="[]",
))

claims = {"sub": "user123", "name": "John Doe"}
allowed = authorizer.authorize_with_claims(
    claims, MCPFeature.TOOL, MCPOperation.CALL, "weather", None
)
```

The principal is `Client::<sub>`. Each feature and operation maps to one action and one resource:

| Feature / operation | Action | Resource |
|---|---|---|
| tool / call | `Action::"call_tool"` | `Tool::"<name>"` |
| prompt / get | `Action::"get_prompt"` | `Prompt::"<name>"` |
| resource / read | `Action::"read_resource"` | `Resource::"<uri>"` |
| any / list | `Action::"list_<feature>s"` | `FeatureType::"<feature>"` |

For `Resource`, the URI's `: / \ ? & = # .` and spaces become `_`; see `sanitize_uri`. Any other combination raises `AuthzError`.

Names in the policy context:

- Claims appear with a `claim_` prefix.
- Tool arguments appear with an `arg_` prefix.
- An argument that is not a string, boolean or number appears only as `arg_<name>_present = true`.

Errors:

- Claims that are missing, or that carry no non-empty `sub`, raise `MissingPrincipalError`.
- A policy that fails to evaluate raises `AuthzError`.
- An empty policy list raises `NoPoliciesError`.

The evaluation rules are:

- The default is deny.
- Any matching `forbid` policy overrides every `permit`.

`is_authorized` takes `"Type::ID"` strings directly. `add_entity`, `remove_entity`, `get_entity`, `update_policies` and `update_entities` manage the authorizer's state. That state is guarded by a lock.

### Supported policy language

`toolhive.cedar.parse_policy` accepts the following:

- **Annotations.** `@name("...")` annotations, which are ignored.
- **Effects.** `permit` or `forbid`.
- **Scopes.** `==`, `in`, `in [...]` (action only), `is` and `is ... in`.
- **Conditions.** Any number of `when { ... }` and `unless { ... }` clauses.
- **Expressions.**
  - Literals: booleans, longs, strings, sets `[...]`, records `{...}` and `decimal("...")`.
  - Entity references.
  - Attribute access with `.name` and `["name"]`.
  - Operators: `has`, `in`, `== != < <= > >=`, `+ - *`, `! && ||` and `if ... then ... else`.
  - Set methods: `contains`, `containsAll`, `containsAny`, `isEmpty`.
  - Decimal comparison methods.

`entities_from_json` reads entities in Cedar's JSON form, a list of `{"uid", "attrs", "parents", "tags"}` objects.

## Middleware

`AuthorizationMiddleware(app, authorizer)` wraps a WSGI application. The middleware does not verify tokens. It expects already validated JWT claims in the WSGI environ under the key `toolhive.claims` (`toolhive.middleware.CLAIMS_ENVIRON_KEY`). Put them there in a layer that runs before it.

`toolhive.authz_config.middleware_from_file` loads a configuration and returns a function that wraps an application. The file may be JSON (`.json` or no extension) or YAML (`.yaml` or `.yml`):

```yaml
version: "1.0"
type: cedarv1
cedar:
  policies:
    - 'permit(principal, action == Action::"call_tool", resource == Tool::"weather");'
  entities_json: "[]"
```

```python
from toolhive.authz_config import middleware_from_file

wrap = middleware_from_file("authz.yaml")
app = wrap(my_wsgi_app)
```

`load_config` and `AuthzConfig.validate` raise `ValueError` in these cases:

- the version is missing;
- the type is missing or unsupported;
- the `cedar` section is missing;
- the policy list is empty.

These requests pass through unchecked:

- non-POST requests;
- requests whose content type is not `application/json`;
- paths ending in `/sse`;
- bodies that are not a JSON-RPC request;
- unknown methods;
- `ping`, `initialize` and `progress/update`.

The request body is kept for the wrapped application.

## Client configuration files

```python
from toolhive.appconfig import get_config
from toolhive.clients import find_client_configs, generate_mcp_server_url, upsert

url = generate_mcp_server_url("localhost", 8080, "my-server")  # http://localhost:8080/sse#my-server
for config_file in find_client_configs(get_config()):
    upsert(config_file, "my-server", url)
```

`find_client_configs` returns only the files that exist. A file that is not valid JSON raises `ValueError`. Its `integrations` and `home` arguments let you choose other client definitions and another home directory. For VS Code and VS Code Insiders, `upsert` writes `"type": "sse"` next to the URL.

### Application settings

The application settings live in `toolhive/config.yaml` under the user's configuration directory:

- `$XDG_CONFIG_HOME` if it is set;
- otherwise `~/.config`, `~/Library/Application Support` or `%LOCALAPPDATA%`, depending on the platform.

`default_config_path()` gives the exact path.

`load_or_create_config` creates the file when it is missing. It then reads one line from the given stream, or stdin. Only `y` or `Y` enables `auto_discovery`. With auto-discovery off, only the clients named in `registered_clients` are considered. A stored `provider_type` of `basic` is rewritten to `encrypted`. `get_config()` loads the settings once per process.

### Editing a file directly

`JSONConfigUpdater` edits one file and holds a file lock (`<path>.lock`) while it does so. If the lock cannot be taken within one second, it raises `TimeoutError`:

```python
from toolhive.client_editor import JSONConfigUpdater, MCPServer

updater = JSONConfigUpdater(path="settings.json", mcp_servers_path_prefix="/mcp/servers")
updater.upsert("my-server", MCPServer(url=url, type="sse"))
updater.remove("my-server")
```

Input may contain `//` and `/* */` comments and trailing commas; see `parse_hujson`. The file is written back as plain tab-indented JSON, so comments are not kept. Missing objects along the prefix are created; see `ensure_path_exists`.

## What this package does not do

- There is no command-line tool.
- There is no MCP server, proxy or transport. The middleware must be mounted in your own WSGI application.
- JWTs are not parsed or verified. Claims must be supplied already validated.
- Secrets are not managed. `provider_type` is only stored in the settings file.
- The policy engine covers only the language subset listed above. It has no schema validation, no `like`, no IP extension and no tag operators.