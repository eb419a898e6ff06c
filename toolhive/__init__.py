"""Cedar-policy authorization for MCP requests, WSGI middleware, and MCP client configuration management."""

__version__ = "0.1.0"

__all__ = [
    "appconfig",
    "authorizer",
    "authz_config",
    "cedar",
    "client_editor",
    "clients",
    "entities",
    "middleware",
]