"""WSGI middleware that authorizes MCP JSON-RPC requests with Cedar policies."""

from __future__ import annotations

import io
import json
import math
from typing import Any, Callable, Iterable, Mapping

from toolhive.authorizer import AuthzError, CedarAuthorizer, MCPFeature, MCPOperation

CLAIMS_ENVIRON_KEY = "toolhive.claims"
SSE_ENDPOINT = "/sse"

MCP_METHOD_TO_FEATURE_OPERATION: dict[str, tuple[MCPFeature | str, MCPOperation | str]] = {
    "tools/call": (MCPFeature.TOOL, MCPOperation.CALL),
    "tools/list": (MCPFeature.TOOL, MCPOperation.LIST),
    "prompts/get": (MCPFeature.PROMPT, MCPOperation.GET),
    "prompts/list": (MCPFeature.PROMPT, MCPOperation.LIST),
    "resources/read": (MCPFeature.RESOURCE, MCPOperation.READ),
    "resources/list": (MCPFeature.RESOURCE, MCPOperation.LIST),
    "features/list": ("", MCPOperation.LIST),
    "ping": ("", ""),
    "progress/update": ("", ""),
    "initialize": ("", ""),
}

_ALWAYS_ALLOWED = frozenset({"ping", "progress/update", "initialize"})

StartResponse = Callable[..., Any]
WSGIApp = Callable[[dict, StartResponse], Iterable[bytes]]


def extract_resource_and_arguments(
    method: str, params: Any
) -> tuple[str, dict[str, Any] | None]:
    """Pick the resource id and tool arguments out of JSON-RPC params."""
    resource_id = ""
    arguments = None
    if not isinstance(params, dict):
        return resource_id, arguments
    key = {"tools/call": "name", "prompts/get": "name", "resources/read": "uri"}.get(method)
    if key is not None and isinstance(params.get(key), str):
        resource_id = params[key]
    if method == "tools/call" and isinstance(params.get("arguments"), dict):
        arguments = params["arguments"]
    return resource_id, arguments


def _decode_request(body: bytes) -> tuple[str, Any, Any] | None:
    """Return (method, params, id) for a JSON-RPC request, else None."""
    try:
        data = json.loads(body)
    except ValueError:
        return None
    if not isinstance(data, dict) or data.get("jsonrpc") != "2.0":
        return None
    method = data.get("method")
    if not isinstance(method, str) or not method:
        return None
    msg_id = data.get("id")
    if msg_id is not None:
        if isinstance(msg_id, bool) or not isinstance(msg_id, (str, int, float)):
            return None
        if isinstance(msg_id, float):
            if not math.isfinite(msg_id):
                return None
            msg_id = int(msg_id)
    return method, data.get("params"), msg_id


class AuthorizationMiddleware:
    """Wraps a WSGI app, letting through only MCP requests the policies allow.

    JWT claims are read from the WSGI environ under CLAIMS_ENVIRON_KEY.
    """

    def __init__(self, app: WSGIApp, authorizer: CedarAuthorizer) -> None:
        self.app = app
        self.authorizer = authorizer

    def _skip_before_body(self, environ: Mapping[str, Any]) -> bool:
        if environ.get("REQUEST_METHOD") != "POST":
            return True
        if not environ.get("CONTENT_TYPE", "").startswith("application/json"):
            return True
        return environ.get("PATH_INFO", "").endswith(SSE_ENDPOINT)

    def __call__(self, environ: dict, start_response: StartResponse) -> Iterable[bytes]:
        if self._skip_before_body(environ):
            return self.app(environ, start_response)

        try:
            stream = environ["wsgi.input"]
            length = environ.get("CONTENT_LENGTH")
            body = stream.read(int(length)) if length else stream.read()
        except (KeyError, ValueError, OSError) as exc:
            message = f"Error reading request body: {exc}\n".encode()
            start_response(
                "400 Bad Request",
                [
                    ("Content-Type", "text/plain; charset=utf-8"),
                    ("X-Content-Type-Options", "nosniff"),
                    ("Content-Length", str(len(message))),
                ],
            )
            return [message]
        environ["wsgi.input"] = io.BytesIO(body)
        environ["CONTENT_LENGTH"] = str(len(body))

        decoded = _decode_request(body)
        if decoded is None:
            return self.app(environ, start_response)
        method, params, msg_id = decoded

        if method in _ALWAYS_ALLOWED or method not in MCP_METHOD_TO_FEATURE_OPERATION:
            return self.app(environ, start_response)

        feature, operation = MCP_METHOD_TO_FEATURE_OPERATION[method]
        resource_id, arguments = extract_resource_and_arguments(method, params)

        error: AuthzError | None = None
        try:
            authorized = self.authorizer.authorize_with_claims(
                environ.get(CLAIMS_ENVIRON_KEY), feature, operation, resource_id, arguments
            )
        except AuthzError as exc:
            authorized = False
            error = exc

        if not authorized:
            return self._unauthorized(start_response, msg_id, error)
        return self.app(environ, start_response)

    @staticmethod
    def _unauthorized(
        start_response: StartResponse, msg_id: Any, error: Exception | None
    ) -> list[bytes]:
        response: dict[str, Any] = {"jsonrpc": "2.0"}
        if msg_id is not None:
            response["id"] = msg_id
        response["error"] = {"code": 403, "message": str(error) if error else "Unauthorized"}
        payload = (json.dumps(response) + "\n").encode()
        start_response(
            "403 Forbidden",
            [("Content-Type", "application/json"), ("Content-Length", str(len(payload)))],
        )
        return [payload]