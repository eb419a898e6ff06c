"""Editing MCP server entries in JSON (with comments) client configuration files."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import filelock

logger = logging.getLogger(__name__)

LOCK_TIMEOUT = 1.0
_LOCK_POLL_INTERVAL = 0.1


@dataclass
class MCPServer:
    """An MCP server entry in a client configuration file."""

    url: str = ""
    type: str = ""

    def to_dict(self) -> dict[str, str]:
        """The JSON form of the entry, leaving out empty fields."""
        result = {}
        if self.url:
            result["url"] = self.url
        if self.type:
            result["type"] = self.type
        return result


def _drop_trailing_comma(pieces: list[str]) -> None:
    trailing: list[str] = []
    while pieces and pieces[-1].isspace():
        trailing.append(pieces.pop())
    if pieces and pieces[-1] == ",":
        pieces.pop()
    pieces.extend(reversed(trailing))


def _strip_extensions(text: str) -> str:
    """Remove comments and trailing commas, leaving standard JSON."""
    pieces: list[str] = []
    pos = 0
    length = len(text)
    while pos < length:
        char = text[pos]
        if char == '"':
            end = pos + 1
            while end < length and text[end] != '"':
                end += 2 if text[end] == "\\" else 1
            if end >= length:
                raise ValueError("unterminated string")
            pieces.append(text[pos : end + 1])
            pos = end + 1
        elif text.startswith("//", pos):
            newline = text.find("\n", pos)
            pos = length if newline < 0 else newline
        elif text.startswith("/*", pos):
            close = text.find("*/", pos + 2)
            if close < 0:
                raise ValueError("unterminated block comment")
            pieces.append(" ")
            pos = close + 2
        else:
            if char in "}]":
                _drop_trailing_comma(pieces)
            pieces.append(char)
            pos += 1
    return "".join(pieces)


def parse_hujson(text: str | bytes) -> Any:
    """Parse JSON that may contain comments and trailing commas."""
    if isinstance(text, bytes):
        text = text.decode("utf-8")
    try:
        return json.loads(_strip_extensions(text))
    except json.JSONDecodeError as exc:
        raise ValueError(f"invalid JSON: {exc}") from exc


def _format(data: Any) -> str:
    return json.dumps(data, indent="\t") + "\n"


def _pointer_parts(pointer: str) -> list[str]:
    parts = pointer.split("/")
    if parts and parts[0] == "":
        parts = parts[1:]
    return [part.replace("~1", "/").replace("~0", "~") for part in parts]


def _parent(data: Any, parts: list[str]) -> dict[str, Any]:
    node = data
    for part in parts[:-1]:
        if not isinstance(node, dict) or part not in node:
            raise KeyError(f"path segment {part!r} does not exist")
        node = node[part]
    if not isinstance(node, dict):
        raise KeyError("parent of the target is not an object")
    return node


def _patch_add(data: Any, pointer: str, value: Any) -> None:
    parts = _pointer_parts(pointer)
    _parent(data, parts)[parts[-1]] = value


def _patch_remove(data: Any, pointer: str) -> None:
    parts = _pointer_parts(pointer)
    parent = _parent(data, parts)
    if parts[-1] not in parent:
        raise KeyError(f"{pointer} does not exist")
    del parent[parts[-1]]


def _load(content: str) -> Any:
    return parse_hujson(content) if content.strip() else {}


def ensure_path_exists(content: str | bytes, path: str) -> str:
    """Return the content with every object along ``path`` present, formatted.

    ``path`` is a JSON pointer such as "/mcp/servers"; missing segments are
    created as empty objects.
    """
    if isinstance(content, bytes):
        content = content.decode("utf-8")
    data = _load(content)
    segments = path.split("/")
    if path.startswith("/"):
        segments = segments[1:]
    node = data
    for segment in segments:
        if not isinstance(node, dict):
            logger.error("Failed to patch file: %r is not an object", segment)
            break
        node = node.setdefault(segment, {})
    return _format(data)


@dataclass
class JSONConfigUpdater:
    """Adds and removes MCP servers in a JSON client configuration file."""

    path: str | os.PathLike[str]
    mcp_servers_path_prefix: str

    def _lock(self) -> filelock.FileLock:
        return filelock.FileLock(f"{os.fspath(self.path)}.lock")

    def _acquire(self, lock: filelock.FileLock) -> None:
        try:
            lock.acquire(timeout=LOCK_TIMEOUT, poll_interval=_LOCK_POLL_INTERVAL)
        except filelock.Timeout as exc:
            raise TimeoutError(
                f"failed to acquire lock: timeout after {LOCK_TIMEOUT}s"
            ) from exc

    def _read(self) -> str:
        try:
            return Path(self.path).read_text(encoding="utf-8")
        except OSError as exc:
            logger.error("Failed to read file: %s", exc)
            return ""

    def _write(self, text: str) -> None:
        try:
            Path(self.path).write_text(text, encoding="utf-8")
        except OSError as exc:
            logger.error("Failed to write file: %s", exc)

    def upsert(self, server_name: str, server: MCPServer) -> None:
        """Insert or replace the named MCP server entry."""
        lock = self._lock()
        self._acquire(lock)
        try:
            try:
                data = _load(ensure_path_exists(self._read(), self.mcp_servers_path_prefix))
            except ValueError as exc:
                logger.error("Failed to parse file: %s", exc)
                return
            try:
                _patch_add(data, f"{self.mcp_servers_path_prefix}/{server_name}", server.to_dict())
            except KeyError as exc:
                logger.error("Failed to patch file: %s", exc)
            self._write(_format(data))
            logger.info(
                "Successfully updated the client config file for MCPServer %s", server_name
            )
        finally:
            lock.release()

    def remove(self, server_name: str) -> None:
        """Remove the named MCP server entry."""
        lock = self._lock()
        self._acquire(lock)
        try:
            try:
                data = _load(self._read())
            except ValueError as exc:
                logger.error("Failed to parse file: %s", exc)
                return
            try:
                _patch_remove(data, f"{self.mcp_servers_path_prefix}/{server_name}")
            except KeyError as exc:
                logger.error("Failed to patch file: %s", exc)
            self._write(_format(data))
            logger.info(
                "Successfully removed the MCPServer %s from the client config file", server_name
            )
        finally:
            lock.release()