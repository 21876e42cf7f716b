"""Shared fixtures for OpenPact tests."""

import asyncio
import json
from datetime import timedelta
from typing import Any, Callable, Iterable, Optional

import pytest

from shared.config import ServerConfig
from shared.models import ToolDescriptor
from shared.schema import object_schema

TEST_JWT_SECRET = "test-jwt-secret-for-openpact-tests"


@pytest.fixture
def workspace(tmp_path):
    return tmp_path / "workspace"


@pytest.fixture
def config(workspace) -> ServerConfig:
    cfg = ServerConfig(
        workspace_path=workspace,
        features="scripts",
        dev_mode=True,
        jwt_secret=TEST_JWT_SECRET,
        access_expiry=timedelta(minutes=15),
        refresh_expiry=timedelta(hours=1),
        audit_enabled=False,
    )
    cfg.ensure_dirs()
    return cfg


def make_tool(
    name: str,
    handler: Callable[[dict[str, Any]], Any],
    properties: Optional[dict[str, Any]] = None,
    required: Optional[list[str]] = None,
) -> ToolDescriptor:
    return ToolDescriptor(
        name=name,
        description=f"Test tool {name}",
        input_schema=object_schema(properties, required),
        handler=handler,
    )


class MemoryWriter:
    """In-memory stand-in for an ``asyncio.StreamWriter``."""

    def __init__(self) -> None:
        self.buffer = bytearray()
        self.writes = 0
        self.closed = False

    def write(self, data: bytes) -> None:
        if self.closed:
            raise RuntimeError("write after close")
        self.buffer.extend(data)
        self.writes += 1

    async def drain(self) -> None:
        await asyncio.sleep(0)

    def close(self) -> None:
        self.closed = True

    async def wait_closed(self) -> None:
        return None

    def lines(self) -> list[str]:
        return [line for line in self.buffer.decode("utf-8").split("\n") if line]

    def messages(self) -> list[dict[str, Any]]:
        return [json.loads(line) for line in self.lines()]

    def by_id(self) -> dict[Any, dict[str, Any]]:
        return {m["id"]: m for m in self.messages()}


def request_line(method: str, request_id: Any = None, params: Any = None, notification: bool = False) -> bytes:
    message: dict[str, Any] = {"jsonrpc": "2.0", "method": method}
    if not notification:
        message["id"] = request_id
    if params is not None:
        message["params"] = params
    return json.dumps(message).encode("utf-8") + b"\n"


def feed(lines: Iterable[bytes], eof: bool = True, limit: int = 2 ** 16) -> asyncio.StreamReader:
    reader = asyncio.StreamReader(limit=limit)
    for line in lines:
        reader.feed_data(line)
    if eof:
        reader.feed_eof()
    return reader
