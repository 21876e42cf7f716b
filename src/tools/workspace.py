"""Workspace file tools.

All paths are relative to the AI data directory; nothing outside it is
reachable.
"""

from pathlib import Path
from typing import Any

from shared.logging import get_logger
from shared.models import ToolDescriptor
from shared.schema import object_schema, string_prop
from tools.base import ToolError, ToolSpec, confine, require_str

logger = get_logger(__name__)

MAX_READ_BYTES = 1024 * 1024


def workspace_read_tool(ai_data_dir: Path) -> ToolDescriptor:
    def handler(args: dict[str, Any]) -> str:
        target = confine(ai_data_dir, require_str(args, "path"))
        if not target.is_file():
            raise ToolError(f"not a file: {args['path']}")
        if target.stat().st_size > MAX_READ_BYTES:
            raise ToolError(f"file exceeds {MAX_READ_BYTES} bytes")
        return target.read_text(encoding="utf-8", errors="replace")

    return ToolDescriptor(
        name="workspace_read",
        description="Read a file from the workspace",
        input_schema=object_schema(
            {"path": string_prop("Path relative to workspace root")},
            required=["path"],
        ),
        handler=handler,
    )


def workspace_write_tool(ai_data_dir: Path) -> ToolDescriptor:
    def handler(args: dict[str, Any]) -> str:
        path = require_str(args, "path")
        content = args.get("content", "")
        target = confine(ai_data_dir, path)
        if target.is_dir():
            raise ToolError(f"is a directory: {path}")
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
        logger.info("Workspace file written", path=path, size=len(content))
        return f"Wrote {len(content)} bytes to {path}"

    return ToolDescriptor(
        name="workspace_write",
        description="Write a file to the workspace",
        input_schema=object_schema(
            {
                "path": string_prop("Path relative to workspace root"),
                "content": string_prop("Content to write"),
            },
            required=["path", "content"],
        ),
        handler=handler,
    )


def workspace_list_tool(ai_data_dir: Path) -> ToolDescriptor:
    def handler(args: dict[str, Any]) -> str:
        target = confine(ai_data_dir, args.get("path") or ".")
        if not target.is_dir():
            raise ToolError(f"not a directory: {args.get('path')}")
        names = sorted(
            entry.name + "/" if entry.is_dir() else entry.name
            for entry in target.iterdir()
        )
        return "\n".join(names)

    return ToolDescriptor(
        name="workspace_list",
        description="List files in a workspace directory",
        input_schema=object_schema(
            {"path": string_prop("Path relative to workspace root (default: root)")},
        ),
        handler=handler,
    )


TOOLS = [
    ToolSpec(name="workspace_read", factory=workspace_read_tool, paths=("ai_data_dir",)),
    ToolSpec(name="workspace_write", factory=workspace_write_tool, paths=("ai_data_dir",)),
    ToolSpec(name="workspace_list", factory=workspace_list_tool, paths=("ai_data_dir",)),
]
