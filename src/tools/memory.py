"""Memory tools: the agent's long-term notes, persona and daily journal."""

import re
from pathlib import Path
from typing import Any

from shared.logging import get_logger
from shared.models import ToolDescriptor
from shared.schema import object_schema, string_prop
from tools.base import ToolError, ToolSpec, confine, require_str

logger = get_logger(__name__)

NAMED_FILES = {
    "long-term": "MEMORY.md",
    "soul": "SOUL.md",
    "user-profile": "USER.md",
}
DAILY_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")

FILE_DESCRIPTION = (
    "Memory file: 'long-term' for MEMORY.md, 'soul' for SOUL.md, "
    "'user-profile' for USER.md, or a date like '2026-02-03' for daily notes"
)


def resolve_memory_file(root: Path, name: str) -> Path:
    """Map a memory file name onto its path under ``root``."""
    if name in NAMED_FILES:
        return confine(root, NAMED_FILES[name])
    if DAILY_PATTERN.match(name):
        return confine(root, f"memory/{name}.md")
    raise ToolError(f"unknown memory file: {name}")


def memory_read_tool(ai_data_dir: Path) -> ToolDescriptor:
    def handler(args: dict[str, Any]) -> str:
        path = resolve_memory_file(ai_data_dir, require_str(args, "file"))
        if not path.exists():
            return ""
        return path.read_text(encoding="utf-8")

    return ToolDescriptor(
        name="memory_read",
        description="Read a context or memory file",
        input_schema=object_schema({"file": string_prop(FILE_DESCRIPTION)}, required=["file"]),
        handler=handler,
    )


def memory_write_tool(ai_data_dir: Path) -> ToolDescriptor:
    def handler(args: dict[str, Any]) -> str:
        name = require_str(args, "file")
        path = resolve_memory_file(ai_data_dir, name)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(args.get("content", ""), encoding="utf-8")
        logger.info("Memory written", file=name)
        return f"Wrote memory to {name}"

    return ToolDescriptor(
        name="memory_write",
        description="Write to a context or memory file",
        input_schema=object_schema(
            {
                "file": string_prop(FILE_DESCRIPTION),
                "content": string_prop("Content to write"),
            },
            required=["file", "content"],
        ),
        handler=handler,
    )


TOOLS = [
    ToolSpec(name="memory_read", factory=memory_read_tool, paths=("ai_data_dir",)),
    ToolSpec(name="memory_write", factory=memory_write_tool, paths=("ai_data_dir",)),
]
