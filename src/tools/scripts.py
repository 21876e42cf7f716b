"""Script catalogue tools.

Scripts are ``.star`` files in the scripts directory. Metadata comes from
header comments::

    # @description: Fetch the weather
    # @secrets: WEATHER_API_KEY, OTHER_KEY

Executing scripts is handled elsewhere; these tools only describe them.
"""

import hashlib
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, Field

from shared.models import ToolDescriptor
from shared.schema import object_schema
from tools.base import ToolError, ToolSpec, confine

SCRIPT_SUFFIX = ".star"


class ScriptInfo(BaseModel):
    """Script metadata, optionally with its source."""
    name: str
    hash: str
    description: str = ""
    required_secrets: list[str] = Field(default_factory=list)
    source: Optional[str] = None


def parse_script_metadata(source: str) -> tuple[str, list[str]]:
    """Extract ``@description`` and ``@secrets`` from comment lines."""
    description = ""
    secrets: list[str] = []
    for line in source.splitlines():
        line = line.strip()
        if not line.startswith("#"):
            continue
        line = line.lstrip("#").strip()
        if line.startswith("@description:"):
            description = line.removeprefix("@description:").strip()
        elif line.startswith("@secrets:"):
            secrets.extend(
                s.strip() for s in line.removeprefix("@secrets:").split(",") if s.strip()
            )
    return description, secrets


def load_script(scripts_dir: Path, name: str, include_source: bool = False) -> ScriptInfo:
    """
    Load one script's metadata.

    Raises:
        ToolError: If the name escapes the directory or the script is missing
    """
    if not name.endswith(SCRIPT_SUFFIX):
        name += SCRIPT_SUFFIX
    path = confine(scripts_dir, name)
    if not path.is_file():
        raise ToolError(f"script not found: {name}")
    source = path.read_text(encoding="utf-8")
    description, secrets = parse_script_metadata(source)
    return ScriptInfo(
        name=path.name,
        hash="sha256:" + hashlib.sha256(source.encode("utf-8")).hexdigest(),
        description=description,
        required_secrets=secrets,
        source=source if include_source else None,
    )


def list_scripts(scripts_dir: Path) -> list[ScriptInfo]:
    if not scripts_dir.is_dir():
        return []
    return [
        load_script(scripts_dir, path.name)
        for path in sorted(scripts_dir.glob(f"*{SCRIPT_SUFFIX}"))
        if path.is_file()
    ]


def script_list_tool(scripts_dir: Path) -> ToolDescriptor:
    def handler(args: dict[str, Any]) -> dict[str, Any]:
        scripts = list_scripts(scripts_dir)
        return {
            "scripts": [s.model_dump(exclude={"source"}) for s in scripts],
            "count": len(scripts),
        }

    return ToolDescriptor(
        name="script_list",
        description="List all available Starlark scripts with their metadata",
        input_schema=object_schema(),
        handler=handler,
    )


TOOLS = [
    ToolSpec(
        name="script_list",
        factory=script_list_tool,
        required_flags=frozenset({"scripts"}),
        paths=("scripts_dir",),
    ),
]
