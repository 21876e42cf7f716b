"""Base types for MCP tools.

A tool is declared as a ``ToolSpec``: a name, the feature flags it needs,
the config paths it needs, and a factory. The registry calls the factory
with exactly those paths and nothing else, so a handler can never reach
configuration it did not declare.

Tools must:
- Raise ``ToolError`` for expected failures
- Confine file access to the roots they were given
- Never read secrets or configuration directly
"""

from pathlib import Path
from typing import Any, Callable, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from shared.models import ToolDescriptor

# Config attributes a tool may request.
TOOL_PATHS = frozenset({"workspace_path", "data_dir", "scripts_dir", "ai_data_dir"})

ToolFactory = Callable[..., ToolDescriptor]


class ToolError(Exception):
    """An expected tool failure; the message is returned (sanitized) to the caller."""
    pass


class ToolSpec(BaseModel):
    """Unbound tool recipe, bound into a ``ToolDescriptor`` by the registry."""
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    name: str
    factory: ToolFactory
    required_flags: frozenset[str] = Field(default_factory=frozenset)
    paths: tuple[str, ...] = ()

    @field_validator("paths")
    @classmethod
    def _known_paths(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        unknown = set(value) - TOOL_PATHS
        if unknown:
            raise ValueError(f"unknown tool paths: {sorted(unknown)}")
        return value

    def bind(self, **paths: Path) -> ToolDescriptor:
        descriptor = self.factory(**paths)
        if descriptor.name != self.name:
            raise ValueError(f"factory for '{self.name}' produced '{descriptor.name}'")
        return descriptor.model_copy(update={"required_flags": self.required_flags})


def confine(root: Path, relative: Optional[str]) -> Path:
    """
    Resolve ``relative`` under ``root`` and refuse anything that escapes it.

    Raises:
        ToolError: If the resolved path is outside the root
    """
    root = root.resolve()
    target = (root / (relative or ".")).resolve()
    if target != root and root not in target.parents:
        raise ToolError("path escapes workspace")
    return target


def require_str(args: dict[str, Any], key: str) -> str:
    value = args.get(key)
    if not isinstance(value, str) or not value:
        raise ToolError(f"{key} is required")
    return value
