"""Built-in MCP tools.

Each module exposes a ``TOOLS`` list of ``ToolSpec``. Specs are unbound:
the registry decides which are enabled for the configured feature flags
and hands each one only the paths it declares.
"""

from tools.base import ToolError, ToolSpec


def load_all_tools() -> list[ToolSpec]:
    """Collect every built-in tool spec. Called once at MCP server startup."""
    from tools import memory, scripts, web, workspace

    return [
        *workspace.TOOLS,
        *memory.TOOLS,
        *scripts.TOOLS,
        *web.TOOLS,
    ]


__all__ = ["ToolError", "ToolSpec", "load_all_tools"]
