"""Tool Registry for the MCP server.

Built once at startup from the server configuration and the tool specs.
A tool is included iff every one of its required flags is an enabled
feature. After construction the registry is read-only, so concurrent
handlers can share it without locking.
"""

from types import MappingProxyType
from typing import Any, Iterable, Iterator, Mapping, Optional

from jsonschema import Draft7Validator

from shared.config import ServerConfig
from shared.logging import get_logger
from shared.models import ToolDescriptor
from shared.schema import compile_schema, validation_errors
from tools.base import ToolSpec

logger = get_logger(__name__)


class ToolRegistry:
    """
    Immutable name → tool mapping.

    Responsibilities:
    - Capability gating (feature flags) at construction time
    - Least-privilege binding: each tool gets only the paths it declares
    - O(1) lookup by method name
    - Pre-compiled input validation
    """

    def __init__(self, tools: Iterable[ToolDescriptor]) -> None:
        tools_by_name: dict[str, ToolDescriptor] = {}
        validators: dict[str, Draft7Validator] = {}

        for tool in tools:
            if tool.name in tools_by_name:
                raise ValueError(f"Tool '{tool.name}' is already registered")
            tools_by_name[tool.name] = tool
            validators[tool.name] = compile_schema(tool.input_schema)

        self._tools: Mapping[str, ToolDescriptor] = MappingProxyType(tools_by_name)
        self._validators: Mapping[str, Draft7Validator] = MappingProxyType(validators)

    @classmethod
    def from_config(cls, config: ServerConfig, specs: Iterable[ToolSpec]) -> "ToolRegistry":
        """
        Build the registry for a deployment.

        Args:
            config: Server configuration (features and paths)
            specs: All known tool specs

        Returns:
            Registry holding the enabled, bound tools
        """
        enabled: list[ToolDescriptor] = []
        for spec in specs:
            missing = spec.required_flags - config.features
            if missing:
                logger.debug("Tool disabled", tool=spec.name, missing_flags=sorted(missing))
                continue

            paths = {name: getattr(config, name) for name in spec.paths}
            enabled.append(spec.bind(**paths))
            logger.info("Tool registered", tool=spec.name, paths=list(spec.paths))

        registry = cls(enabled)
        logger.info(
            "Tool registry built",
            tool_count=len(registry),
            features=sorted(config.features),
        )
        return registry

    def get(self, name: str) -> Optional[ToolDescriptor]:
        """Look up a tool by method name."""
        return self._tools.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def __iter__(self) -> Iterator[ToolDescriptor]:
        return iter(self._tools.values())

    @property
    def names(self) -> list[str]:
        return sorted(self._tools)

    def validate_input(self, name: str, arguments: Any) -> list[str]:
        """
        Validate call arguments against the tool's input schema.

        Returns:
            List of error messages, empty when valid
        """
        validator = self._validators.get(name)
        if validator is None:
            return [f"Tool '{name}' not found"]
        return validation_errors(validator, arguments)

    def list_tools(self) -> list[dict[str, Any]]:
        """Tool listings for the MCP ``tools/list`` result, sorted by name."""
        return [self._tools[name].to_listing() for name in self.names]
