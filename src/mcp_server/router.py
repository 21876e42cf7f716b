"""Tool Router for MCP Server.

Routes tool calls to the bound handlers in the registry.
Handles validation, execution, error sanitizing and auditing.
"""

import asyncio
import inspect
import json
import time
from typing import Any, Optional

from shared.logging import get_logger
from shared.models import RequestId, ToolDescriptor, ToolResultStatus
from mcp_server.audit import AuditLogger
from mcp_server.protocol import INTERNAL_ERROR, INVALID_PARAMS, METHOD_NOT_FOUND, ProtocolError
from mcp_server.redaction import Redactor
from mcp_server.registry import ToolRegistry
from tools.base import ToolError

logger = get_logger(__name__)


def result_text(result: Any) -> str:
    """Render a handler result as the text of an MCP content block."""
    if isinstance(result, str):
        return result
    return json.dumps(result, indent=2, default=str)


class ToolRouter:
    """
    Routes tool calls to registry handlers.

    Responsibilities:
    - Validate call arguments against schemas
    - Run sync handlers in the default thread pool, await async ones
    - Convert failures into sanitized protocol errors
    - Audit all executions
    """

    def __init__(
        self,
        registry: ToolRegistry,
        audit_logger: Optional[AuditLogger] = None,
        redactor: Optional[Redactor] = None,
    ) -> None:
        self.registry = registry
        self.audit_logger = audit_logger
        self.redactor = redactor or Redactor()

    async def _audit(
        self,
        tool_name: str,
        request_id: Optional[RequestId],
        arguments: Any,
        status: ToolResultStatus,
        error: Optional[str] = None,
        start_time: Optional[float] = None,
    ) -> None:
        if self.audit_logger is None:
            return
        elapsed = (time.monotonic() - start_time) * 1000 if start_time else 0
        await self.audit_logger.log(tool_name, request_id, arguments, status, error, elapsed)

    async def call(
        self,
        tool_name: str,
        arguments: Any,
        request_id: Optional[RequestId] = None,
    ) -> Any:
        """
        Execute a tool call.

        Args:
            tool_name: Registered tool name
            arguments: Call arguments (a JSON object, or None)
            request_id: JSON-RPC id for correlation in logs and audit

        Returns:
            The handler's result

        Raises:
            ProtocolError: METHOD_NOT_FOUND, INVALID_PARAMS or INTERNAL_ERROR
        """
        tool = self.registry.get(tool_name)
        if tool is None:
            raise ProtocolError(METHOD_NOT_FOUND, f"Method not found: {tool_name}", request_id)

        if arguments is None:
            arguments = {}
        if not isinstance(arguments, dict):
            await self._audit(tool_name, request_id, arguments, ToolResultStatus.VALIDATION_ERROR,
                              "arguments must be an object")
            raise ProtocolError(INVALID_PARAMS, "Invalid params: arguments must be an object", request_id)

        errors = self.registry.validate_input(tool_name, arguments)
        if errors:
            await self._audit(tool_name, request_id, arguments, ToolResultStatus.VALIDATION_ERROR,
                              "; ".join(errors))
            raise ProtocolError(
                INVALID_PARAMS,
                "Invalid params",
                request_id,
                data=[self.redactor.sanitize(e) for e in errors],
            )

        logger.debug("Executing tool", tool=tool_name, request_id=request_id)
        start_time = time.monotonic()

        try:
            result = await self._execute(tool, arguments)
        except asyncio.CancelledError:
            await asyncio.shield(self._audit(
                tool_name, request_id, arguments, ToolResultStatus.CANCELLED, start_time=start_time
            ))
            raise
        except ToolError as e:
            message = self.redactor.sanitize(str(e))
            logger.warning("Tool failed", tool=tool_name, request_id=request_id, error=message)
            await self._audit(tool_name, request_id, arguments, ToolResultStatus.ERROR, message, start_time)
            raise ProtocolError(INTERNAL_ERROR, message, request_id) from e
        except Exception as e:
            message = self.redactor.sanitize(f"{type(e).__name__}: {e}")
            logger.error("Tool execution failed", tool=tool_name, request_id=request_id, error=message)
            await self._audit(tool_name, request_id, arguments, ToolResultStatus.ERROR, message, start_time)
            raise ProtocolError(INTERNAL_ERROR, f"Internal error: {message}", request_id) from e

        await self._audit(tool_name, request_id, arguments, ToolResultStatus.SUCCESS, start_time=start_time)
        return result

    async def _execute(self, tool: ToolDescriptor, arguments: dict[str, Any]) -> Any:
        """Execute with support for both sync and async handlers."""
        handler = tool.handler
        if inspect.iscoroutinefunction(handler):
            return await handler(arguments)

        # Run sync handler in thread pool
        loop = asyncio.get_running_loop()
        result = await loop.run_in_executor(None, handler, arguments)
        if inspect.isawaitable(result):
            result = await result
        return result
