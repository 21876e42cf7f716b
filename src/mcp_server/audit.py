"""Audit logging for MCP Server.

Logs all tool executions for debugging and after-the-fact review.
Captures: tool, request id, parameters, timestamp, outcome.
"""

import asyncio
import uuid
from pathlib import Path
from typing import Any, Optional

import aiofiles

from shared.logging import get_logger
from shared.models import AuditEntry, RequestId, ToolResultStatus
from mcp_server.redaction import Redactor

logger = get_logger(__name__)


class AuditLogger:
    """
    Audit logger for MCP tool executions.

    All tool executions are logged with:
    - Tool name and request id
    - Parameters (with sensitive data redaction)
    - Timestamp
    - Result status and sanitized error
    """

    # Parameters that should be redacted in audit logs
    SENSITIVE_PARAMS = {"password", "token", "secret", "api_key", "apikey", "credential"}

    def __init__(
        self,
        log_path: str | Path,
        enabled: bool = True,
        buffer_size: int = 20,
        redactor: Optional[Redactor] = None,
    ) -> None:
        self.log_path = Path(log_path)
        self.enabled = enabled
        self.buffer_size = buffer_size
        self.redactor = redactor or Redactor()
        self._buffer: list[AuditEntry] = []
        self._lock = asyncio.Lock()

        if enabled:
            self.log_path.parent.mkdir(parents=True, exist_ok=True)

    def _redact_sensitive(self, params: Any) -> Any:
        """Redact sensitive parameters and known secret values."""
        if isinstance(params, list):
            return [self._redact_sensitive(item) for item in params]
        if not isinstance(params, dict):
            return self.redactor.sanitize_value(params)

        redacted = {}
        for key, value in params.items():
            if key.lower() in self.SENSITIVE_PARAMS:
                redacted[key] = "[REDACTED]"
            else:
                redacted[key] = self._redact_sensitive(value)
        return redacted

    def create_entry(
        self,
        tool_name: str,
        request_id: Optional[RequestId],
        parameters: Any,
        status: ToolResultStatus,
        error: Optional[str] = None,
        execution_time_ms: float = 0,
    ) -> AuditEntry:
        params = self._redact_sensitive(parameters) if parameters is not None else {}
        if not isinstance(params, dict):
            params = {"args": params}
        return AuditEntry(
            id=str(uuid.uuid4()),
            tool_name=tool_name,
            request_id=request_id,
            parameters=params,
            status=status,
            error=self.redactor.sanitize(error) if error else None,
            execution_time_ms=execution_time_ms,
        )

    async def log(
        self,
        tool_name: str,
        request_id: Optional[RequestId],
        parameters: Any,
        status: ToolResultStatus,
        error: Optional[str] = None,
        execution_time_ms: float = 0,
    ) -> Optional[AuditEntry]:
        """
        Log a tool execution.

        Returns:
            The recorded entry, or None when auditing is disabled
        """
        if not self.enabled:
            return None

        entry = self.create_entry(tool_name, request_id, parameters, status, error, execution_time_ms)

        logger.info(
            "Tool executed",
            audit_id=entry.id,
            tool=entry.tool_name,
            request_id=entry.request_id,
            status=entry.status.value,
            execution_time_ms=round(entry.execution_time_ms, 2),
        )

        async with self._lock:
            self._buffer.append(entry)
            if len(self._buffer) >= self.buffer_size:
                await self._flush()
        return entry

    async def _flush(self) -> None:
        """Flush buffered entries to file."""
        if not self._buffer:
            return

        entries_to_write = self._buffer.copy()
        self._buffer.clear()

        try:
            async with aiofiles.open(self.log_path, "a") as f:
                for entry in entries_to_write:
                    await f.write(entry.model_dump_json() + "\n")
        except OSError as e:
            logger.error("Failed to write audit log", error=str(e))
            # Re-add entries to buffer for retry
            self._buffer.extend(entries_to_write)

    async def flush(self) -> None:
        """Public method to flush audit buffer."""
        async with self._lock:
            await self._flush()
