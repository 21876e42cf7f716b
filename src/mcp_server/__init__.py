"""MCP Server - JSON-RPC protocol engine, tool registry and routing.

The MCP Server is the authoritative component for tool execution.
It builds the capability-gated registry once, dispatches JSON-RPC
requests to tools, sanitizes failures and audits all executions.
"""

from mcp_server.audit import AuditLogger
from mcp_server.engine import MCPEngine, StreamError
from mcp_server.protocol import ProtocolError
from mcp_server.redaction import Redactor
from mcp_server.registry import ToolRegistry
from mcp_server.router import ToolRouter

__all__ = [
    "AuditLogger",
    "MCPEngine",
    "ProtocolError",
    "Redactor",
    "StreamError",
    "ToolRegistry",
    "ToolRouter",
]
