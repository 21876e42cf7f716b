"""Core data models for OpenPact.

This module defines the shared data structures used by the MCP server,
the token authority and the admin gateway.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

JSONRPC_VERSION = "2.0"

RequestId = Union[str, int]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenType(str, Enum):
    """Distinguishes access tokens from refresh tokens."""
    ACCESS = "access"
    REFRESH = "refresh"


class TokenClaims(BaseModel):
    """Claims carried by every OpenPact JWT."""
    sub: str
    type: TokenType
    jti: str
    iat: datetime
    exp: datetime
    iss: str = "openpact"


class TokenPair(BaseModel):
    """
    Access + refresh credentials issued together.

    The access token is a short-lived bearer credential; the refresh token
    is single-purpose and only exchanges for a new pair.
    """
    model_config = ConfigDict(frozen=True)

    access_token: str = Field(repr=False)
    refresh_token: str = Field(repr=False)
    access_expiry: datetime
    refresh_expiry: datetime

    @model_validator(mode="after")
    def _check_order(self) -> "TokenPair":
        if self.access_expiry >= self.refresh_expiry:
            raise ValueError("access_expiry must precede refresh_expiry")
        return self


class AccessStatus(str, Enum):
    """Outcome of an access token check."""
    VALID = "valid"
    EXPIRED = "expired"
    INVALID = "invalid"


class AccessCheck(BaseModel):
    """Result of validating an access token. Claims are set only when valid."""
    status: AccessStatus
    claims: Optional[TokenClaims] = None

    @property
    def valid(self) -> bool:
        return self.status == AccessStatus.VALID


class JsonRpcError(BaseModel):
    """JSON-RPC error object."""
    code: int
    message: str
    data: Optional[Any] = None


class JsonRpcRequest(BaseModel):
    """
    A JSON-RPC 2.0 request or notification.

    Absence of ``id`` marks a notification, which never receives a response.
    """
    model_config = ConfigDict(extra="ignore")

    jsonrpc: str = JSONRPC_VERSION
    id: Optional[RequestId] = None
    method: str
    params: Optional[Union[dict[str, Any], list[Any]]] = None

    # Set when the payload carried an "id" key, even if its value was null.
    has_id: bool = Field(default=False, exclude=True)

    @property
    def is_notification(self) -> bool:
        return not self.has_id


class JsonRpcResponse(BaseModel):
    """A JSON-RPC 2.0 response carrying either a result or an error."""
    jsonrpc: str = JSONRPC_VERSION
    id: Optional[RequestId]
    result: Optional[Any] = None
    error: Optional[JsonRpcError] = None

    def to_wire(self) -> dict[str, Any]:
        """Serialize with exactly one of result/error present."""
        message: dict[str, Any] = {"jsonrpc": self.jsonrpc, "id": self.id}
        if self.error is not None:
            message["error"] = self.error.model_dump(exclude_none=True)
        else:
            message["result"] = self.result
        return message


class ToolDescriptor(BaseModel):
    """
    A bound, dispatchable tool.

    The handler has already been given the paths it declared; it takes the
    call arguments only. It may be sync (run in a worker thread) or async.
    """
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    name: str
    description: str
    input_schema: dict[str, Any] = Field(default_factory=lambda: {"type": "object", "properties": {}})
    handler: Callable[[dict[str, Any]], Any] = Field(exclude=True)
    required_flags: frozenset[str] = Field(default_factory=frozenset)

    def to_listing(self) -> dict[str, Any]:
        """Format for an MCP ``tools/list`` result."""
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.input_schema,
        }


class ToolResultStatus(str, Enum):
    """Status of tool execution."""
    SUCCESS = "success"
    ERROR = "error"
    VALIDATION_ERROR = "validation_error"
    CANCELLED = "cancelled"


class AuditEntry(BaseModel):
    """
    Audit log entry for tool executions.

    Parameters are stored redacted; error messages are stored sanitized.
    """
    id: str
    timestamp: datetime = Field(default_factory=utcnow)
    tool_name: str
    request_id: Optional[RequestId] = None
    parameters: dict[str, Any] = Field(default_factory=dict)
    status: ToolResultStatus
    error: Optional[str] = None
    execution_time_ms: float = 0
