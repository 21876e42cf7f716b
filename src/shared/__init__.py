"""Shared configuration, logging and data models for OpenPact."""

from shared.models import (
    AccessCheck,
    AccessStatus,
    JsonRpcRequest,
    JsonRpcResponse,
    TokenPair,
    ToolDescriptor,
)
from shared.config import ConfigError, ServerConfig, get_settings
from shared.logging import get_logger, setup_logging

__all__ = [
    "AccessCheck",
    "AccessStatus",
    "JsonRpcRequest",
    "JsonRpcResponse",
    "TokenPair",
    "ToolDescriptor",
    "ConfigError",
    "ServerConfig",
    "get_settings",
    "get_logger",
    "setup_logging",
]
