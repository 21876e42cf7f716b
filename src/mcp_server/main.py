"""MCP Server - stdio entrypoint.

The agent launches this process and speaks JSON-RPC over its stdin and
stdout. Logs go to stderr. Exit status: 0 on EOF or graceful shutdown,
1 on stream failure, 2 on invalid configuration.
"""

import asyncio
import signal
import sys
from typing import Optional

from shared.config import ConfigError, ServerConfig, get_settings
from shared.logging import get_logger, setup_logging
from shared.secrets import SecretStore, SecretStoreError
from mcp_server.audit import AuditLogger
from mcp_server.engine import MCPEngine, StreamError
from mcp_server.redaction import Redactor
from mcp_server.registry import ToolRegistry
from mcp_server.router import ToolRouter
from tools import load_all_tools

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_STREAM_ERROR = 1
EXIT_CONFIG_ERROR = 2

# Tool results can be large single lines.
STREAM_LIMIT = 16 * 1024 * 1024


def build_engine(
    config: ServerConfig,
    redactor: Optional[Redactor] = None,
    cancel_event: Optional[asyncio.Event] = None,
) -> MCPEngine:
    """Wire registry, audit, router and engine from configuration."""
    redactor = redactor or Redactor(workspace_root=config.workspace_path)
    registry = ToolRegistry.from_config(config, load_all_tools())
    audit_logger = AuditLogger(
        log_path=config.data_dir / "audit.log",
        enabled=config.audit_enabled,
        redactor=redactor,
    )
    router = ToolRouter(registry, audit_logger=audit_logger, redactor=redactor)
    return MCPEngine(
        router,
        max_concurrency=config.max_concurrency,
        shutdown_grace_seconds=config.shutdown_grace_seconds,
        cancel_event=cancel_event,
    )


async def load_redactor(config: ServerConfig) -> Redactor:
    """Build a redactor seeded with the current secret values."""
    store = SecretStore(config.data_dir)
    try:
        secrets = await store.all()
    except SecretStoreError as e:
        logger.warning("Secret store unavailable, redacting paths only", error=str(e))
        secrets = {}
    return Redactor(secrets, workspace_root=config.workspace_path)


async def open_stdio() -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:
    """Wrap the process stdin/stdout in asyncio streams."""
    loop = asyncio.get_running_loop()

    reader = asyncio.StreamReader(limit=STREAM_LIMIT)
    await loop.connect_read_pipe(lambda: asyncio.StreamReaderProtocol(reader), sys.stdin)

    transport, protocol = await loop.connect_write_pipe(
        asyncio.streams.FlowControlMixin, sys.stdout
    )
    writer = asyncio.StreamWriter(transport, protocol, reader, loop)
    return reader, writer


async def run(config: ServerConfig) -> int:
    """Serve MCP on stdio until EOF, a signal, or stream failure."""
    redactor = await load_redactor(config)
    engine = build_engine(config, redactor)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, engine.request_shutdown)
        except (NotImplementedError, RuntimeError):
            logger.debug("Signal handlers unavailable", signal=sig.name)

    try:
        reader, writer = await open_stdio()
        await engine.serve(reader, writer)
    except (StreamError, OSError) as e:
        logger.error("MCP server stream failed", error=str(e))
        return EXIT_STREAM_ERROR

    return EXIT_OK


def main() -> None:
    """Run the MCP server on stdio."""
    try:
        config = get_settings()
    except ConfigError as e:
        setup_logging(stream=sys.stderr)
        logger.error("Invalid configuration", error=str(e))
        sys.exit(EXIT_CONFIG_ERROR)

    setup_logging(config.log_level, json_output=config.json_logs, stream=sys.stderr)

    try:
        config.ensure_dirs()
    except OSError as e:
        logger.error("Cannot create workspace directories", error=str(e))
        sys.exit(EXIT_CONFIG_ERROR)

    logger.info(
        "Starting MCP server",
        workspace=str(config.workspace_path),
        features=sorted(config.features),
    )
    sys.exit(asyncio.run(run(config)))


if __name__ == "__main__":
    main()
