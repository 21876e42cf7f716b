"""MCP Protocol Engine.

Serves JSON-RPC 2.0 over one duplex byte stream. Reading is strictly
sequential; every dispatched request runs as its own task, bounded by a
semaphore, and responses are written through a single lock so concurrent
completions never interleave on the wire.
"""

import asyncio
from typing import Any, Awaitable, Callable, Optional, Protocol

from shared.logging import bind_context, get_logger
from shared.models import JsonRpcRequest, JsonRpcResponse
from mcp_server.protocol import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    METHOD_NOT_FOUND,
    FrameReader,
    ProtocolError,
    encode_response,
    error_response,
    parse_request,
    success_response,
)
from mcp_server.router import ToolRouter, result_text

logger = get_logger(__name__)

PROTOCOL_VERSION = "2024-11-05"
SERVER_NAME = "openpact-mcp"
SERVER_VERSION = "0.1.0"

SHUTDOWN_MESSAGE = "Server shutting down"


class StreamError(Exception):
    """Unrecoverable failure of the input or output stream."""
    pass


class ResponseWriter(Protocol):
    """The subset of ``asyncio.StreamWriter`` the engine writes through."""

    def write(self, data: bytes) -> None: ...

    async def drain(self) -> None: ...

    def close(self) -> None: ...

    async def wait_closed(self) -> None: ...


MethodHandler = Callable[[JsonRpcRequest], Awaitable[Any]]


class MCPEngine:
    """
    JSON-RPC server loop for the MCP protocol.

    ``serve`` returns on input EOF or after a graceful shutdown, and raises
    ``StreamError`` when the stream itself fails. A single bad or failing
    request never ends the loop.
    """

    def __init__(
        self,
        router: ToolRouter,
        max_concurrency: int = 8,
        shutdown_grace_seconds: float = 5.0,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")

        self.router = router
        self.registry = router.registry
        self.max_concurrency = max_concurrency
        self.shutdown_grace_seconds = shutdown_grace_seconds

        self._cancel = cancel_event or asyncio.Event()
        self._finished = asyncio.Event()
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._write_lock = asyncio.Lock()
        self._tasks: set[asyncio.Task] = set()
        self._writer: Optional[ResponseWriter] = None
        self._closed = False
        self._broken: Optional[BaseException] = None

        self._methods: dict[str, MethodHandler] = {
            "initialize": self._initialize,
            "ping": self._ping,
            "tools/list": self._tools_list,
            "tools/call": self._tools_call,
        }

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def is_known_method(self, method: str) -> bool:
        return method in self._methods or method in self.registry

    # ------------------------------------------------------------------
    # Serve loop
    # ------------------------------------------------------------------

    async def serve(self, reader: asyncio.StreamReader, writer: ResponseWriter) -> None:
        """
        Read and dispatch requests until EOF or shutdown.

        Raises:
            StreamError: If reading or writing the stream fails
        """
        self._writer = writer
        frames = FrameReader(reader)
        stop = asyncio.ensure_future(self._cancel.wait())
        logger.info("MCP engine serving", tools=self.registry.names, max_concurrency=self.max_concurrency)

        try:
            while not self._cancel.is_set():
                read = asyncio.ensure_future(frames.read_frame())
                await asyncio.wait({read, stop}, return_when=asyncio.FIRST_COMPLETED)

                if not read.done():
                    read.cancel()
                    await asyncio.gather(read, return_exceptions=True)
                    logger.info("Shutdown requested, no longer reading input")
                    break

                try:
                    frame = read.result()
                except ProtocolError as e:
                    await self._reject(e)
                    continue
                except (OSError, asyncio.IncompleteReadError) as e:
                    self._broken = e
                    logger.error("Input stream failed", error=str(e))
                    break

                if frame is None:
                    logger.info("Input closed")
                    break

                await self._handle_frame(frame)
        finally:
            stop.cancel()
            await self._finish()

        if self._broken is not None:
            raise StreamError(str(self._broken) or type(self._broken).__name__) from self._broken

    def request_shutdown(self) -> None:
        """Signal graceful shutdown. Safe to call from a signal handler."""
        if not self._cancel.is_set():
            logger.info("Graceful shutdown requested")
        self._cancel.set()

    async def shutdown(self) -> None:
        """Request shutdown and wait for the serve loop to finish. Idempotent."""
        self.request_shutdown()
        if self._writer is not None:
            await self._finished.wait()

    async def _handle_frame(self, frame: bytes) -> None:
        try:
            request = parse_request(frame)
        except ProtocolError as e:
            await self._reject(e, size=len(frame))
            return

        if request.method.startswith("notifications/"):
            logger.debug("Notification received", method=request.method)
            return

        if not self.is_known_method(request.method):
            if request.is_notification:
                logger.warning("Dropped notification for unknown method", method=request.method)
                return
            logger.warning("Method not found", method=request.method, request_id=request.id)
            await self._write(error_response(request.id, METHOD_NOT_FOUND, f"Method not found: {request.method}"))
            return

        task = asyncio.create_task(self._run(request))
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    async def _reject(self, error: ProtocolError, size: Optional[int] = None) -> None:
        if error.answerable:
            logger.warning("Rejected message", code=error.code, request_id=error.request_id)
            await self._write(error.to_response())
        else:
            logger.warning("Dropped unparseable message", code=error.code, size=size)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Request task crashed", error=str(task.exception()))

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def _run(self, request: JsonRpcRequest) -> None:
        bind_context(request_id=request.id, method=request.method)
        responding = False
        try:
            async with self._semaphore:
                response = await self._dispatch(request)
            if response is not None:
                responding = True
                await asyncio.shield(self._write(response))
        except asyncio.CancelledError:
            if not responding and not request.is_notification:
                await self._write(error_response(request.id, INTERNAL_ERROR, SHUTDOWN_MESSAGE))
            raise

    async def _dispatch(self, request: JsonRpcRequest) -> Optional[JsonRpcResponse]:
        try:
            handler = self._methods.get(request.method)
            if handler is not None:
                result = await handler(request)
            else:
                result = await self.router.call(request.method, request.params, request.id)
        except ProtocolError as e:
            if request.is_notification:
                logger.warning("Notification failed", method=request.method, code=e.code)
                return None
            e.request_id = request.id
            return e.to_response()
        except Exception as e:
            message = self.router.redactor.sanitize(str(e))
            logger.error("Request failed", method=request.method, request_id=request.id, error=message)
            if request.is_notification:
                return None
            return error_response(request.id, INTERNAL_ERROR, f"Internal error: {message}")

        if request.is_notification:
            return None
        return success_response(request.id, result)

    async def _initialize(self, request: JsonRpcRequest) -> dict[str, Any]:
        params = request.params if isinstance(request.params, dict) else {}
        client = params.get("clientInfo") or {}
        logger.info(
            "Client initialized",
            client=client.get("name"),
            client_version=client.get("version"),
            protocol_version=params.get("protocolVersion"),
        )
        return {
            "protocolVersion": PROTOCOL_VERSION,
            "capabilities": {"tools": {"listChanged": False}},
            "serverInfo": {"name": SERVER_NAME, "version": SERVER_VERSION},
        }

    async def _ping(self, request: JsonRpcRequest) -> dict[str, Any]:
        return {}

    async def _tools_list(self, request: JsonRpcRequest) -> dict[str, Any]:
        return {"tools": self.registry.list_tools()}

    async def _tools_call(self, request: JsonRpcRequest) -> dict[str, Any]:
        params = request.params
        if not isinstance(params, dict) or not isinstance(params.get("name"), str):
            raise ProtocolError(INVALID_PARAMS, "Invalid params: 'name' is required", request.id)

        result = await self.router.call(params["name"], params.get("arguments"), request.id)
        return {"content": [{"type": "text", "text": result_text(result)}]}

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    async def _write(self, response: JsonRpcResponse) -> None:
        data = encode_response(response)
        async with self._write_lock:
            if self._closed or self._broken is not None or self._writer is None:
                logger.warning("Response dropped, output unavailable", request_id=response.id)
                return
            try:
                self._writer.write(data)
                await self._writer.drain()
            except (OSError, RuntimeError) as e:
                self._broken = e
                logger.error("Output stream failed", error=str(e))
                self._cancel.set()

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def _drain(self) -> None:
        """Let in-flight requests finish, bounded by the grace period once cancelled."""
        pending = {task for task in self._tasks if not task.done()}

        if pending and not self._cancel.is_set():
            stop = asyncio.ensure_future(self._cancel.wait())
            try:
                while pending and not stop.done():
                    done, _ = await asyncio.wait(pending | {stop}, return_when=asyncio.FIRST_COMPLETED)
                    pending -= done
            finally:
                stop.cancel()

        if pending and self._broken is None:
            logger.info(
                "Waiting for in-flight requests",
                count=len(pending),
                grace_seconds=self.shutdown_grace_seconds,
            )
            _, pending = await asyncio.wait(pending, timeout=self.shutdown_grace_seconds)

        if pending:
            logger.warning("Cancelling in-flight requests", count=len(pending))
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

    async def _finish(self) -> None:
        try:
            await self._drain()
            if self.router.audit_logger is not None:
                await self.router.audit_logger.flush()
        finally:
            async with self._write_lock:
                if not self._closed and self._writer is not None:
                    self._closed = True
                    try:
                        self._writer.close()
                        await self._writer.wait_closed()
                    except (OSError, RuntimeError) as e:
                        logger.warning("Error closing output", error=str(e))
            self._finished.set()
            logger.info("MCP engine stopped")
