"""JSON-RPC 2.0 codec for the MCP server.

Input framing: newline-delimited JSON, or ``Content-Length`` headered
frames as sent by some MCP clients. Output is always one JSON object per
line.
"""

import asyncio
import json
import re
from typing import Any, Optional

from shared.logging import get_logger
from shared.models import JsonRpcError, JsonRpcRequest, JsonRpcResponse, RequestId

logger = get_logger(__name__)

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603

# Best-effort id recovery from a payload that failed to parse.
_ID_PATTERN = re.compile(rb'"id"\s*:\s*("(?:[^"\\]|\\.)*"|-?\d+)')


class ProtocolError(Exception):
    """A request-level failure carrying its JSON-RPC error code."""

    def __init__(
        self,
        code: int,
        message: str,
        request_id: Optional[RequestId] = None,
        data: Optional[Any] = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.request_id = request_id
        self.data = data

    @property
    def answerable(self) -> bool:
        """Whether a response can be correlated to a request."""
        return self.request_id is not None

    def to_response(self) -> JsonRpcResponse:
        return error_response(self.request_id, self.code, self.message, self.data)


def error_response(
    request_id: Optional[RequestId],
    code: int,
    message: str,
    data: Optional[Any] = None,
) -> JsonRpcResponse:
    return JsonRpcResponse(id=request_id, error=JsonRpcError(code=code, message=message, data=data))


def success_response(request_id: Optional[RequestId], result: Any) -> JsonRpcResponse:
    return JsonRpcResponse(id=request_id, result=result)


def recover_id(raw: bytes) -> Optional[RequestId]:
    """
    Pull the top-level ``id`` out of a malformed payload, if one is recognisable.

    Only the text before the first nested object is searched, so an ``id``
    inside ``params`` is never taken for the request's own.
    """
    start = raw.find(b"{")
    if start == -1:
        return None
    nested = raw.find(b"{", start + 1)
    head = raw if nested == -1 else raw[:nested]

    match = _ID_PATTERN.search(head)
    if not match:
        return None
    token = match.group(1)
    try:
        value = json.loads(token)
    except ValueError:
        return None
    return value if isinstance(value, (str, int)) else None


def _valid_id(value: Any) -> bool:
    return value is None or (isinstance(value, (str, int)) and not isinstance(value, bool))


def parse_request(raw: bytes) -> JsonRpcRequest:
    """
    Decode one framed payload into a request.

    Raises:
        ProtocolError: PARSE_ERROR for malformed JSON, INVALID_REQUEST for
            JSON that is not a request object. ``request_id`` is set when
            one could be recovered.
    """
    try:
        message = json.loads(raw)
    except (ValueError, UnicodeDecodeError) as e:
        raise ProtocolError(PARSE_ERROR, "Parse error", request_id=recover_id(raw)) from e

    if not isinstance(message, dict):
        raise ProtocolError(INVALID_REQUEST, "Invalid Request")

    request_id = message.get("id")
    if not _valid_id(request_id):
        raise ProtocolError(INVALID_REQUEST, "Invalid Request")

    if message.get("jsonrpc") != "2.0":
        raise ProtocolError(INVALID_REQUEST, "Invalid Request", request_id=request_id)

    method = message.get("method")
    if not isinstance(method, str) or not method:
        raise ProtocolError(INVALID_REQUEST, "Invalid Request", request_id=request_id)

    params = message.get("params")
    if params is not None and not isinstance(params, (dict, list)):
        raise ProtocolError(INVALID_PARAMS, "Invalid params", request_id=request_id)

    return JsonRpcRequest(
        id=request_id,
        method=method,
        params=params,
        has_id="id" in message,
    )


def encode_response(response: JsonRpcResponse) -> bytes:
    """Serialize one response as a single newline-terminated line."""
    return json.dumps(response.to_wire(), separators=(",", ":"), default=str).encode("utf-8") + b"\n"


class FrameReader:
    """
    Reads framed payloads from an ``asyncio.StreamReader``.

    Blank lines are skipped. A line starting with ``Content-Length:`` opens a
    headered frame; anything else is a complete newline-delimited payload.
    """

    def __init__(self, reader: asyncio.StreamReader) -> None:
        self._reader = reader

    async def read_frame(self) -> Optional[bytes]:
        """
        Return the next payload, or None at EOF.

        Raises:
            ProtocolError: PARSE_ERROR for a line longer than the reader's
                limit; the line has been discarded and reading can go on
            OSError, asyncio.IncompleteReadError: on stream failure
        """
        while True:
            line = await self._read_line()
            if not line:
                return None
            stripped = line.strip()
            if not stripped:
                continue

            if not stripped.lower().startswith(b"content-length:"):
                return stripped

            try:
                length = int(stripped.split(b":", 1)[1].strip())
                if length <= 0:
                    raise ValueError("content length must be positive")
            except ValueError:
                logger.warning("Invalid Content-Length header", header=stripped[:80])
                await self._skip_headers()
                continue

            await self._skip_headers()
            return await self._reader.readexactly(length)

    async def _skip_headers(self) -> None:
        """Consume header lines up to and including the blank separator."""
        while True:
            line = await self._read_line()
            if not line or not line.strip():
                return

    async def _read_line(self) -> bytes:
        """``readline`` that discards an over-limit line instead of failing the stream."""
        try:
            return await self._reader.readuntil(b"\n")
        except asyncio.IncompleteReadError as e:
            return e.partial
        except asyncio.LimitOverrunError as e:
            prefix = await self._reader.read(e.consumed)
            await self._discard_line()

        request_id = recover_id(prefix)
        logger.warning("Discarded oversized line", prefix_size=len(prefix), request_id=request_id)
        raise ProtocolError(PARSE_ERROR, "Parse error: message too large", request_id)

    async def _discard_line(self) -> None:
        while True:
            try:
                await self._reader.readuntil(b"\n")
                return
            except asyncio.IncompleteReadError:
                return
            except asyncio.LimitOverrunError as e:
                await self._reader.read(e.consumed)
