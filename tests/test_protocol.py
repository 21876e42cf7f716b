"""Tests for the JSON-RPC codec and framing."""

import json

import pytest

from mcp_server.protocol import (
    INVALID_PARAMS,
    INVALID_REQUEST,
    PARSE_ERROR,
    FrameReader,
    ProtocolError,
    encode_response,
    error_response,
    parse_request,
    recover_id,
    success_response,
)

from conftest import feed


class TestParseRequest:
    """Tests for parse_request."""

    def test_request(self):
        request = parse_request(b'{"jsonrpc":"2.0","id":1,"method":"ping"}')

        assert request.id == 1
        assert request.method == "ping"
        assert request.params is None
        assert not request.is_notification

    def test_notification(self):
        request = parse_request(b'{"jsonrpc":"2.0","method":"notifications/initialized"}')

        assert request.is_notification
        assert request.id is None

    def test_null_id_is_not_a_notification(self):
        request = parse_request(b'{"jsonrpc":"2.0","id":null,"method":"ping"}')

        assert request.id is None
        assert not request.is_notification

    def test_string_id_preserved(self):
        request = parse_request(b'{"jsonrpc":"2.0","id":"abc-1","method":"ping","params":{"a":1}}')

        assert request.id == "abc-1"
        assert request.params == {"a": 1}

    def test_malformed_json(self):
        with pytest.raises(ProtocolError) as exc_info:
            parse_request(b'{"jsonrpc":"2.0",')

        assert exc_info.value.code == PARSE_ERROR
        assert not exc_info.value.answerable

    def test_malformed_json_with_recoverable_id(self):
        with pytest.raises(ProtocolError) as exc_info:
            parse_request(b'{"jsonrpc":"2.0","id":42,"method":')

        assert exc_info.value.code == PARSE_ERROR
        assert exc_info.value.request_id == 42

    def test_non_object(self):
        with pytest.raises(ProtocolError) as exc_info:
            parse_request(b"[1, 2, 3]")

        assert exc_info.value.code == INVALID_REQUEST
        assert exc_info.value.request_id is None

    def test_wrong_version(self):
        with pytest.raises(ProtocolError) as exc_info:
            parse_request(b'{"jsonrpc":"1.0","id":3,"method":"ping"}')

        assert exc_info.value.code == INVALID_REQUEST
        assert exc_info.value.request_id == 3

    def test_missing_method(self):
        with pytest.raises(ProtocolError) as exc_info:
            parse_request(b'{"jsonrpc":"2.0","id":4}')

        assert exc_info.value.code == INVALID_REQUEST
        assert exc_info.value.request_id == 4

    @pytest.mark.parametrize("bad_id", ["true", "1.5", "{}", "[1]"])
    def test_invalid_id_type(self, bad_id):
        with pytest.raises(ProtocolError) as exc_info:
            parse_request(f'{{"jsonrpc":"2.0","id":{bad_id},"method":"ping"}}'.encode())

        assert exc_info.value.code == INVALID_REQUEST

    def test_scalar_params_rejected(self):
        with pytest.raises(ProtocolError) as exc_info:
            parse_request(b'{"jsonrpc":"2.0","id":5,"method":"ping","params":"oops"}')

        assert exc_info.value.code == INVALID_PARAMS
        assert exc_info.value.request_id == 5


class TestRecoverId:
    """Tests for id recovery from broken payloads."""

    def test_numeric(self):
        assert recover_id(b'{"id": 17, "method": "x"') == 17

    def test_string(self):
        assert recover_id(b'{"method": "x", "id": "req-\\"9\\""') == 'req-"9"'

    def test_absent(self):
        assert recover_id(b"garbage") is None

    def test_nested_id_ignored(self):
        """A truncated notification must not borrow an id from its params."""
        assert recover_id(b'{"jsonrpc":"2.0","method":"m","params":{"id":7}') is None

    def test_top_level_id_after_nested_object_not_recovered(self):
        assert recover_id(b'{"params":{"id":7},"id":3,"method":') is None

    def test_top_level_id_before_params(self):
        assert recover_id(b'{"id":3,"method":"m","params":{"id":7}') == 3


class TestEncoding:
    """Tests for response serialization."""

    def test_success_is_one_line(self):
        data = encode_response(success_response(1, {"text": "a\nb"}))

        assert data.endswith(b"\n")
        assert data.count(b"\n") == 1
        assert json.loads(data) == {"jsonrpc": "2.0", "id": 1, "result": {"text": "a\nb"}}

    def test_null_result_kept(self):
        message = json.loads(encode_response(success_response("x", None)))

        assert "result" in message
        assert message["result"] is None
        assert "error" not in message

    def test_error_omits_result(self):
        message = json.loads(encode_response(error_response(2, -32601, "Method not found: x")))

        assert message["error"] == {"code": -32601, "message": "Method not found: x"}
        assert "result" not in message


class TestFrameReader:
    """Tests for input framing."""

    @pytest.mark.asyncio
    async def test_newline_delimited(self):
        frames = FrameReader(feed([b'{"a":1}\n', b"\n", b'  {"b":2}  \n']))

        assert await frames.read_frame() == b'{"a":1}'
        assert await frames.read_frame() == b'{"b":2}'
        assert await frames.read_frame() is None

    @pytest.mark.asyncio
    async def test_content_length(self):
        payload = b'{"jsonrpc":"2.0","id":1,"method":"ping"}'
        header = f"Content-Length: {len(payload)}\r\n\r\n".encode()
        frames = FrameReader(feed([header + payload, b'{"x":1}\n']))

        assert await frames.read_frame() == payload
        assert await frames.read_frame() == b'{"x":1}'

    @pytest.mark.asyncio
    async def test_content_length_with_extra_headers(self):
        payload = b'{"id":2}'
        data = (
            f"Content-Length: {len(payload)}\r\n"
            "Content-Type: application/json\r\n\r\n"
        ).encode() + payload
        frames = FrameReader(feed([data]))

        assert await frames.read_frame() == payload

    @pytest.mark.asyncio
    async def test_bad_content_length_skipped(self):
        frames = FrameReader(feed([b"Content-Length: nope\r\n\r\n", b'{"ok":true}\n']))

        assert await frames.read_frame() == b'{"ok":true}'

    @pytest.mark.asyncio
    async def test_truncated_frame_raises(self):
        import asyncio

        frames = FrameReader(feed([b"Content-Length: 50\r\n\r\n{}"]))

        with pytest.raises(asyncio.IncompleteReadError):
            await frames.read_frame()

    @pytest.mark.asyncio
    async def test_oversized_line_discarded(self):
        big = b'{"jsonrpc":"2.0","id":4,"method":"echo","params":{"text":"' + b"x" * 200 + b'"}}\n'
        frames = FrameReader(feed([big, b'{"ok":true}\n'], limit=64))

        with pytest.raises(ProtocolError) as exc:
            await frames.read_frame()

        assert exc.value.code == PARSE_ERROR
        assert exc.value.request_id == 4
        assert await frames.read_frame() == b'{"ok":true}'
        assert await frames.read_frame() is None

    @pytest.mark.asyncio
    async def test_oversized_line_arriving_in_pieces(self):
        import asyncio

        reader = feed([b'{"id":5,"params":"' + b"x" * 200], eof=False, limit=64)
        frames = FrameReader(reader)

        pending = asyncio.ensure_future(frames.read_frame())
        await asyncio.sleep(0.01)
        assert not pending.done()

        reader.feed_data(b"x" * 100 + b'"}\n{"ok":true}\n')
        reader.feed_eof()

        with pytest.raises(ProtocolError) as exc:
            await pending
        assert exc.value.request_id == 5
        assert await frames.read_frame() == b'{"ok":true}'

    @pytest.mark.asyncio
    async def test_oversized_tail_at_eof(self):
        frames = FrameReader(feed([b"y" * 200], limit=64))

        with pytest.raises(ProtocolError) as exc:
            await frames.read_frame()

        assert exc.value.request_id is None
        assert await frames.read_frame() is None
