"""End-to-end tests for the wired MCP server."""

import asyncio

import pytest

from mcp_server.main import build_engine, load_redactor
from shared.secrets import SecretStore

from conftest import MemoryWriter, feed, request_line


class TestMCPServer:
    """Tests for the engine as assembled from configuration."""

    @pytest.mark.asyncio
    async def test_tools_follow_features(self, config):
        engine = build_engine(config)
        writer = MemoryWriter()

        await asyncio.wait_for(engine.serve(feed([request_line("tools/list", 1)]), writer), timeout=5)

        names = [t["name"] for t in writer.messages()[0]["result"]["tools"]]
        assert "script_list" in names
        assert "web_fetch" not in names

    @pytest.mark.asyncio
    async def test_workspace_round_trip(self, config):
        engine = build_engine(config)
        writer = MemoryWriter()

        await asyncio.wait_for(engine.serve(feed([
            request_line("workspace_write", 1, {"path": "a.txt", "content": "hello"}),
        ]), writer), timeout=5)
        writer2 = MemoryWriter()
        await asyncio.wait_for(build_engine(config).serve(feed([
            request_line("tools/call", 2, {"name": "workspace_read", "arguments": {"path": "a.txt"}}),
        ]), writer2), timeout=5)

        assert writer.messages()[0]["result"] == "Wrote 5 bytes to a.txt"
        assert writer2.messages()[0]["result"]["content"][0]["text"] == "hello"

    @pytest.mark.asyncio
    async def test_secret_values_never_leave_process(self, config):
        store = SecretStore(config.data_dir)
        await store.create("API_KEY", "sk_live_0123456789")

        redactor = await load_redactor(config)
        engine = build_engine(config, redactor)
        writer = MemoryWriter()

        # Daily memory names must be dates; the bad name is echoed in the error.
        await asyncio.wait_for(engine.serve(feed([
            request_line("memory_read", 1, {"file": "sk_live_0123456789"}),
        ]), writer), timeout=5)

        [response] = writer.messages()
        assert response["error"]["message"] == "unknown memory file: [REDACTED:API_KEY]"
        assert "sk_live_0123456789" not in writer.buffer.decode()

    @pytest.mark.asyncio
    async def test_audit_written_on_shutdown(self, config):
        audited = config.model_copy(update={"audit_enabled": True})
        engine = build_engine(audited)

        await asyncio.wait_for(
            engine.serve(feed([request_line("workspace_list", 1)]), MemoryWriter()), timeout=5
        )

        log = (audited.data_dir / "audit.log").read_text()
        assert '"tool_name":"workspace_list"' in log

    @pytest.mark.asyncio
    async def test_redactor_without_secrets(self, config):
        redactor = await load_redactor(config)

        assert redactor.secret_names == []
