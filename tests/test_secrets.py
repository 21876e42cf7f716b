"""Tests for the JSON-file secret store."""

import json
import os

import pytest

from shared.secrets import InvalidSecret, SecretExists, SecretNotFound, SecretStore


def file_mode(path) -> int:
    return os.stat(path).st_mode & 0o777


class TestSecretStore:
    """Tests for secret persistence."""

    @pytest.mark.asyncio
    async def test_update_replaces_file_atomically(self, tmp_path):
        store = SecretStore(tmp_path)
        await store.create("API_KEY", "first-value-123")

        await store.update("API_KEY", "second-value-456")

        data = json.loads(store.path.read_text())
        assert data["secrets"]["API_KEY"]["value"] == "second-value-456"
        assert await store.get("API_KEY") == "second-value-456"
        assert file_mode(store.path) == 0o600
        assert not store.path.with_suffix(".tmp").exists()

    @pytest.mark.asyncio
    async def test_stale_temp_file_does_not_leak(self, tmp_path):
        store = SecretStore(tmp_path)
        stale = store.path.with_suffix(".tmp")
        stale.write_text("partial")
        os.chmod(stale, 0o644)

        await store.create("TOKEN", "abcdefgh12345")

        assert file_mode(store.path) == 0o600
        assert not stale.exists()
        assert await store.all() == {"TOKEN": "abcdefgh12345"}

    @pytest.mark.asyncio
    async def test_listing_never_includes_values(self, tmp_path):
        store = SecretStore(tmp_path)
        await store.create("B_SECRET", "value-b-000000")
        await store.create("A_SECRET", "value-a-000000")

        entries = await store.list()

        assert [e.name for e in entries] == ["A_SECRET", "B_SECRET"]
        assert "value-a" not in str([e.model_dump() for e in entries])

    @pytest.mark.asyncio
    async def test_delete(self, tmp_path):
        store = SecretStore(tmp_path)
        await store.create("API_KEY", "value-0000000")

        await store.delete("API_KEY")

        assert await store.all() == {}
        with pytest.raises(SecretNotFound):
            await store.get("API_KEY")

    @pytest.mark.asyncio
    async def test_duplicate_and_invalid(self, tmp_path):
        store = SecretStore(tmp_path)
        await store.create("API_KEY", "value-0000000")

        with pytest.raises(SecretExists):
            await store.create("API_KEY", "other")
        with pytest.raises(InvalidSecret):
            await store.create("lower_case", "value")
        with pytest.raises(SecretNotFound):
            await store.update("MISSING", "value")
