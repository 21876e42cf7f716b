"""JSON-file secret store.

Values are write-only from the outside: listings return names and
timestamps, never values. ``all()`` exists for in-process consumers
such as the MCP server's output redaction.
"""

import asyncio
import json
import os
import re
from datetime import datetime
from pathlib import Path
from typing import Any

import aiofiles
import aiofiles.os
from pydantic import BaseModel, Field

from shared.logging import get_logger
from shared.models import utcnow

logger = get_logger(__name__)

SECRET_NAME_PATTERN = re.compile(r"^[A-Z][A-Z0-9_]*$")
MAX_NAME_LENGTH = 64
MAX_VALUE_LENGTH = 4096
SECRETS_FILENAME = "secrets.json"


def _private_opener(path: str, flags: int) -> int:
    return os.open(path, flags, 0o600)


class SecretStoreError(Exception):
    """Base exception for secret store errors."""
    pass


class SecretNotFound(SecretStoreError):
    pass


class SecretExists(SecretStoreError):
    pass


class InvalidSecret(SecretStoreError):
    """Name or value fails validation."""
    pass


class SecretEntry(BaseModel):
    """Secret metadata. Never carries the value."""
    name: str
    created_at: datetime
    updated_at: datetime


class _SecretRecord(BaseModel):
    value: str
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


def validate_secret_name(name: str) -> None:
    if not name:
        raise InvalidSecret("name cannot be empty")
    if len(name) > MAX_NAME_LENGTH:
        raise InvalidSecret(f"name exceeds {MAX_NAME_LENGTH} characters")
    if not SECRET_NAME_PATTERN.match(name):
        raise InvalidSecret("name must match ^[A-Z][A-Z0-9_]*$")


def validate_secret_value(value: str) -> None:
    if not value:
        raise InvalidSecret("value cannot be empty")
    if len(value) > MAX_VALUE_LENGTH:
        raise InvalidSecret(f"value exceeds {MAX_VALUE_LENGTH} characters")


class SecretStore:
    """
    Secret persistence backed by a single JSON file in the data directory.

    All mutations go through one asyncio lock; the file is rewritten whole
    with 0600 permissions.
    """

    def __init__(self, data_dir: str | Path) -> None:
        self.data_dir = Path(data_dir)
        self.path = self.data_dir / SECRETS_FILENAME
        self._lock = asyncio.Lock()

    async def _load(self) -> dict[str, _SecretRecord]:
        if not self.path.exists():
            return {}
        async with aiofiles.open(self.path, "r") as f:
            raw = await f.read()
        try:
            data: dict[str, Any] = json.loads(raw or "{}")
        except json.JSONDecodeError as e:
            raise SecretStoreError(f"failed to parse {self.path.name}") from e
        return {
            name: _SecretRecord(**record)
            for name, record in data.get("secrets", {}).items()
        }

    async def _save(self, records: dict[str, _SecretRecord]) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        payload = {
            "secrets": {
                name: record.model_dump(mode="json")
                for name, record in records.items()
            }
        }
        # Readers never see a partial file and values are never world-readable.
        tmp = self.path.with_suffix(".tmp")
        async with aiofiles.open(tmp, "w", opener=_private_opener) as f:
            await f.write(json.dumps(payload, indent=2))
        os.chmod(tmp, 0o600)
        await aiofiles.os.replace(tmp, self.path)

    async def list(self) -> list[SecretEntry]:
        """Return secret metadata sorted by name."""
        async with self._lock:
            records = await self._load()
        return [
            SecretEntry(name=name, created_at=r.created_at, updated_at=r.updated_at)
            for name, r in sorted(records.items())
        ]

    async def get(self, name: str) -> str:
        async with self._lock:
            records = await self._load()
        if name not in records:
            raise SecretNotFound(name)
        return records[name].value

    async def create(self, name: str, value: str) -> SecretEntry:
        validate_secret_name(name)
        validate_secret_value(value)
        async with self._lock:
            records = await self._load()
            if name in records:
                raise SecretExists(name)
            records[name] = _SecretRecord(value=value)
            await self._save(records)
            record = records[name]
        logger.info("Secret created", name=name)
        return SecretEntry(name=name, created_at=record.created_at, updated_at=record.updated_at)

    async def update(self, name: str, value: str) -> SecretEntry:
        validate_secret_value(value)
        async with self._lock:
            records = await self._load()
            if name not in records:
                raise SecretNotFound(name)
            record = records[name]
            record.value = value
            record.updated_at = utcnow()
            await self._save(records)
        logger.info("Secret updated", name=name)
        return SecretEntry(name=name, created_at=record.created_at, updated_at=record.updated_at)

    async def delete(self, name: str) -> None:
        async with self._lock:
            records = await self._load()
            if name not in records:
                raise SecretNotFound(name)
            del records[name]
            await self._save(records)
        logger.info("Secret deleted", name=name)

    async def all(self) -> dict[str, str]:
        """All name → value pairs, for in-process redaction only."""
        async with self._lock:
            records = await self._load()
        return {name: r.value for name, r in records.items()}
