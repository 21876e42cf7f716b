"""
Error-message sanitizing for the MCP server.

Anything a handler raises is passed through a ``Redactor`` before it leaves
the process, either on the wire or in the audit log. Known secret values
and absolute paths outside the workspace are replaced.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any, Mapping

# Values shorter than this are left alone.
MIN_SECRET_LENGTH = 8

_ABSOLUTE_PATH = re.compile(r"(?<![\w.:/])(/[^\s'\"():,;]+)")

_BEARER = re.compile(r"(?i)\bbearer\s+(?P<tok>[A-Za-z0-9._=-]{12,})")

_STRONG_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"\bsk-[A-Za-z0-9_-]{20,}\b"),
    re.compile(r"\bghp_[A-Za-z0-9]{20,}\b"),
    re.compile(r"\bgithub_pat_[A-Za-z0-9_]{20,}\b"),
    re.compile(r"\bxox[baprs]-[0-9A-Za-z-]{10,}\b"),
    re.compile(r"-----BEGIN [A-Z ]+PRIVATE KEY-----"),
]


class Redactor:
    """Replaces secret values and foreign paths in outbound text."""

    def __init__(
        self,
        secrets: Mapping[str, str] | None = None,
        workspace_root: Path | str | None = None,
    ) -> None:
        self._secrets: list[tuple[str, str]] = []
        self.workspace_root = Path(workspace_root).resolve() if workspace_root else None
        self.update_secrets(secrets or {})

    def update_secrets(self, secrets: Mapping[str, str]) -> None:
        # Longest first so a value containing another is replaced whole.
        pairs = [(name, value) for name, value in secrets.items() if len(value) >= MIN_SECRET_LENGTH]
        self._secrets = sorted(pairs, key=lambda pair: len(pair[1]), reverse=True)

    @property
    def secret_names(self) -> list[str]:
        return sorted(name for name, _ in self._secrets)

    def _inside_workspace(self, raw: str) -> bool:
        if self.workspace_root is None:
            return False
        try:
            path = Path(raw).resolve()
        except (OSError, RuntimeError):
            return False
        return path == self.workspace_root or self.workspace_root in path.parents

    def _redact_path(self, match: re.Match[str]) -> str:
        raw = match.group(1)
        if self._inside_workspace(raw):
            return raw
        return "[PATH]"

    def sanitize(self, text: str) -> str:
        if not text:
            return text

        for name, value in self._secrets:
            text = text.replace(value, f"[REDACTED:{name}]")

        text = _BEARER.sub("Bearer [REDACTED]", text)
        for pattern in _STRONG_PATTERNS:
            text = pattern.sub("[REDACTED]", text)

        return _ABSOLUTE_PATH.sub(self._redact_path, text)

    def sanitize_value(self, value: Any) -> Any:
        """Recursively sanitize strings inside dicts and lists."""
        if isinstance(value, str):
            return self.sanitize(value)
        if isinstance(value, dict):
            return {key: self.sanitize_value(item) for key, item in value.items()}
        if isinstance(value, (list, tuple)):
            return [self.sanitize_value(item) for item in value]
        return value
