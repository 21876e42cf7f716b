"""Web fetch tool."""

from typing import Any
from urllib.parse import urlparse

import httpx

from shared.logging import get_logger
from shared.models import ToolDescriptor
from shared.schema import object_schema, string_prop
from tools.base import ToolError, ToolSpec, require_str

logger = get_logger(__name__)

MAX_CONTENT_CHARS = 50_000
FETCH_TIMEOUT = 30.0
USER_AGENT = "OpenPact/0.1 (+web_fetch)"


def web_fetch_tool(transport: httpx.AsyncBaseTransport | None = None) -> ToolDescriptor:
    async def handler(args: dict[str, Any]) -> str:
        url = require_str(args, "url")
        if urlparse(url).scheme not in ("http", "https"):
            raise ToolError("only http and https URLs are supported")

        async with httpx.AsyncClient(
            timeout=FETCH_TIMEOUT,
            follow_redirects=True,
            headers={"User-Agent": USER_AGENT},
            transport=transport,
        ) as client:
            try:
                response = await client.get(url)
            except httpx.HTTPError as e:
                raise ToolError(f"fetch failed: {e}") from e

        if response.status_code >= 400:
            raise ToolError(f"fetch failed with status {response.status_code}")

        text = response.text
        if len(text) > MAX_CONTENT_CHARS:
            text = text[:MAX_CONTENT_CHARS] + "\n\n[truncated]"
        logger.debug("Fetched URL", url=url, status=response.status_code, chars=len(text))
        return text

    return ToolDescriptor(
        name="web_fetch",
        description="Fetch a web page and return its text content",
        input_schema=object_schema({"url": string_prop("http(s) URL to fetch")}, required=["url"]),
        handler=handler,
    )


TOOLS = [
    ToolSpec(name="web_fetch", factory=web_fetch_tool, required_flags=frozenset({"web"})),
]
