"""Hosted tool server running inside the service process.

Tools are bound methods of :class:`HostedToolServer`; FastMCP derives their
input schemas from the method signatures. The tool list is produced once,
when the server is created.
"""

from __future__ import annotations

import asyncio
import ipaddress
import json
import logging
import socket
from collections.abc import Awaitable, Callable
from typing import Any, Sequence

import httpx
from mcp.server.fastmcp import FastMCP
from mcp.server.fastmcp.exceptions import ToolError

from domain.models import ToolDefinition, ToolOutcome
from infrastructure.runtime_errors import ToolServerError

logger = logging.getLogger(__name__)

DEFAULT_TAVILY_URL = "https://api.tavily.com/search"
MAX_FETCH_CHARS = 10_000
MAX_RESPONSE_BYTES = 10 * 1024 * 1024
MAX_REDIRECTS = 5
DNS_TIMEOUT_S = 5.0

BLOCKED_HOSTS = frozenset({"localhost", "metadata.google.internal", "metadata.goog"})
BLOCKED_HOST_SUFFIXES = (".localhost", ".metadata.google.internal", ".metadata.goog")
_NAT64_PREFIX = ipaddress.ip_network("64:ff9b::/96")

HostResolver = Callable[[str, int], Awaitable[list[str]]]


def is_restricted_address(address: str) -> bool:
    """True for loopback, private, link-local and other non-public addresses."""

    ip = ipaddress.ip_address(address.split("%", 1)[0])
    if isinstance(ip, ipaddress.IPv6Address):
        embedded = ip.ipv4_mapped or ip.sixtofour
        if embedded is None and ip in _NAT64_PREFIX:
            embedded = ipaddress.IPv4Address(int(ip) & 0xFFFFFFFF)
        if embedded is not None:
            return is_restricted_address(str(embedded))
    return not ip.is_global or ip.is_multicast


async def resolve_host(host: str, port: int) -> list[str]:
    loop = asyncio.get_running_loop()
    try:
        infos = await asyncio.wait_for(
            loop.getaddrinfo(host, port, type=socket.SOCK_STREAM),
            timeout=DNS_TIMEOUT_S,
        )
    except asyncio.TimeoutError as exc:
        raise ValueError(f"DNS resolution timed out for {host}") from exc
    except OSError as exc:
        raise ValueError(f"DNS resolution failed for {host}: {exc}") from exc
    return [str(info[4][0]) for info in infos]


def content_to_text(blocks: Sequence[Any]) -> str:
    parts: list[str] = []
    for block in blocks:
        text = getattr(block, "text", None)
        if text is not None:
            parts.append(str(text))
        elif hasattr(block, "data"):
            parts.append(f"[Binary data: {len(block.data)} bytes]")
        else:
            parts.append(str(block))
    return "\n".join(parts)


def _result_to_text(result: Any) -> str:
    # FastMCP returns content blocks, a dict, or (content, structured) depending on version.
    if isinstance(result, tuple):
        result = result[0]
    if isinstance(result, dict):
        if set(result) == {"result"}:
            return str(result["result"])
        return json.dumps(result, ensure_ascii=False)
    if isinstance(result, str):
        return result
    return content_to_text(result)


class HostedToolServer:
    """Web tools served in-process through FastMCP."""

    def __init__(
        self,
        *,
        tavily_api_key: str | None = None,
        tavily_api_url: str = DEFAULT_TAVILY_URL,
        request_timeout_s: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
        host_resolver: HostResolver = resolve_host,
    ) -> None:
        try:
            url = httpx.URL(tavily_api_url)
        except (httpx.InvalidURL, TypeError) as exc:
            raise ToolServerError(f"Invalid search endpoint URL: {tavily_api_url!r}") from exc
        if url.scheme not in {"http", "https"} or not url.host:
            raise ToolServerError(f"Invalid search endpoint URL: {tavily_api_url!r}")

        self._tavily_api_key = tavily_api_key
        self._tavily_api_url = str(url)
        self._timeout = request_timeout_s
        self._transport = transport
        self._resolve_host = host_resolver
        self._server = FastMCP("secretary-hosted-tools")
        self._server.add_tool(self.web_search, name="web_search")
        self._server.add_tool(self.web_fetch, name="web_fetch")
        self._definitions: list[ToolDefinition] = []

    @classmethod
    async def create(cls, **kwargs: Any) -> "HostedToolServer":
        """Builds the server and introspects its tool list."""

        server = cls(**kwargs)
        try:
            tools = await server._server.list_tools()
        except Exception as exc:
            raise ToolServerError(f"Hosted tool introspection failed: {exc}") from exc
        server._definitions = [
            ToolDefinition(
                name=tool.name,
                description=tool.description or "",
                parameters=dict(tool.inputSchema or {"type": "object", "properties": {}}),
            )
            for tool in tools
        ]
        logger.info("Hosted tool server ready: %s", ", ".join(server.names()))
        return server

    def definitions(self) -> list[ToolDefinition]:
        return list(self._definitions)

    def names(self) -> list[str]:
        return [definition.name for definition in self._definitions]

    def owns(self, name: str) -> bool:
        return any(definition.name == name for definition in self._definitions)

    async def call(self, name: str, arguments: dict[str, Any]) -> ToolOutcome:
        if not self.owns(name):
            return ToolOutcome.failure(f"Unknown hosted tool: {name}")
        try:
            result = await self._server.call_tool(name, arguments)
        except ToolError as exc:
            logger.warning("Hosted tool %s failed: %s", name, exc)
            return ToolOutcome.failure(str(exc))
        return ToolOutcome.success(_result_to_text(result))

    def _client(self, *, follow_redirects: bool = True) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self._timeout,
            transport=self._transport,
            follow_redirects=follow_redirects,
        )

    async def _check_fetch_target(self, target: httpx.URL) -> None:
        """Rejects URLs that point at this host, the local network or cloud metadata."""

        if target.scheme not in {"http", "https"}:
            raise ValueError(f"Unsupported URL scheme: {target.scheme or 'none'}")
        host = (target.host or "").lower().rstrip(".")
        if not host:
            raise ValueError("URL must have a host")
        if host in BLOCKED_HOSTS or host.endswith(BLOCKED_HOST_SUFFIXES):
            raise ValueError(f"Access to '{host}' is not allowed")
        try:
            literal = is_restricted_address(host)
        except ValueError:
            literal = None
        if literal:
            raise ValueError(f"Access to private/restricted IP {host} is not allowed")
        if literal is None:
            port = target.port or (443 if target.scheme == "https" else 80)
            addresses = await self._resolve_host(host, port)
            if not addresses:
                raise ValueError(f"DNS resolution returned no addresses for {host}")
            for address in addresses:
                if is_restricted_address(address):
                    raise ValueError(f"{host} resolves to private/restricted IP {address}, which is not allowed")

    # ------------------------------------------------------------------
    # Tools
    # ------------------------------------------------------------------
    async def web_search(self, query: str, max_results: int = 5) -> str:
        """Search the web and return the top results with titles, URLs and snippets."""

        if not self._tavily_api_key:
            raise ValueError("Web search is not configured: set SECRETARY_TAVILY_API_KEY")
        payload = {
            "api_key": self._tavily_api_key,
            "query": query,
            "max_results": max(1, min(int(max_results), 20)),
        }
        async with self._client() as client:
            response = await client.post(self._tavily_api_url, json=payload)
            response.raise_for_status()
            data = response.json()

        results = data.get("results") or []
        if not results:
            return "No results found"
        lines: list[str] = []
        for idx, item in enumerate(results, start=1):
            lines.append(f"{idx}. {item.get('title', '')}")
            lines.append(f"   {item.get('url', '')}")
            snippet = item.get("content")
            if snippet:
                lines.append(f"   {snippet}")
        return "\n".join(lines)

    async def web_fetch(self, url: str) -> str:
        """Fetch a web page and return its text content (truncated to 10000 characters)."""

        target = httpx.URL(url)
        async with self._client(follow_redirects=False) as client:
            # Every hop is checked before it is requested.
            for _ in range(MAX_REDIRECTS + 1):
                await self._check_fetch_target(target)
                async with client.stream("GET", target) as response:
                    if response.is_redirect:
                        target = target.join(response.headers["location"])
                        continue
                    response.raise_for_status()
                    body = await self._read_limited(response)
                    text = body.decode(response.encoding or "utf-8", errors="replace")
                    break
            else:
                raise ValueError(f"Too many redirects (max {MAX_REDIRECTS})")

        if len(text) > MAX_FETCH_CHARS:
            return f"{text[:MAX_FETCH_CHARS]}\n... (truncated)"
        return text

    @staticmethod
    async def _read_limited(response: httpx.Response) -> bytes:
        declared = response.headers.get("content-length")
        if declared and declared.isdigit() and int(declared) > MAX_RESPONSE_BYTES:
            raise ValueError(f"Response too large: {declared} bytes (max {MAX_RESPONSE_BYTES} bytes)")
        body = bytearray()
        async for chunk in response.aiter_bytes():
            body.extend(chunk)
            if len(body) > MAX_RESPONSE_BYTES:
                raise ValueError(f"Response too large: over {MAX_RESPONSE_BYTES} bytes")
        return bytes(body)
