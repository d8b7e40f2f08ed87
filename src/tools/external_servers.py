"""Stdio tool servers launched as child processes.

Each configured command is spawned once at startup and kept alive for the
lifetime of the service. A server that fails later is not restarted; its
calls return failure outcomes.
"""

from __future__ import annotations

import asyncio
import logging
import shlex
from contextlib import AsyncExitStack
from dataclasses import dataclass, field
from typing import Any

from mcp import ClientSession, StdioServerParameters
from mcp.client.stdio import stdio_client

from domain.models import ToolDefinition, ToolOutcome
from infrastructure.runtime_errors import ToolServerError
from tools.hosted_server import content_to_text

logger = logging.getLogger(__name__)


@dataclass
class ExternalToolServer:
    name: str
    command: str
    session: ClientSession
    tools: list[ToolDefinition] = field(default_factory=list)

    def owns(self, tool_name: str) -> bool:
        return any(tool.name == tool_name for tool in self.tools)


class ExternalToolServerManager:
    """Owns the client sessions of all external tool servers."""

    def __init__(
        self,
        *,
        handshake_timeout_s: float = 30.0,
        call_timeout_s: float | None = 120.0,
    ) -> None:
        self._handshake_timeout_s = handshake_timeout_s
        self._call_timeout_s = call_timeout_s
        self._servers: list[ExternalToolServer] = []
        self._stacks: dict[str, AsyncExitStack] = {}

    @property
    def servers(self) -> list[ExternalToolServer]:
        return list(self._servers)

    async def add_server(self, name: str, command: str) -> ExternalToolServer:
        """Spawns ``command``, performs the handshake and lists its tools."""

        if name in self._stacks:
            raise ToolServerError(f"External tool server already registered: {name}")
        argv = shlex.split(command)
        if not argv:
            raise ToolServerError(f"External tool server {name} has an empty command")

        params = StdioServerParameters(command=argv[0], args=argv[1:])
        stack = AsyncExitStack()
        try:
            read, write = await stack.enter_async_context(stdio_client(params))
            session = await stack.enter_async_context(ClientSession(read, write))
            await asyncio.wait_for(session.initialize(), timeout=self._handshake_timeout_s)
            listed = await asyncio.wait_for(session.list_tools(), timeout=self._handshake_timeout_s)
        except Exception as exc:
            await self._close_quietly(name, stack)
            raise ToolServerError(f"Failed to start external tool server {name} ({command}): {exc}") from exc

        server = ExternalToolServer(
            name=name,
            command=command,
            session=session,
            tools=[
                ToolDefinition(
                    name=tool.name,
                    description=tool.description or "",
                    parameters=dict(tool.inputSchema or {"type": "object", "properties": {}}),
                )
                for tool in listed.tools
            ],
        )
        self._servers.append(server)
        self._stacks[name] = stack
        logger.info(
            "External tool server %s started with %s tools: %s",
            name,
            len(server.tools),
            ", ".join(tool.name for tool in server.tools),
        )
        return server

    async def _close_quietly(self, name: str, stack: AsyncExitStack) -> None:
        try:
            await stack.aclose()
        except Exception as exc:  # pragma: no cover - best effort cleanup
            logger.debug("Cleanup of external tool server %s failed: %s", name, exc)

    def find(self, tool_name: str) -> ExternalToolServer | None:
        for server in self._servers:
            if server.owns(tool_name):
                return server
        return None

    def all_tools(self) -> list[ToolDefinition]:
        return [tool for server in self._servers for tool in server.tools]

    async def call(self, tool_name: str, arguments: dict[str, Any]) -> ToolOutcome:
        server = self.find(tool_name)
        if server is None:
            return ToolOutcome.failure(f"Unknown external tool: {tool_name}")
        try:
            result = await asyncio.wait_for(
                server.session.call_tool(tool_name, arguments),
                timeout=self._call_timeout_s,
            )
        except asyncio.TimeoutError:
            logger.warning("External tool %s on %s timed out", tool_name, server.name)
            return ToolOutcome.failure(f"Tool {tool_name} timed out after {self._call_timeout_s}s")
        except Exception as exc:
            logger.warning("External tool %s on %s failed: %s", tool_name, server.name, exc)
            return ToolOutcome.failure(f"Tool {tool_name} failed on {server.name}: {exc}")

        text = content_to_text(result.content or [])
        if result.isError:
            return ToolOutcome.failure(text or f"Tool {tool_name} reported an error")
        return ToolOutcome.success(text)

    async def aclose(self) -> None:
        """Terminates every server, newest first."""

        for server in reversed(self._servers):
            stack = self._stacks.pop(server.name, None)
            if stack is not None:
                await self._close_quietly(server.name, stack)
                logger.info("External tool server %s stopped", server.name)
        self._servers.clear()
