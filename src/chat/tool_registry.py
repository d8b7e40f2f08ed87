"""Tool registry for chat runtime.

The registry aggregates three adapters in a fixed priority order: local
tools, the hosted in-process server, then external servers in registration
order. Name resolution always walks that order; the first adapter that owns
a name handles the call.
"""
from __future__ import annotations

import json
import logging
from collections import Counter
from typing import Any, Iterable, Protocol

from domain.enums import ToolSource
from domain.models import ToolDefinition, ToolOutcome
from tools.external_servers import ExternalToolServerManager
from tools.hosted_server import HostedToolServer
from tools.local_tools import LocalTools

logger = logging.getLogger(__name__)


class ToolAdapter(Protocol):
    source: ToolSource

    def definitions(self) -> list[ToolDefinition]: ...

    def owns(self, name: str) -> bool: ...

    async def execute(self, name: str, raw_arguments: str) -> ToolOutcome: ...


def _parse_object_arguments(raw_arguments: str) -> dict[str, Any] | ToolOutcome:
    try:
        value = json.loads(raw_arguments or "{}")
    except json.JSONDecodeError as exc:
        return ToolOutcome.failure(f"Invalid arguments: {exc}")
    if not isinstance(value, dict):
        return ToolOutcome.failure(f"Invalid arguments: expected a JSON object, got {type(value).__name__}")
    return value


class LocalToolAdapter:
    source = ToolSource.LOCAL

    def __init__(self, tools: LocalTools) -> None:
        self._tools = tools

    def definitions(self) -> list[ToolDefinition]:
        return self._tools.definitions()

    def owns(self, name: str) -> bool:
        return self._tools.owns(name)

    async def execute(self, name: str, raw_arguments: str) -> ToolOutcome:
        return self._tools.execute(name, raw_arguments)


class HostedToolAdapter:
    source = ToolSource.HOSTED

    def __init__(self, server: HostedToolServer) -> None:
        self._server = server

    def definitions(self) -> list[ToolDefinition]:
        return self._server.definitions()

    def owns(self, name: str) -> bool:
        return self._server.owns(name)

    async def execute(self, name: str, raw_arguments: str) -> ToolOutcome:
        arguments = _parse_object_arguments(raw_arguments)
        if isinstance(arguments, ToolOutcome):
            return arguments
        return await self._server.call(name, arguments)


class ExternalToolAdapter:
    source = ToolSource.EXTERNAL

    def __init__(self, manager: ExternalToolServerManager) -> None:
        self._manager = manager

    def definitions(self) -> list[ToolDefinition]:
        return self._manager.all_tools()

    def owns(self, name: str) -> bool:
        return self._manager.find(name) is not None

    async def execute(self, name: str, raw_arguments: str) -> ToolOutcome:
        arguments = _parse_object_arguments(raw_arguments)
        if isinstance(arguments, ToolOutcome):
            return arguments
        return await self._manager.call(name, arguments)


_PRIORITY = {ToolSource.LOCAL: 0, ToolSource.HOSTED: 1, ToolSource.EXTERNAL: 2}


class ToolRegistry:
    """Immutable, priority-ordered view over the configured tool adapters."""

    def __init__(self, adapters: Iterable[ToolAdapter] = ()) -> None:
        ordered = sorted(adapters, key=lambda adapter: _PRIORITY.get(adapter.source, len(_PRIORITY)))
        self._adapters: tuple[ToolAdapter, ...] = tuple(ordered)
        duplicates = self.duplicate_names()
        if duplicates:
            logger.warning(
                "Tool names advertised by more than one source, the first in priority order wins: %s",
                ", ".join(sorted(duplicates)),
            )

    @property
    def adapters(self) -> tuple[ToolAdapter, ...]:
        return self._adapters

    def _resolve(self, name: str) -> ToolAdapter | None:
        for adapter in self._adapters:
            if adapter.owns(name):
                return adapter
        return None

    def list_definitions(self) -> list[ToolDefinition]:
        return [definition for adapter in self._adapters for definition in adapter.definitions()]

    def has_tools(self) -> bool:
        return any(adapter.definitions() for adapter in self._adapters)

    def source_of(self, name: str) -> ToolSource:
        adapter = self._resolve(name)
        return adapter.source if adapter else ToolSource.UNKNOWN

    async def execute(self, name: str, raw_arguments: str) -> ToolOutcome:
        adapter = self._resolve(name)
        if adapter is None:
            logger.warning("Model requested unknown tool %s", name)
            return ToolOutcome.failure(f"Unknown tool: {name}")
        logger.debug("Executing tool %s via %s adapter", name, adapter.source.value)
        try:
            return await adapter.execute(name, raw_arguments)
        except Exception as exc:
            logger.exception("Tool %s raised in %s adapter", name, adapter.source.value)
            return ToolOutcome.failure(f"{name} failed: {exc}")

    def describe(self) -> dict[str, list[str]]:
        result: dict[str, list[str]] = {}
        for adapter in self._adapters:
            result.setdefault(adapter.source.value, []).extend(
                definition.name for definition in adapter.definitions()
            )
        return result

    def duplicate_names(self) -> set[str]:
        counts = Counter(definition.name for definition in self.list_definitions())
        return {name for name, count in counts.items() if count > 1}
