from __future__ import annotations

import asyncio
import logging

from chat.tool_registry import LocalToolAdapter, ToolRegistry
from domain.enums import ToolSource
from domain.models import ToolDefinition, ToolOutcome
from tools.local_tools import LocalTools


class _StubAdapter:
    def __init__(self, source: ToolSource, names: list[str]) -> None:
        self.source = source
        self._names = names
        self.calls: list[tuple[str, str]] = []

    def definitions(self) -> list[ToolDefinition]:
        return [ToolDefinition(name=name, description=f"{self.source.value} {name}") for name in self._names]

    def owns(self, name: str) -> bool:
        return name in self._names

    async def execute(self, name: str, raw_arguments: str) -> ToolOutcome:
        self.calls.append((name, raw_arguments))
        return ToolOutcome.success(f"{self.source.value}:{name}")


def test_local_adapter_wins_name_collisions() -> None:
    local = _StubAdapter(ToolSource.LOCAL, ["x"])
    hosted = _StubAdapter(ToolSource.HOSTED, ["x", "web_fetch"])
    external = _StubAdapter(ToolSource.EXTERNAL, ["x"])
    registry = ToolRegistry([external, hosted, local])

    outcome = asyncio.run(registry.execute("x", "{}"))

    assert outcome.content == "local:x"
    assert local.calls == [("x", "{}")]
    assert hosted.calls == [] and external.calls == []
    assert registry.source_of("x") is ToolSource.LOCAL
    assert registry.source_of("web_fetch") is ToolSource.HOSTED


def test_definitions_follow_priority_order_without_dedup() -> None:
    registry = ToolRegistry(
        [
            _StubAdapter(ToolSource.EXTERNAL, ["ext_a", "shared"]),
            _StubAdapter(ToolSource.LOCAL, ["read_file", "shared"]),
            _StubAdapter(ToolSource.HOSTED, ["web_search"]),
        ]
    )

    names = [definition.name for definition in registry.list_definitions()]

    assert names == ["read_file", "shared", "web_search", "ext_a", "shared"]
    assert registry.duplicate_names() == {"shared"}
    assert registry.describe() == {
        "local": ["read_file", "shared"],
        "hosted": ["web_search"],
        "external": ["ext_a", "shared"],
    }


def test_duplicates_are_logged_at_build(caplog) -> None:
    with caplog.at_level(logging.WARNING, logger="chat.tool_registry"):
        ToolRegistry([_StubAdapter(ToolSource.LOCAL, ["dup"]), _StubAdapter(ToolSource.HOSTED, ["dup"])])

    assert "dup" in caplog.text


def test_unknown_tool_returns_error_outcome() -> None:
    registry = ToolRegistry([_StubAdapter(ToolSource.LOCAL, ["x"])])

    outcome = asyncio.run(registry.execute("undefined_tool", "{}"))

    assert outcome.is_error is True
    assert outcome.as_text() == "Error: Unknown tool: undefined_tool"
    assert registry.source_of("undefined_tool") is ToolSource.UNKNOWN


def test_empty_registry_has_no_tools() -> None:
    registry = ToolRegistry()

    assert registry.has_tools() is False
    assert registry.list_definitions() == []


def test_local_adapter_executes_real_tools(tmp_path) -> None:
    (tmp_path / "a.txt").write_text("content", encoding="utf-8")
    registry = ToolRegistry([LocalToolAdapter(LocalTools(workspace_root=tmp_path))])

    outcome = asyncio.run(registry.execute("read_file", '{"path": "a.txt"}'))

    assert registry.has_tools() is True
    assert outcome.content == "content"


class _RaisingAdapter(_StubAdapter):
    async def execute(self, name: str, raw_arguments: str) -> ToolOutcome:
        raise RuntimeError("adapter exploded")


def test_adapter_exceptions_become_error_outcomes() -> None:
    registry = ToolRegistry([_RaisingAdapter(ToolSource.HOSTED, ["web_fetch"])])

    outcome = asyncio.run(registry.execute("web_fetch", '{"url": "https://example.com"}'))

    assert outcome.is_error is True
    assert outcome.as_text() == "Error: web_fetch failed: adapter exploded"
