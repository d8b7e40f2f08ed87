"""In-process tools executed directly by the runtime.

Each tool has a pydantic argument model; its JSON schema is what the model
sees, and the same model validates incoming arguments.
"""

from __future__ import annotations

import glob
import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from domain.models import ToolDefinition, ToolOutcome

logger = logging.getLogger(__name__)

MAX_READ_CHARS = 100_000


class ReadFileArgs(BaseModel):
    path: str = Field(..., description="The path to the file to read")


class ListDirectoryArgs(BaseModel):
    path: str = Field(..., description="The path to the directory to list")


class SearchFilesArgs(BaseModel):
    pattern: str = Field(..., description="The glob pattern to search for (e.g., '*.py', '**/*.txt')")
    path: str | None = Field(default=None, description="The directory to search in (defaults to current directory)")


class WriteFileArgs(BaseModel):
    path: str = Field(..., description="The path to the file to write")
    content: str = Field(..., description="The content to write to the file")


class SearchHistoryArgs(BaseModel):
    query: str = Field(..., description="The text to find in past conversation actions")
    limit: int = Field(default=20, ge=1, le=200, description="Maximum number of results to return (default: 20)")


class ToolInputError(ValueError):
    """Raised by a tool handler when its input cannot be served."""


@dataclass
class LocalTool:
    name: str
    description: str
    args_model: type[BaseModel]
    handler: Callable[[Any], str]

    def definition(self) -> ToolDefinition:
        schema = self.args_model.model_json_schema()
        schema.pop("title", None)
        for prop in schema.get("properties", {}).values():
            prop.pop("title", None)
        return ToolDefinition(name=self.name, description=self.description, parameters=schema)


class LocalTools:
    """Filesystem and history tools.

    ``workspace_root`` confines every path argument to one directory tree;
    ``history_store`` enables ``search_history`` over persisted actions.
    """

    def __init__(
        self,
        *,
        workspace_root: Path | None = None,
        history_store: Any | None = None,
        enable_filesystem: bool = True,
    ) -> None:
        self._workspace_root = Path(workspace_root).expanduser().resolve() if workspace_root else None
        self._history_store = history_store
        self._tools: dict[str, LocalTool] = {}
        if enable_filesystem:
            self._register_filesystem_tools()
        if history_store is not None:
            self._register(
                LocalTool(
                    name="search_history",
                    description=(
                        "Search through past conversation actions (messages, tool calls and results). "
                        "Returns matching entries, newest first."
                    ),
                    args_model=SearchHistoryArgs,
                    handler=self._search_history,
                )
            )

    def _register(self, tool: LocalTool) -> None:
        self._tools[tool.name] = tool

    def _register_filesystem_tools(self) -> None:
        self._register(
            LocalTool(
                name="read_file",
                description="Read the contents of a file at the given path",
                args_model=ReadFileArgs,
                handler=self._read_file,
            )
        )
        self._register(
            LocalTool(
                name="list_directory",
                description="List the contents of a directory",
                args_model=ListDirectoryArgs,
                handler=self._list_directory,
            )
        )
        self._register(
            LocalTool(
                name="search_files",
                description="Search for files matching a glob pattern",
                args_model=SearchFilesArgs,
                handler=self._search_files,
            )
        )
        self._register(
            LocalTool(
                name="write_file",
                description="Write content to a file at the given path",
                args_model=WriteFileArgs,
                handler=self._write_file,
            )
        )

    def definitions(self) -> list[ToolDefinition]:
        return [tool.definition() for tool in self._tools.values()]

    def names(self) -> list[str]:
        return list(self._tools)

    def owns(self, name: str) -> bool:
        return name in self._tools

    def execute(self, name: str, raw_arguments: str) -> ToolOutcome:
        tool = self._tools.get(name)
        if tool is None:
            return ToolOutcome.failure(f"Unknown local tool: {name}")
        try:
            args = tool.args_model.model_validate_json(raw_arguments or "{}")
        except ValidationError as exc:
            return ToolOutcome.failure(f"Invalid arguments: {exc.errors(include_url=False)}")
        try:
            return ToolOutcome.success(tool.handler(args))
        except ToolInputError as exc:
            return ToolOutcome.failure(str(exc))
        except Exception as exc:
            logger.warning("Local tool %s failed: %s", name, exc)
            return ToolOutcome.failure(f"{name} failed: {exc}")

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------
    def _resolve(self, raw_path: str) -> Path:
        path = Path(raw_path).expanduser()
        if self._workspace_root is None:
            return path
        if not path.is_absolute():
            path = self._workspace_root / path
        resolved = path.resolve()
        if not self._inside_workspace(resolved):
            logger.warning("Blocked path outside workspace: %s", raw_path)
            raise ToolInputError(f"Path is outside the workspace: {raw_path}")
        return resolved

    def _inside_workspace(self, resolved: Path) -> bool:
        root = self._workspace_root
        return root is None or resolved == root or root in resolved.parents

    def _read_file(self, args: ReadFileArgs) -> str:
        path = self._resolve(args.path)
        if not path.exists():
            raise ToolInputError(f"File not found: {args.path}")
        if not path.is_file():
            raise ToolInputError(f"Not a file: {args.path}")
        text = path.read_text(encoding="utf-8", errors="replace")
        if len(text) > MAX_READ_CHARS:
            return f"{text[:MAX_READ_CHARS]}\n... (truncated)"
        return text

    def _list_directory(self, args: ListDirectoryArgs) -> str:
        path = self._resolve(args.path)
        if not path.exists():
            raise ToolInputError(f"Directory not found: {args.path}")
        if not path.is_dir():
            raise ToolInputError(f"Not a directory: {args.path}")
        entries = [
            f"[{'dir' if entry.is_dir() else 'file'}] {entry.name}"
            for entry in path.iterdir()
        ]
        return "\n".join(sorted(entries))

    def _search_files(self, args: SearchFilesArgs) -> str:
        base = self._resolve(args.path or ".")
        pattern = args.pattern
        if self._workspace_root is not None and ".." in Path(pattern).parts:
            logger.warning("Blocked search pattern outside workspace: %s", pattern)
            raise ToolInputError(f"Pattern is outside the workspace: {pattern}")
        if Path(pattern).is_absolute():
            self._resolve(pattern.split("*", 1)[0] or "/")
            full_pattern = pattern
        else:
            full_pattern = str(base / pattern)
        # Symlinks inside the tree may still point elsewhere.
        paths = sorted(
            hit
            for hit in glob.glob(full_pattern, recursive=True)
            if self._inside_workspace(Path(hit).resolve())
        )
        if not paths:
            return "No files found matching pattern"
        return "\n".join(paths)

    def _write_file(self, args: WriteFileArgs) -> str:
        path = self._resolve(args.path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(args.content, encoding="utf-8")
        return f"Successfully wrote {len(args.content.encode('utf-8'))} bytes to {args.path}"

    def _search_history(self, args: SearchHistoryArgs) -> str:
        actions = self._history_store.search_text(args.query, limit=args.limit)
        if not actions:
            return "No matching history found"
        results = [
            {
                "sessionId": action.session_id,
                "sequence": action.sequence,
                "kind": action.kind.value,
                "role": action.role,
                "toolName": action.tool_name,
                "content": action.content,
                "createdAt": action.created_at,
            }
            for action in actions
        ]
        return json.dumps(results, ensure_ascii=False, indent=2)
