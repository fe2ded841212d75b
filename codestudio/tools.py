"""Tool declarations for both provider wire formats and the dispatch boundary."""

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from google.genai import types

from .code_index import CodeIndex
from .fetcher import UrlFetcher
from .preview import PreviewBundler
from .shell import ShellSession
from .syntax import NullSyntaxValidator, SyntaxValidator
from .vfs import VirtualFileSystem

logger = logging.getLogger("uvicorn.error")


@dataclass
class ToolParam:
    name: str
    description: str
    type: str = "string"
    required: bool = True


@dataclass
class ToolSpec:
    name: str
    description: str
    short_description: str
    params: List[ToolParam] = field(default_factory=list)

    @property
    def required(self) -> List[str]:
        return [p.name for p in self.params if p.required]


TOOL_SPECS: List[ToolSpec] = [
    ToolSpec(
        "list_files",
        "List all files and directories in a specific directory path relative to the project root.",
        "List files in a directory.",
        [ToolParam("path", "The directory path to list. Use '' or '.' for root.")],
    ),
    ToolSpec(
        "read_file",
        "Read the text content of a single file.",
        "Read a file.",
        [ToolParam("path", "The path of the file to read.")],
    ),
    ToolSpec(
        "read_multiple_files",
        "Read multiple files at once. Efficient for analyzing dependencies.",
        "Read multiple files.",
        [ToolParam("paths", "Array of file paths to read.", type="array")],
    ),
    ToolSpec(
        "write_file",
        "Create or overwrite a file. Returns syntax errors if the code is invalid. "
        "Intermediate directories are created automatically.",
        "Write content to a file. Reports syntax errors.",
        [
            ToolParam("path", "The path where the file should be written."),
            ToolParam("content", "The full content to write. Use \\n for newlines."),
        ],
    ),
    ToolSpec(
        "create_directory",
        "Create a new directory recursively.",
        "Create a directory.",
        [ToolParam("path", "The path of the directory to create.")],
    ),
    ToolSpec(
        "delete_file",
        "Delete a file or directory recursively.",
        "Delete file/folder.",
        [ToolParam("path", "The path to delete.")],
    ),
    ToolSpec(
        "search_files",
        "Simple filename search. Finds files by matching the name.",
        "Search files by name.",
        [ToolParam("query", "Text to search for.")],
    ),
    ToolSpec(
        "search_codebase",
        "Keyword search over indexed definitions. Use this to find functions, classes, or logic "
        "across the project by concept or name. Returns relevant file paths and summaries.",
        "Search project definitions and logic.",
        [ToolParam("query", "The concept, function name, or logic you are looking for.")],
    ),
    ToolSpec(
        "run_terminal",
        "Execute a shell command in the terminal (git, npm, python, ls, ...). "
        "The working directory persists between calls.",
        "Execute shell command (git, npm, ls, etc).",
        [ToolParam("command", "The full shell command string to execute.")],
    ),
    ToolSpec(
        "deploy_to_preview",
        "Bundle the current web project (HTML/CSS/JS) and return a preview URL. Call this after writing code.",
        "Run web project in preview.",
        [ToolParam("entry_point", "The main HTML file to load (default: index.html).", required=False)],
    ),
    ToolSpec(
        "fetch_url",
        "Fetch external text content from a URL (documentation, raw code).",
        "Fetch external URL text.",
        [ToolParam("url", "The URL to fetch.")],
    ),
]


class ToolRegistry:
    def __init__(self, specs: Optional[List[ToolSpec]] = None):
        self.specs = list(specs if specs is not None else TOOL_SPECS)

    @property
    def names(self) -> List[str]:
        return [s.name for s in self.specs]

    def gemini_tools(self) -> List[types.Tool]:
        declarations = []
        for spec in self.specs:
            properties = {}
            for param in spec.params:
                if param.type == "array":
                    schema = types.Schema(
                        type=types.Type.ARRAY,
                        items=types.Schema(type=types.Type.STRING),
                        description=param.description,
                    )
                else:
                    schema = types.Schema(type=types.Type.STRING, description=param.description)
                properties[param.name] = schema
            declarations.append(
                types.FunctionDeclaration(
                    name=spec.name,
                    description=spec.description,
                    parameters=types.Schema(type=types.Type.OBJECT, properties=properties, required=spec.required),
                )
            )
        return [types.Tool(function_declarations=declarations)]

    def openai_tools(self) -> List[Dict[str, Any]]:
        tools = []
        for spec in self.specs:
            properties: Dict[str, Any] = {}
            for param in spec.params:
                if param.type == "array":
                    properties[param.name] = {"type": "array", "items": {"type": "string"}}
                else:
                    properties[param.name] = {"type": "string"}
            tools.append(
                {
                    "type": "function",
                    "function": {
                        "name": spec.name,
                        "description": spec.short_description,
                        "parameters": {"type": "object", "properties": properties, "required": spec.required},
                    },
                }
            )
        return tools


def _require_str(args: Dict[str, Any], key: str, allow_empty: bool = False) -> str:
    value = args.get(key)
    if value is None and allow_empty:
        return ""
    if not isinstance(value, str) or (not value and not allow_empty):
        raise ValueError(f"Missing required argument: {key}")
    return value


class ToolExecutor:
    """Single boundary between model tool calls and the workspace.

    Never raises: unknown tools and handler failures come back as {"error": ...}
    so the model can see them and correct itself.
    """

    def __init__(
        self,
        vfs: VirtualFileSystem,
        index: CodeIndex,
        shell: ShellSession,
        validator: Optional[SyntaxValidator] = None,
        fetcher: Optional[UrlFetcher] = None,
        previewer: Optional[PreviewBundler] = None,
    ):
        self.vfs = vfs
        self.index = index
        self.shell = shell
        self.validator = validator or NullSyntaxValidator()
        self.fetcher = fetcher
        self.previewer = previewer or PreviewBundler(vfs)
        self._handlers: Dict[str, Callable[[Dict[str, Any]], Awaitable[Any]]] = {
            "list_files": self._list_files,
            "read_file": self._read_file,
            "read_multiple_files": self._read_multiple_files,
            "write_file": self._write_file,
            "create_directory": self._create_directory,
            "delete_file": self._delete_file,
            "search_files": self._search_files,
            "search_codebase": self._search_codebase,
            "run_terminal": self._run_terminal,
            "deploy_to_preview": self._deploy_to_preview,
            "fetch_url": self._fetch_url,
        }

    async def execute(self, name: str, args: Optional[Dict[str, Any]]) -> Any:
        handler = self._handlers.get(name)
        if handler is None:
            return {"error": f"Unknown tool: {name}"}
        try:
            return await handler(args if isinstance(args, dict) else {})
        except Exception as exc:
            logger.debug("Tool %s failed: %s", name, exc)
            return {"error": str(exc) or exc.__class__.__name__}

    async def _list_files(self, args: Dict[str, Any]) -> Any:
        return [node.to_dict() for node in self.vfs.list(_require_str(args, "path", allow_empty=True))]

    async def _read_file(self, args: Dict[str, Any]) -> Any:
        return self.vfs.read(_require_str(args, "path"))

    async def _read_multiple_files(self, args: Dict[str, Any]) -> Any:
        paths = args.get("paths")
        if not isinstance(paths, list) or not all(isinstance(p, str) for p in paths):
            raise ValueError("paths must be a list of strings")
        return self.vfs.read_many(paths)

    async def _write_file(self, args: Dict[str, Any]) -> Any:
        path = _require_str(args, "path")
        content = _require_str(args, "content", allow_empty=True)
        problem = await self.validator.validate(content, path)
        if problem:
            return {"error": f"Syntax Error: {problem}"}
        self.vfs.write(path, content)
        return {"success": True}

    async def _create_directory(self, args: Dict[str, Any]) -> Any:
        self.vfs.create_directory(_require_str(args, "path"))
        return {"success": True}

    async def _delete_file(self, args: Dict[str, Any]) -> Any:
        self.vfs.delete(_require_str(args, "path"))
        return {"success": True}

    async def _search_files(self, args: Dict[str, Any]) -> Any:
        return [f"[NAME] {path}" for path in self.vfs.search_by_name(_require_str(args, "query"))]

    async def _search_codebase(self, args: Dict[str, Any]) -> Any:
        results = self.index.search(_require_str(args, "query"))
        return results or "No relevant matches in the code index."

    async def _run_terminal(self, args: Dict[str, Any]) -> Any:
        return await self.shell.run(_require_str(args, "command"))

    async def _deploy_to_preview(self, args: Dict[str, Any]) -> Any:
        entry = args.get("entry_point") or "index.html"
        return {"preview_url": await self.previewer.build(str(entry))}

    async def _fetch_url(self, args: Dict[str, Any]) -> Any:
        url = _require_str(args, "url")
        if self.fetcher is None:
            return {"error": "URL fetching is not available in this workspace."}
        return await self.fetcher.fetch(url)
