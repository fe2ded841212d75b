"""Workspace filesystem with a native directory backend and an in-memory backend.

Agents and the host share one VirtualFileSystem. Every committed write or
delete is pushed synchronously to subscribers (the code index among them)
before the call returns.
"""

import logging
import os
import shutil
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Literal, Optional, Sequence, Tuple, Union

logger = logging.getLogger("uvicorn.error")

EXCLUDED_DIRS = ("node_modules", ".git", "dist", "build", ".next")
README_SEED = (
    "# In-Memory Workspace\n\n"
    "No writable project directory was available.\n"
    "You are working in a temporary sandboxed environment; files live only for this session.\n"
)

NodeKind = Literal["file", "directory"]
ChangeKind = Literal["write", "delete"]
ChangeListener = Callable[[ChangeKind, str, Optional[str]], None]


class FileSystemError(Exception):
    pass


class PathNotFound(FileSystemError):
    pass


class PathCollision(FileSystemError):
    pass


@dataclass
class FileSystemNode:
    name: str
    path: str
    kind: NodeKind
    children: Optional[List["FileSystemNode"]] = None

    def to_dict(self) -> dict:
        data: dict = {"name": self.name, "path": self.path, "kind": self.kind}
        if self.children is not None:
            data["children"] = [child.to_dict() for child in self.children]
        return data


def split_path(path: Optional[str]) -> List[str]:
    parts = [p for p in str(path or "").replace("\\", "/").split("/") if p not in ("", ".")]
    if ".." in parts:
        raise FileSystemError(f"Path escapes workspace: {path}")
    return parts


def join_path(parts: Sequence[str]) -> str:
    return "/".join(parts)


def _sort_entries(entries: List[Tuple[str, NodeKind]]) -> List[Tuple[str, NodeKind]]:
    return sorted(entries, key=lambda item: (item[1] != "directory", item[0]))


class StorageBackend(ABC):
    kind: str = "abstract"

    @abstractmethod
    def read_text(self, parts: List[str]) -> str: ...

    @abstractmethod
    def write_text(self, parts: List[str], content: str) -> None: ...

    @abstractmethod
    def make_dirs(self, parts: List[str]) -> None: ...

    @abstractmethod
    def remove(self, parts: List[str]) -> None: ...

    @abstractmethod
    def entries(self, parts: List[str]) -> List[Tuple[str, NodeKind]]:
        """Children of a directory. Raises PathNotFound if it does not exist."""

    @abstractmethod
    def kind_of(self, parts: List[str]) -> Optional[NodeKind]: ...


class NativeBackend(StorageBackend):
    kind = "native"

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root).expanduser().resolve()

    def _resolve(self, parts: List[str]) -> Path:
        return self.root.joinpath(*parts)

    def _ensure_parents(self, parts: List[str]) -> None:
        current = self.root
        for part in parts:
            current = current / part
            if current.is_file():
                raise PathCollision(f"Path collision: {part} is a file.")
            if not current.exists():
                current.mkdir()

    def read_text(self, parts: List[str]) -> str:
        target = self._resolve(parts)
        if not parts or not target.is_file():
            raise PathNotFound(f"File not found: {join_path(parts)}")
        with open(target, "r", encoding="utf-8", newline="") as handle:
            return handle.read()

    def write_text(self, parts: List[str], content: str) -> None:
        self._ensure_parents(parts[:-1])
        target = self._resolve(parts)
        if target.is_dir():
            raise PathCollision(f"Path collision: {parts[-1]} is a directory.")
        with open(target, "w", encoding="utf-8", newline="") as handle:
            handle.write(content)

    def make_dirs(self, parts: List[str]) -> None:
        self._ensure_parents(parts)

    def remove(self, parts: List[str]) -> None:
        target = self._resolve(parts)
        if target.is_dir():
            shutil.rmtree(target)
        elif target.exists():
            target.unlink()
        else:
            raise PathNotFound(f"Path not found: {join_path(parts)}")

    def entries(self, parts: List[str]) -> List[Tuple[str, NodeKind]]:
        target = self._resolve(parts)
        if not target.is_dir():
            raise PathNotFound(f"Directory not found: {join_path(parts)}")
        found: List[Tuple[str, NodeKind]] = []
        with os.scandir(target) as it:
            for entry in it:
                found.append((entry.name, "directory" if entry.is_dir() else "file"))
        return _sort_entries(found)

    def kind_of(self, parts: List[str]) -> Optional[NodeKind]:
        target = self._resolve(parts)
        if target.is_dir():
            return "directory"
        if target.is_file():
            return "file"
        return None


@dataclass
class _MemoryDir:
    children: Dict[str, Union["_MemoryDir", "_MemoryFile"]] = field(default_factory=dict)


@dataclass
class _MemoryFile:
    content: str = ""


class MemoryBackend(StorageBackend):
    kind = "memory"

    def __init__(self) -> None:
        self.root = _MemoryDir()

    @classmethod
    def seeded(cls) -> "MemoryBackend":
        backend = cls()
        backend.write_text(["README.md"], README_SEED)
        return backend

    def _walk(self, parts: List[str], create: bool = False) -> _MemoryDir:
        current = self.root
        for part in parts:
            node = current.children.get(part)
            if node is None:
                if not create:
                    raise PathNotFound(f"Directory not found: {join_path(parts)}")
                node = _MemoryDir()
                current.children[part] = node
            if isinstance(node, _MemoryFile):
                raise PathCollision(f"Path collision: {part} is a file.")
            current = node
        return current

    def read_text(self, parts: List[str]) -> str:
        if not parts:
            raise PathNotFound("File not found: ")
        try:
            parent = self._walk(parts[:-1])
        except FileSystemError:
            raise PathNotFound(f"File not found: {join_path(parts)}")
        node = parent.children.get(parts[-1])
        if not isinstance(node, _MemoryFile):
            raise PathNotFound(f"File not found: {join_path(parts)}")
        return node.content

    def write_text(self, parts: List[str], content: str) -> None:
        parent = self._walk(parts[:-1], create=True)
        existing = parent.children.get(parts[-1])
        if isinstance(existing, _MemoryDir):
            raise PathCollision(f"Path collision: {parts[-1]} is a directory.")
        parent.children[parts[-1]] = _MemoryFile(content)

    def make_dirs(self, parts: List[str]) -> None:
        self._walk(parts, create=True)

    def remove(self, parts: List[str]) -> None:
        try:
            parent = self._walk(parts[:-1])
        except FileSystemError:
            raise PathNotFound(f"Path not found: {join_path(parts)}")
        if parts[-1] not in parent.children:
            raise PathNotFound(f"Path not found: {join_path(parts)}")
        del parent.children[parts[-1]]

    def entries(self, parts: List[str]) -> List[Tuple[str, NodeKind]]:
        directory = self._walk(parts)
        return _sort_entries(
            [
                (name, "directory" if isinstance(node, _MemoryDir) else "file")
                for name, node in directory.children.items()
            ]
        )

    def kind_of(self, parts: List[str]) -> Optional[NodeKind]:
        if not parts:
            return "directory"
        try:
            parent = self._walk(parts[:-1])
        except FileSystemError:
            return None
        node = parent.children.get(parts[-1])
        if node is None:
            return None
        return "directory" if isinstance(node, _MemoryDir) else "file"


class VirtualFileSystem:
    def __init__(self, backend: StorageBackend):
        self.backend = backend
        self._listeners: List[ChangeListener] = []

    @property
    def kind(self) -> str:
        return self.backend.kind

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, kind: ChangeKind, path: str, content: Optional[str] = None) -> None:
        for listener in list(self._listeners):
            try:
                listener(kind, path, content)
            except Exception:
                logger.exception("File change listener failed for %s %s", kind, path)

    def read(self, path: str) -> str:
        return self.backend.read_text(split_path(path))

    def read_many(self, paths: Sequence[str]) -> Dict[str, str]:
        results: Dict[str, str] = {}
        for path in paths:
            try:
                results[path] = self.read(path)
            except FileSystemError as exc:
                results[path] = f"Error: {exc}"
        return results

    def write(self, path: str, content: str) -> None:
        parts = split_path(path)
        if not parts:
            raise FileSystemError("A file path is required.")
        self.backend.write_text(parts, content)
        self._notify("write", join_path(parts), content)

    def create_directory(self, path: str) -> None:
        parts = split_path(path)
        if not parts:
            return
        self.backend.make_dirs(parts)

    def delete(self, path: str) -> None:
        parts = split_path(path)
        if not parts:
            raise FileSystemError("Refusing to delete the workspace root.")
        self.backend.remove(parts)
        self._notify("delete", join_path(parts))

    def exists(self, path: str) -> bool:
        return self.backend.kind_of(split_path(path)) is not None

    def list(self, path: str = "") -> List[FileSystemNode]:
        parts = split_path(path)
        return [
            FileSystemNode(name=name, path=join_path([*parts, name]), kind=kind)
            for name, kind in self.backend.entries(parts)
        ]

    def _safe_entries(self, parts: List[str]) -> List[Tuple[str, NodeKind]]:
        try:
            return self.backend.entries(parts)
        except (OSError, FileSystemError) as exc:
            logger.warning("Skipping unreadable directory %s: %s", join_path(parts) or ".", exc)
            return []

    def list_recursive(self, path: str = "", exclude: Sequence[str] = EXCLUDED_DIRS) -> List[FileSystemNode]:
        parts = split_path(path)
        if self.backend.kind_of(parts) != "directory":
            raise PathNotFound(f"Directory not found: {join_path(parts)}")
        return self._build_tree(parts, set(exclude))

    def _build_tree(self, parts: List[str], exclude: set) -> List[FileSystemNode]:
        nodes: List[FileSystemNode] = []
        for name, kind in self._safe_entries(parts):
            child_parts = [*parts, name]
            if kind == "directory":
                if name in exclude:
                    continue
                nodes.append(
                    FileSystemNode(
                        name=name,
                        path=join_path(child_parts),
                        kind="directory",
                        children=self._build_tree(child_parts, exclude),
                    )
                )
            else:
                nodes.append(FileSystemNode(name=name, path=join_path(child_parts), kind="file"))
        return nodes

    def iter_files(self, exclude: Sequence[str] = EXCLUDED_DIRS) -> Iterator[str]:
        excluded = set(exclude)
        pending: List[List[str]] = [[]]
        while pending:
            parts = pending.pop()
            for name, kind in self._safe_entries(parts):
                if kind == "directory":
                    if name not in excluded and not name.startswith("."):
                        pending.append([*parts, name])
                else:
                    yield join_path([*parts, name])

    def search_by_name(self, query: str, exclude: Sequence[str] = EXCLUDED_DIRS) -> List[str]:
        needle = (query or "").strip().lower()
        if not needle:
            return []
        return sorted(
            path
            for path in self.iter_files(exclude)
            if needle in path.rsplit("/", 1)[-1].lower() and not path.rsplit("/", 1)[-1].startswith(".")
        )
