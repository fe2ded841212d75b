import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from .code_index import CodeIndex
from .config import AppSettings
from .fetcher import UrlFetcher
from .preview import PreviewBundler
from .schemas import AgentConfig
from .shell import LocalShellExecutor, ShellExecutor, ShellSession
from .syntax import CommandSyntaxValidator, SyntaxValidator
from .tools import ToolExecutor, ToolRegistry
from .vfs import FileSystemError, MemoryBackend, NativeBackend, StorageBackend, VirtualFileSystem

logger = logging.getLogger("uvicorn.error")


@dataclass
class Workspace:
    vfs: VirtualFileSystem
    index: CodeIndex
    shell: ShellSession
    executor: ToolExecutor
    registry: ToolRegistry
    fetcher: Optional[UrlFetcher] = None
    _detach_index: Optional[Callable[[], None]] = None

    @property
    def kind(self) -> str:
        return self.vfs.kind

    def environment_block(self, agent: AgentConfig) -> str:
        return f"[ENVIRONMENT]\nCWD: {agent.root_path or '.'}\nFileSystem Type: {self.kind}"

    async def close(self) -> None:
        if self._detach_index is not None:
            self._detach_index()
            self._detach_index = None
        if self.fetcher is not None:
            await self.fetcher.close()


def select_backend(root: Optional[str]) -> StorageBackend:
    if root:
        path = Path(root).expanduser()
        if path.is_dir() and os.access(path, os.R_OK | os.W_OK):
            return NativeBackend(path)
        logger.warning("Workspace %s is not a writable directory; using in-memory workspace", root)
    return MemoryBackend.seeded()


def warm_index(vfs: VirtualFileSystem, index: CodeIndex, max_bytes: int) -> int:
    count = 0
    for path in vfs.iter_files(tuple(index.exclude)):
        try:
            content = vfs.read(path)
        except (FileSystemError, OSError, UnicodeDecodeError) as exc:
            logger.debug("Not indexing %s: %s", path, exc)
            continue
        if len(content) > max_bytes:
            continue
        index.on_file_changed("write", path, content)
        count += 1
    return count


def open_workspace(
    settings: AppSettings,
    *,
    backend: Optional[StorageBackend] = None,
    shell_executor: Optional[ShellExecutor] = None,
    validator: Optional[SyntaxValidator] = None,
    fetcher: Optional[UrlFetcher] = None,
) -> Workspace:
    backend = backend or select_backend(settings.workspace_root)
    vfs = VirtualFileSystem(backend)
    index = CodeIndex(exclude=settings.excluded_dirs)
    indexed = warm_index(vfs, index, settings.index_max_file_bytes)
    detach = index.attach(vfs)
    start_dir = str(backend.root) if isinstance(backend, NativeBackend) else settings.shell_start_dir
    shell = ShellSession(shell_executor or LocalShellExecutor(settings.shell_timeout_s), cwd=start_dir)
    fetcher = fetcher or UrlFetcher(max_chars=settings.fetch_max_chars)
    executor = ToolExecutor(
        vfs,
        index,
        shell,
        validator=validator or CommandSyntaxValidator(settings.syntax_check_command),
        fetcher=fetcher,
        previewer=PreviewBundler(vfs),
    )
    logger.info("Opened %s workspace (%d files indexed)", backend.kind, indexed)
    return Workspace(
        vfs=vfs,
        index=index,
        shell=shell,
        executor=executor,
        registry=ToolRegistry(),
        fetcher=fetcher,
        _detach_index=detach,
    )
