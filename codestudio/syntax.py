import asyncio
import logging
import shutil
from typing import Optional, Protocol, Sequence

logger = logging.getLogger("uvicorn.error")

LOADERS = {".js": "js", ".jsx": "jsx", ".ts": "ts", ".tsx": "tsx"}


class SyntaxValidator(Protocol):
    async def validate(self, content: str, filename: str) -> Optional[str]:
        """Return a human-readable problem description, or None when the content parses."""
        ...


def _suffix(filename: str) -> str:
    name = filename.rsplit("/", 1)[-1]
    return "." + name.rsplit(".", 1)[-1].lower() if "." in name else ""


class NullSyntaxValidator:
    async def validate(self, content: str, filename: str) -> Optional[str]:
        return None


class CommandSyntaxValidator:
    """Pipes script sources through an external transpiler and reports its errors.

    Only JS/TS/JSX/TSX are checked. When the checker binary is not installed the
    write goes through unvalidated.
    """

    def __init__(self, command: Sequence[str] = ("esbuild", "--log-level=error"), timeout_s: float = 15.0):
        self.command = list(command)
        self.timeout_s = timeout_s

    @property
    def available(self) -> bool:
        return bool(self.command) and shutil.which(self.command[0]) is not None

    async def validate(self, content: str, filename: str) -> Optional[str]:
        loader = LOADERS.get(_suffix(filename))
        if loader is None:
            return None
        if not self.available:
            logger.debug("Syntax checker %s not found; skipping %s", self.command[:1], filename)
            return None
        proc = await asyncio.create_subprocess_exec(
            *self.command,
            f"--loader={loader}",
            f"--sourcefile={filename}",
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            _, stderr = await asyncio.wait_for(proc.communicate(content.encode("utf-8")), timeout=self.timeout_s)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            logger.warning("Syntax check timed out for %s", filename)
            return None
        if proc.returncode == 0:
            return None
        message = stderr.decode("utf-8", errors="replace").strip()
        return message or f"{filename}: syntax check failed"
