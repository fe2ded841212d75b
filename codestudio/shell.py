import asyncio
import logging
import os
import shlex
from dataclasses import dataclass
from typing import Protocol

logger = logging.getLogger("uvicorn.error")

NO_OUTPUT = "Command executed successfully (No output)."


@dataclass
class ExecResult:
    exit_code: int
    stdout: str = ""
    stderr: str = ""


class ShellExecutor(Protocol):
    async def exec(self, command: str, cwd: str) -> ExecResult: ...


def quote_shell_path(path: str) -> str:
    # Leave a leading ~ unquoted so the shell still expands it.
    if path == "~":
        return "~"
    if path.startswith("~/"):
        return "~/" + shlex.quote(path[2:])
    return shlex.quote(path)


class LocalShellExecutor:
    """Runs commands with the host shell. There is no sandboxing."""

    def __init__(self, timeout_s: float = 60.0):
        self.timeout_s = timeout_s

    async def exec(self, command: str, cwd: str) -> ExecResult:
        proc = await asyncio.create_subprocess_shell(
            command,
            cwd=os.path.expanduser(cwd),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout_s)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            return ExecResult(exit_code=124, stderr=f"Command timed out after {self.timeout_s:g}s")
        return ExecResult(
            exit_code=proc.returncode if proc.returncode is not None else -1,
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
        )


class ShellSession:
    """Tracks a working directory across stateless executor calls."""

    def __init__(self, executor: ShellExecutor, cwd: str = "~"):
        self.executor = executor
        self.cwd = cwd

    async def run(self, command: str) -> str:
        cleaned = (command or "").strip()
        if not cleaned:
            return "Error: empty command"
        try:
            if cleaned == "cd" or cleaned.startswith("cd "):
                return await self._change_directory(cleaned[2:].strip() or "~")
            result = await self.executor.exec(cleaned, self.cwd)
        except Exception as exc:
            logger.warning("Shell execution failed: %s", exc)
            return f"System Execution Error: {exc}"
        return format_output(result)

    async def _change_directory(self, target: str) -> str:
        if len(target) >= 2 and target[0] == target[-1] and target[0] in "\"'":
            target = target[1:-1]
        probe = f"cd {quote_shell_path(self.cwd)} && cd {quote_shell_path(target)} && pwd"
        result = await self.executor.exec(probe, self.cwd)
        resolved = result.stdout.strip()
        if result.exit_code == 0 and resolved:
            self.cwd = resolved
            return f"Changed directory to {resolved}"
        return f"cd: {target}: No such file or directory"


def format_output(result: ExecResult) -> str:
    if result.exit_code != 0:
        text = result.stderr or f"Error: Exit code {result.exit_code}\n{result.stdout}"
    elif result.stdout:
        text = result.stdout
    elif result.stderr:
        text = f"(Stderr): {result.stderr}"
    else:
        text = NO_OUTPUT
    return text
