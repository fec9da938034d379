"""
Process Runner
Async command execution used by every backend and the document converter
"""

import asyncio
import logging
import os
import subprocess
from dataclasses import dataclass
from typing import Optional, Sequence

from .errors import ProcessError


@dataclass(frozen=True)
class ProcessResult:
    """Captured output of a finished command"""

    command: Sequence[str]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class ProcessRunner:
    """Runs external commands without blocking the event loop"""

    def __init__(self, default_timeout: float = 30.0):
        self.default_timeout = default_timeout
        self.logger = logging.getLogger(__name__)

    async def run(
        self,
        command: Sequence[str],
        timeout: Optional[float] = None,
        check: bool = True,
    ) -> ProcessResult:
        """Run a command and capture its output

        Raises ProcessError when the command cannot be started, times out,
        or (with check=True) exits with a non-zero status.
        """
        timeout = timeout if timeout is not None else self.default_timeout
        cmd = [str(part) for part in command]

        if self.logger.isEnabledFor(logging.DEBUG):
            self.logger.debug(f"Executing command: {' '.join(cmd)}")

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                creationflags=subprocess.CREATE_NO_WINDOW if os.name == 'nt' else 0
            )
        except (OSError, ValueError) as e:
            raise ProcessError(f"Failed to start {cmd[0]}: {e}", command=cmd) from e

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            process.terminate()
            try:
                await asyncio.wait_for(process.wait(), timeout=5)
            except asyncio.TimeoutError:
                process.kill()
            raise ProcessError(f"{cmd[0]} timed out after {timeout:.0f}s", command=cmd)

        result = ProcessResult(
            command=cmd,
            returncode=process.returncode,
            stdout=stdout.decode('utf-8', errors='replace'),
            stderr=stderr.decode('utf-8', errors='replace'),
        )

        if check and not result.ok:
            detail = result.stderr.strip() or result.stdout.strip() or "no output"
            raise ProcessError(
                f"{cmd[0]} exited with status {result.returncode}: {detail}",
                command=cmd,
                returncode=result.returncode,
                stderr=result.stderr,
            )

        return result
