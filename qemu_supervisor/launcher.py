from __future__ import annotations

import asyncio
import logging
import shlex
import signal
import subprocess
from typing import Optional, Union

from .process import Process, ProcessLauncher, ProcessLaunchOptions

logger = logging.getLogger(__name__)

# Exit code reported when the command could not be spawned at all
SPAWN_FAILED_EXIT_CODE = 127

_STDIO = {
    "pipe": subprocess.PIPE,
    "inherit": None,
    "ignore": subprocess.DEVNULL,
}


def _as_signal(sig: Union[int, str, None]) -> int:
    if sig is None:
        return signal.SIGTERM
    if isinstance(sig, str):
        return getattr(signal, sig.upper())
    return int(sig)


class SubprocessProcess(Process):
    """Process backed by ``asyncio.create_subprocess_exec``."""

    def __init__(self, command: str, options: ProcessLaunchOptions):
        super().__init__()
        self.command = command
        self.options = options
        self._proc: Optional[asyncio.subprocess.Process] = None
        self._task = asyncio.get_running_loop().create_task(self._run())

    @property
    def pid(self) -> Optional[int]:
        return self._proc.pid if self._proc else None

    async def _run(self) -> None:
        try:
            self._proc = await asyncio.create_subprocess_exec(
                *shlex.split(self.command),
                stdin=_STDIO[self.options.stdin],
                stdout=_STDIO[self.options.stdout],
                stderr=_STDIO[self.options.stderr],
            )
        except (OSError, ValueError) as e:
            logger.error("Could not spawn %r: %s", self.command, e)
            self.emit("exit", SPAWN_FAILED_EXIT_CODE)
            return

        self.stdin = self._proc.stdin
        self.stdout = self._proc.stdout
        self.stderr = self._proc.stderr
        self.emit("spawn")

        code = await self._proc.wait()
        self.emit("exit", code)

    def kill(self, sig: Union[int, str, None] = None) -> bool:
        if self._proc is None or self._proc.returncode is not None:
            return False
        try:
            self._proc.send_signal(_as_signal(sig))
        except ProcessLookupError:
            return False
        return True


class SubprocessLauncher(ProcessLauncher):
    def launch(
        self, command: str, options: Optional[ProcessLaunchOptions] = None
    ) -> Process:
        return SubprocessProcess(command, options or ProcessLaunchOptions())
