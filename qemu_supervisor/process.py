"""
Process abstraction the supervisor is written against.

The supervisor never spawns anything by itself: it asks a ProcessLauncher for
a Process and listens to it. Sandboxing, privilege dropping or running QEMU
somewhere else entirely is the launcher's business.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Literal, Optional, Union

from .events import EventEmitter

StdioOption = Literal["pipe", "inherit", "ignore"]


@dataclass(frozen=True)
class ProcessLaunchOptions:
    stdin: StdioOption = "pipe"
    stdout: StdioOption = "pipe"
    stderr: StdioOption = "pipe"


class Process(EventEmitter, ABC):
    """
    A launched process.

    Emits ``spawn`` once it is running and ``exit`` with its exit code once it
    is gone. ``stdin``/``stdout``/``stderr`` are only guaranteed to be set
    after ``spawn`` and only for streams launched with ``"pipe"``.
    """

    stdin: Optional[asyncio.StreamWriter] = None
    stdout: Optional[asyncio.StreamReader] = None
    stderr: Optional[asyncio.StreamReader] = None

    @abstractmethod
    def kill(self, sig: Union[int, str, None] = None) -> bool:
        """Send a signal (SIGTERM by default). Returns False if it could not be sent."""

    def dispose(self) -> None:
        """Drop every listener attached to this process."""
        self.remove_all_listeners()


class ProcessLauncher(ABC):
    @abstractmethod
    def launch(
        self, command: str, options: Optional[ProcessLaunchOptions] = None
    ) -> Process: ...
