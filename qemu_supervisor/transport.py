from __future__ import annotations

import asyncio
import logging
from typing import Optional

from .qmp import QmpClient

logger = logging.getLogger(__name__)

_READ_CHUNK = 4096


class StdioWriter:
    """
    Glue between a process's stdio and a QmpClient.

    Everything read from ``stdout`` is fed to the client; whatever the client
    writes goes to ``stdin``. Writes after stdin was closed are dropped.
    """

    def __init__(
        self,
        stdout: asyncio.StreamReader,
        stdin: asyncio.StreamWriter,
        client: QmpClient,
    ):
        self.stdout = stdout
        self.stdin = stdin
        self.client = client
        self._closed = False
        self._reader: Optional[asyncio.Task] = asyncio.get_running_loop().create_task(
            self._pump()
        )

    async def _pump(self) -> None:
        while not self._closed:
            data = await self.stdout.read(_READ_CHUNK)
            if not data:
                break
            # close() may have run while we were waiting on the read
            if self._closed:
                break
            self.client.feed(data)

    def write_some(self, data: bytes) -> None:
        if self._closed or self.stdin.is_closing():
            return
        self.stdin.write(data)

    def close(self) -> None:
        """Stop forwarding in both directions."""
        self._closed = True
        if self._reader is not None and not self._reader.done():
            self._reader.cancel()
        self._reader = None
