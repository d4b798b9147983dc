"""
QMP (QEMU Machine Protocol) client over an arbitrary byte stream.

The client does no I/O on its own: bytes coming from QEMU are pushed in with
``feed()`` and outgoing commands are handed to whatever writer was bound with
``set_writer()``. This keeps it usable over stdio, sockets or a test double.

Framing: QEMU writes one JSON object per line. Input can arrive split at any
byte boundary, so lines are cut on raw bytes and only decoded once complete.

Correlation: QEMU completes commands in the order they were received, so
pending requests are matched FIFO and no ``id`` is sent.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections import deque
from typing import Any, Mapping, Optional, Protocol

from .errors import QMPError, QMPNotConnectedError
from .events import EventEmitter
from .models import JSONValue, PendingRequest, ProtocolEvent

logger = logging.getLogger(__name__)

# Largest chunk of a bad line that ends up in the logs
_LOG_SNIPPET = 200


class QmpEvent:
    """Event names QEMU sends that the supervisor cares about."""

    STOP = "STOP"
    RESET = "RESET"
    SHUTDOWN = "SHUTDOWN"
    RESUME = "RESUME"


class QmpClientWriter(Protocol):
    def write_some(self, data: bytes) -> None: ...


class QmpClient(EventEmitter):
    """
    Emits:
      - ``connected`` once capabilities negotiation succeeded
      - ``event`` with a ProtocolEvent for every QMP event
      - ``<EVENT NAME>`` with a ProtocolEvent, e.g. ``STOP``
    """

    def __init__(self) -> None:
        super().__init__()
        self._writer: Optional[QmpClientWriter] = None
        self._buffer = bytearray()
        self._pending: deque[PendingRequest] = deque()
        self._next_id = 0
        self._greeted = False
        self._connected = False
        # Bumped by reset(); a handshake only counts for the connection it began on
        self._generation = 0

    # ---- Transport ----
    def set_writer(self, writer: Optional[QmpClientWriter]) -> None:
        self._writer = writer

    def reset(self) -> None:
        """
        Forget everything about the current connection.

        Pending futures are dropped without being settled: a response that
        shows up later on the old transport has nothing left to match.
        """
        self._buffer.clear()
        self._pending.clear()
        self._greeted = False
        self._connected = False
        self._generation += 1

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    # ---- Outgoing ----
    def execute(
        self, command: str, arguments: Optional[Mapping[str, JSONValue]] = None
    ) -> asyncio.Future:
        """
        Send a command and return a future for its ``return`` value.

        The command is written before this method returns, so two calls made
        back to back are on the wire in call order.
        """
        loop = asyncio.get_running_loop()
        message: dict[str, Any] = {"execute": command}
        if arguments is not None:
            message["arguments"] = dict(arguments)

        self._next_id += 1
        request = PendingRequest(
            id=self._next_id, command=command, future=loop.create_future()
        )
        self._pending.append(request)
        try:
            self._send(message)
        except Exception:
            self._pending.remove(request)
            raise
        return request.future

    def _send(self, message: dict[str, Any]) -> None:
        if self._writer is None:
            raise QMPNotConnectedError(
                f"cannot send {message.get('execute')!r}: no QMP writer bound"
            )
        data = json.dumps(message, ensure_ascii=False).encode("utf-8") + b"\n"
        self._writer.write_some(data)

    # ---- Incoming ----
    def feed(self, data: bytes) -> None:
        if not data:
            return
        self._buffer.extend(data)
        while True:
            end = self._buffer.find(b"\n")
            if end < 0:
                break
            line = bytes(self._buffer[:end]).strip()
            del self._buffer[: end + 1]
            if line:
                self._handle_line(line)

    def _handle_line(self, line: bytes) -> None:
        try:
            message = json.loads(line.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as e:
            logger.warning(
                "Dropping malformed QMP message %r: %s", line[:_LOG_SNIPPET], e
            )
            return
        if not isinstance(message, dict):
            logger.warning(
                "Dropping non-object QMP message %r", line[:_LOG_SNIPPET]
            )
            return
        self._dispatch(message)

    def _dispatch(self, message: dict[str, Any]) -> None:
        if "QMP" in message:
            self._on_greeting(message["QMP"])
            return

        if not self._greeted:
            logger.debug("Ignoring QMP message received before greeting")
            return

        if "event" in message:
            event = ProtocolEvent(
                name=str(message["event"]),
                data=message.get("data") or {},
                timestamp=message.get("timestamp"),
            )
            self.emit(event.name, event)
            self.emit("event", event)
        elif "return" in message or "error" in message:
            self._on_response(message)
        else:
            logger.warning("Unknown QMP message: %s", message)

    def _on_greeting(self, greeting: Any) -> None:
        if self._greeted:
            logger.warning("Ignoring repeated QMP greeting")
            return
        self._greeted = True
        version = greeting
        for key in ("version", "qemu"):
            version = version.get(key) if isinstance(version, dict) else None
        if not isinstance(version, dict):
            version = {}
        logger.info(
            "QMP greeting received (QEMU %s.%s.%s)",
            version.get("major", "?"),
            version.get("minor", "?"),
            version.get("micro", "?"),
        )
        try:
            future = self.execute("qmp_capabilities")
        except QMPNotConnectedError as e:
            logger.error("Cannot negotiate QMP capabilities: %s", e)
            return
        generation = self._generation
        future.add_done_callback(
            lambda f: self._on_capabilities(f, generation)
        )

    def _on_capabilities(self, future: asyncio.Future, generation: int) -> None:
        if future.cancelled():
            return
        error = future.exception()
        if generation != self._generation:
            # reset() ran between the reply and this callback
            logger.debug("Ignoring QMP handshake from a discarded connection")
            return
        if error is not None:
            logger.error("QMP capabilities negotiation failed: %s", error)
            return
        self._connected = True
        self.emit("connected")

    def _on_response(self, message: dict[str, Any]) -> None:
        if not self._pending:
            logger.warning("Dropping QMP response with no pending request: %s", message)
            return
        request = self._pending.popleft()
        if "error" in message:
            payload = message["error"]
            if not isinstance(payload, dict):
                payload = {"desc": str(payload)}
            request.reject(QMPError(payload))
        else:
            request.fulfill(message["return"])
