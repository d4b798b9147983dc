from __future__ import annotations

from typing import Any, Optional


class VMError(Exception):
    """Base error for supervisor failures."""


class VMStateError(VMError):
    """An operation was called while the VM was in the wrong state."""


class QMPError(Exception):
    """QEMU answered a command with an ``error`` object."""

    def __init__(self, payload: Optional[dict[str, Any]] = None):
        self.payload: dict[str, Any] = dict(payload or {})
        self.error_class: str = str(self.payload.get("class", "GenericError"))
        self.desc: str = str(self.payload.get("desc", ""))
        super().__init__(f"{self.error_class}: {self.desc}")


class QMPNotConnectedError(RuntimeError):
    """A command was sent while no transport was bound to the client."""
