"""Public API re-exports."""

import logging

from .errors import QMPError, QMPNotConnectedError, VMError, VMStateError
from .events import EventEmitter
from .launcher import SubprocessLauncher
from .models import (
    DisplayInfo,
    ProtocolEvent,
    TCPDisplayInfo,
    UDSDisplayInfo,
    VmDefinition,
    VMState,
)
from .process import Process, ProcessLauncher, ProcessLaunchOptions
from .qmp import QmpClient, QmpEvent
from .transport import StdioWriter
from .vm import QemuVM

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "QemuVM",
    "VmDefinition",
    "VMState",
    "DisplayInfo",
    "UDSDisplayInfo",
    "TCPDisplayInfo",
    "ProtocolEvent",
    "QmpClient",
    "QmpEvent",
    "StdioWriter",
    "Process",
    "ProcessLauncher",
    "ProcessLaunchOptions",
    "SubprocessLauncher",
    "EventEmitter",
    "VMError",
    "VMStateError",
    "QMPError",
    "QMPNotConnectedError",
]
