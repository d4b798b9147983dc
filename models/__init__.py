from .vms import VMAction, VMOut

from .control import (
    MonitorCommand,
    MonitorOutput,
    MediaRequest,
    ElementResponse,
)


__all__ = [
    "VMAction",
    "VMOut",
    "MonitorCommand",
    "MonitorOutput",
    "MediaRequest",
    "ElementResponse",
]
