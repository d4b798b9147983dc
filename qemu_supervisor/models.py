from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

# Lowest TCP port QEMU can expose a VNC display on (display :0)
VNC_PORT_BASE = 5900

JSONValue = Any


class VMState(str, Enum):
    stopped = "stopped"
    starting = "starting"
    started = "started"
    stopping = "stopping"


class VmDefinition(BaseModel):
    """
    How to launch a single QEMU VM.

    `command` is the plain QEMU command line; the supervisor appends the
    QMP/VNC flags it needs the first time the VM is started.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(min_length=1)
    command: str = Field(min_length=1)
    snapshot: bool = False
    force_tcp: bool = Field(False, alias="forceTcp")
    vnc_host: Optional[str] = Field(None, alias="vncHost")
    vnc_port: Optional[int] = Field(None, alias="vncPort", ge=0, le=65535)

    @model_validator(mode="after")
    def _check_tcp_vnc_port(self) -> "VmDefinition":
        # The port only matters for a TCP display; win32 is re-checked by QemuVM
        if self.force_tcp and self.vnc_port is not None and self.vnc_port < VNC_PORT_BASE:
            raise ValueError(
                f"VNC port must be greater than or equal to {VNC_PORT_BASE}"
            )
        return self


class UDSDisplayInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["uds"] = "uds"
    path: str


class TCPDisplayInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["tcp"] = "tcp"
    host: str
    port: int


DisplayInfo = Union[UDSDisplayInfo, TCPDisplayInfo]


@dataclass
class PendingRequest:
    """A command written to QEMU that is still waiting for its response."""

    id: int
    command: str
    future: asyncio.Future

    def fulfill(self, value: JSONValue) -> None:
        if not self.future.done():
            self.future.set_result(value)

    def reject(self, error: BaseException) -> None:
        if not self.future.done():
            self.future.set_exception(error)


@dataclass
class ProtocolEvent:
    name: str
    data: dict[str, JSONValue] = field(default_factory=dict)
    timestamp: Optional[dict[str, int]] = None
