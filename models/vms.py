from __future__ import annotations
from typing import Literal

from pydantic import BaseModel, Field

from qemu_supervisor import QemuVM, TCPDisplayInfo, UDSDisplayInfo, VMState


class VMAction(BaseModel):
    action: Literal["start", "stop", "reboot", "reset"]


class VMOut(BaseModel):
    id: str
    state: VMState
    display: UDSDisplayInfo | TCPDisplayInfo | None = Field(
        None, description="VNC connection info, null until the VM was started once"
    )
    snapshot: bool

    @staticmethod
    def from_vm(vm: QemuVM) -> "VMOut":
        return VMOut(
            id=vm.definition.id,
            state=vm.state,
            display=vm.display_info,
            snapshot=vm.snapshots_supported(),
        )
