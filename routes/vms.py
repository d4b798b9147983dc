from __future__ import annotations

import asyncio

from fastapi import APIRouter, Depends, HTTPException

import settings
from implementations import VMRegistry
from models import (
    ElementResponse,
    MediaRequest,
    MonitorCommand,
    MonitorOutput,
    VMAction,
    VMOut,
)
from qemu_supervisor import QemuVM, SubprocessLauncher, VMState
from security import verify_bearer_token


registry = VMRegistry.from_file(settings.VM_DEFINITIONS_FILE, SubprocessLauncher())

vms_router = APIRouter(prefix="/vms", dependencies=[Depends(verify_bearer_token)])


def _get_vm(vm_id: str) -> QemuVM:
    try:
        return registry.get(vm_id)
    except KeyError as e:
        raise HTTPException(404, "VM not found") from e


async def _wait_booted(waiter: asyncio.Future) -> None:
    try:
        await asyncio.wait_for(waiter, settings.VM_TIMEOUT_BOOT_S)
    except asyncio.TimeoutError as e:
        raise HTTPException(504, "VM did not reach the started state in time") from e


# ---- REST Endpoints ----
@vms_router.get("/", response_model=list[VMOut])
async def list_vms() -> list[VMOut]:
    return [VMOut.from_vm(vm) for vm in registry.all().values()]


@vms_router.get("/{vm_id}", response_model=VMOut)
async def get_vm(vm_id: str) -> VMOut:
    return VMOut.from_vm(_get_vm(vm_id))


@vms_router.post("/{vm_id}/actions", response_model=VMOut)
async def action_vm(vm_id: str, act: VMAction) -> VMOut:
    vm = _get_vm(vm_id)

    if act.action == "start":
        if vm.state != VMState.started:
            booted = vm.wait_for_state(VMState.started, fail_on=VMState.stopped)
            await vm.start()
            await _wait_booted(booted)
    elif act.action == "stop":
        await vm.stop()
    elif act.action == "reboot":
        await vm.reboot()
    elif act.action == "reset":
        await _wait_booted(vm.reset())
    else:
        raise HTTPException(400, "Unsupported action")

    return VMOut.from_vm(vm)


@vms_router.post("/{vm_id}/monitor", response_model=MonitorOutput)
async def monitor_vm(vm_id: str, req: MonitorCommand) -> MonitorOutput:
    vm = _get_vm(vm_id)
    output = await vm.monitor_command(req.command)
    return MonitorOutput(output=output)


@vms_router.post("/{vm_id}/media", response_model=ElementResponse)
async def media_vm(vm_id: str, req: MediaRequest) -> ElementResponse:
    vm = _get_vm(vm_id)
    if req.filename:
        await vm.change_removable_media(req.device, req.filename)
    else:
        await vm.eject_removable_media(req.device)
    return ElementResponse(ok=True)
