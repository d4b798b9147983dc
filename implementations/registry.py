from __future__ import annotations

import logging
import os

from pydantic import TypeAdapter

from qemu_supervisor import QemuVM, ProcessLauncher, VmDefinition, VMState

logger = logging.getLogger(__name__)

_definitions_adapter = TypeAdapter(list[VmDefinition])


class VMRegistry:
    """In-process catalog of supervised VMs, keyed by definition id."""

    def __init__(self, launcher: ProcessLauncher, tmp_dir: str | None = None) -> None:
        self.launcher = launcher
        self.tmp_dir = tmp_dir
        self._vms: dict[str, QemuVM] = {}

    @classmethod
    def from_file(
        cls, path: str, launcher: ProcessLauncher, tmp_dir: str | None = None
    ) -> "VMRegistry":
        registry = cls(launcher, tmp_dir=tmp_dir)
        if not path or not os.path.exists(path):
            logger.warning("VM definitions file %s not found; no VMs loaded", path)
            return registry

        with open(path, "rb") as fh:
            definitions = _definitions_adapter.validate_json(fh.read())
        for definition in definitions:
            registry.add(definition)
        logger.info("Loaded %d VM definitions from %s", len(definitions), path)
        return registry

    def add(self, definition: VmDefinition) -> QemuVM:
        if definition.id in self._vms:
            raise ValueError(f"duplicate VM id {definition.id!r}")
        vm = QemuVM(definition, self.launcher, tmp_dir=self.tmp_dir)
        self._vms[definition.id] = vm
        return vm

    def get(self, vm_id: str) -> QemuVM:
        if vm_id not in self._vms:
            raise KeyError(vm_id)
        return self._vms[vm_id]

    def all(self) -> dict[str, QemuVM]:
        return dict(self._vms)

    async def stop_all(self) -> int:
        """Stop every started VM. Returns how many were stopped."""
        cnt = 0
        for vm in self._vms.values():
            if vm.state != VMState.started:
                continue
            await vm.stop()
            cnt += 1
        return cnt
