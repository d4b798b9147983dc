from __future__ import annotations

import asyncio
import logging
import os
import shlex
import sys
from typing import Any, Awaitable, Mapping, Optional

import settings

from .errors import QMPError, QMPNotConnectedError, VMError, VMStateError
from .events import EventEmitter
from .models import (
    VNC_PORT_BASE,
    DisplayInfo,
    JSONValue,
    ProtocolEvent,
    TCPDisplayInfo,
    UDSDisplayInfo,
    VmDefinition,
    VMState,
)
from .process import Process, ProcessLauncher, ProcessLaunchOptions
from .qmp import QmpClient, QmpEvent
from .transport import StdioWriter


_STDERR_CHUNK = 4096


async def _discard(future: Awaitable[Any]) -> None:
    await future


async def _text_or_empty(future: Awaitable[Any]) -> str:
    result = await future
    return "" if result is None else result


class QemuVM(EventEmitter):
    """
    Supervises one QEMU process and its QMP connection.

    State machine::

        stopped -> starting -> started -> stopping -> stopped
                      ^           |
                      +-----------+   (QEMU exited with code 0)

    Emits ``statechange`` with the new VMState on every transition.

    QEMU is always launched with ``-no-shutdown`` so a guest power-off leaves
    the process alive; the resulting STOP event is turned into a reset. A QEMU
    exit with code 0 outside of ``stop()`` is treated as a clean restart and
    the same command line is launched again. Any other exit code stops the VM
    for good, since it usually means a broken command line.
    """

    def __init__(
        self,
        definition: VmDefinition,
        launcher: ProcessLauncher,
        *,
        tmp_dir: Optional[str] = None,
        socket_prefix: Optional[str] = None,
    ):
        super().__init__()
        self._definition = definition
        self._launcher = launcher
        self._tmp_dir = tmp_dir or settings.VM_TMP_DIR
        self._socket_prefix = socket_prefix or settings.VM_SOCKET_PREFIX
        self.logger = logging.getLogger(f"{__name__}.{definition.id}")

        self._state = VMState.stopped
        self._process: Optional[Process] = None
        self._writer: Optional[StdioWriter] = None
        self._stderr_tasks: set[asyncio.Task] = set()
        self._display_info: Optional[DisplayInfo] = None
        self._added_arguments = False

        if self._uses_tcp():
            self._vnc_port()

        self._qmp = QmpClient()
        self._qmp.on(QmpEvent.STOP, self._on_guest_stop)
        self._qmp.on(QmpEvent.RESET, self._on_guest_reset)
        self._qmp.on("connected", self._on_qmp_connected)

    # ---- Accessors ----
    @property
    def state(self) -> VMState:
        return self._state

    @property
    def definition(self) -> VmDefinition:
        return self._definition

    @property
    def display_info(self) -> Optional[DisplayInfo]:
        """VNC connection info. None until the VM was started once."""
        return self._display_info

    @property
    def vnc_path(self) -> str:
        return os.path.join(
            self._tmp_dir, f"{self._socket_prefix}-{self._definition.id}-vnc"
        )

    def snapshots_supported(self) -> bool:
        return self._definition.snapshot

    # ---- Lifecycle ----
    async def start(self) -> None:
        if self._process is not None:
            return
        if not self._added_arguments:
            self._add_arguments()
        self._start_qemu(self._definition.command)

    def stop(self) -> asyncio.Future:
        """Terminate QEMU. The returned future resolves once the VM is stopped."""
        self._assert_state(VMState.started, "cannot stop a non-started VM")
        stopped = self.wait_for_state(VMState.stopped)
        # Set before killing so the exit is not mistaken for a clean restart
        self._set_state(VMState.stopping)
        self._stop_qemu()
        return stopped

    def reset(self) -> asyncio.Future:
        """
        Restart QEMU through the clean-exit path.

        The returned future resolves when the VM is started again and fails
        with VMError if it ends up stopped instead.
        """
        self._assert_state(VMState.started, "cannot reset a non-started VM")
        restarted = self.wait_for_state(VMState.started, fail_on=VMState.stopped)
        self._stop_qemu()
        return restarted

    def reboot(self) -> Awaitable[None]:
        self._assert_state(VMState.started, "cannot reboot a non-started VM")
        return _discard(self._qmp.execute("system_reset"))

    def wait_for_state(
        self, state: VMState, fail_on: Optional[VMState] = None
    ) -> asyncio.Future:
        """
        Future resolved on the next transition into ``state``.

        If ``fail_on`` is reached first the future fails with VMError.
        """
        future = asyncio.get_running_loop().create_future()

        def _listener(new_state: VMState) -> None:
            if new_state == state:
                if not future.done():
                    future.set_result(None)
            elif fail_on is not None and new_state == fail_on:
                if not future.done():
                    future.set_exception(
                        VMError(f"VM reached {new_state.value} instead of {state.value}")
                    )
            else:
                return
            self.off("statechange", _listener)

        self.on("statechange", _listener)
        return future

    # ---- Commands ----
    def qmp_command(
        self, command: str, arguments: Optional[Mapping[str, JSONValue]] = None
    ) -> asyncio.Future:
        self._assert_state(
            VMState.started, f"cannot run QMP command {command!r} on a non-started VM"
        )
        return self._qmp.execute(command, arguments)

    def monitor_command(self, command_line: str) -> Awaitable[str]:
        """Run a human monitor (HMP) command and return its text output."""
        self._assert_state(
            VMState.started, "cannot run a monitor command on a non-started VM"
        )
        return _text_or_empty(
            self._qmp.execute(
                "human-monitor-command", {"command-line": command_line}
            )
        )

    def change_removable_media(self, device: str, image_path: str) -> Awaitable[None]:
        self._assert_state(VMState.started, "cannot change media on a non-started VM")
        return _discard(
            self._qmp.execute(
                "blockdev-change-medium", {"device": device, "filename": image_path}
            )
        )

    def eject_removable_media(self, device: str) -> Awaitable[None]:
        self._assert_state(VMState.started, "cannot eject media on a non-started VM")
        return _discard(self._qmp.execute("eject", {"device": device}))

    # ---- Internals ----
    def _assert_state(self, expected: VMState, message: str) -> None:
        if self._state != expected:
            raise VMStateError(f"{message} (state is {self._state.value})")

    def _set_state(self, state: VMState) -> None:
        self._state = state
        self.logger.debug("State changed to %s", state.value)
        self.emit("statechange", state)

    def _uses_tcp(self) -> bool:
        return self._definition.force_tcp or sys.platform == "win32"

    def _vnc_port(self) -> int:
        port = self._definition.vnc_port or settings.VM_DEFAULT_VNC_PORT
        if port < VNC_PORT_BASE:
            raise ValueError(
                f"VNC port must be greater than or equal to {VNC_PORT_BASE} (got {port})"
            )
        return port

    def _add_arguments(self) -> None:
        """Append the QMP/VNC flags to the command line. Runs once per VM."""
        args = [self._definition.command, "-no-shutdown"]
        if self._definition.snapshot:
            args.append("-snapshot")
        args += ["-qmp", "stdio"]

        if self._uses_tcp():
            host = self._definition.vnc_host or settings.VM_DEFAULT_VNC_HOST
            port = self._vnc_port()
            args += ["-vnc", f"{host}:{port - VNC_PORT_BASE}"]
            self._display_info = TCPDisplayInfo(host=host, port=port)
        else:
            args += ["-vnc", shlex.quote(f"unix:{self.vnc_path}")]
            self._display_info = UDSDisplayInfo(path=self.vnc_path)

        self._definition = self._definition.model_copy(
            update={"command": " ".join(args)}
        )
        self._added_arguments = True

    def _start_qemu(self, command: str) -> None:
        self._set_state(VMState.starting)
        self.logger.info('Starting QEMU with command "%s"', command)

        try:
            process = self._launcher.launch(
                command,
                ProcessLaunchOptions(stdin="pipe", stdout="pipe", stderr="pipe"),
            )
        except Exception:
            self.logger.exception("Could not launch QEMU")
            self._set_state(VMState.stopped)
            raise

        self._process = process
        process.on("spawn", lambda: self._on_spawn(process))
        process.on("exit", lambda code: self._on_exit(process, code))

    def _stop_qemu(self) -> None:
        if self._process is not None:
            self._process.kill("SIGTERM")

    def _on_spawn(self, process: Process) -> None:
        if process is not self._process:
            return
        self.logger.info("QEMU started")

        if process.stderr is not None:
            task = asyncio.get_running_loop().create_task(
                self._log_stderr(process.stderr)
            )
            self._stderr_tasks.add(task)
            task.add_done_callback(self._stderr_tasks.discard)

        self._qmp_stdio_init(process)

    def _qmp_stdio_init(self, process: Process) -> None:
        self.logger.info("Initializing QMP over stdio")
        if process.stdout is None or process.stdin is None:
            self.logger.error("QEMU was launched without piped stdio; QMP unavailable")
            return
        self._qmp.reset()
        self._writer = StdioWriter(process.stdout, process.stdin, self._qmp)
        self._qmp.set_writer(self._writer)

    async def _log_stderr(self, stream: asyncio.StreamReader) -> None:
        # Chunked reads keep the pipe drained whatever the line length
        pending = bytearray()
        while True:
            chunk = await stream.read(_STDERR_CHUNK)
            if not chunk:
                break
            pending.extend(chunk)
            *lines, rest = pending.split(b"\n")
            pending = bytearray(rest)
            if len(pending) > _STDERR_CHUNK:
                lines.append(bytes(pending))
                pending.clear()
            for line in lines:
                self._log_stderr_line(line)
        self._log_stderr_line(pending)

    def _log_stderr_line(self, line: bytes) -> None:
        text = line.decode("utf-8", errors="replace").rstrip()
        if text:
            self.logger.error("QEMU stderr: %s", text)

    def _on_exit(self, process: Process, code: Optional[int]) -> None:
        if process is not self._process:
            return
        self.logger.info("QEMU process exited with code %s", code)

        self._qmp.set_writer(None)
        self._qmp.reset()
        if self._writer is not None:
            self._writer.close()
            self._writer = None

        # QEMU may never have created it (TCP mode, early failure)
        try:
            os.remove(self.vnc_path)
        except OSError:
            pass

        process.dispose()
        self._process = None

        if self._state == VMState.stopping:
            self._set_state(VMState.stopped)
        elif code == 0:
            try:
                self._start_qemu(self._definition.command)
            except Exception:
                # already logged and moved to stopped by _start_qemu
                pass
        else:
            self.logger.error(
                "QEMU exited with a non-zero exit code (%s). This usually means "
                "an error in the command line. Stopping VM.",
                code,
            )
            self._set_state(VMState.stopped)

    def _on_qmp_connected(self) -> None:
        if self._process is None or self._state != VMState.starting:
            self.logger.warning(
                "Ignoring QMP connection while %s", self._state.value
            )
            return
        self.logger.info("QMP ready")
        self._set_state(VMState.started)

    async def _on_guest_stop(self, event: ProtocolEvent) -> None:
        # With -no-shutdown a guest power-off only pauses the VM; reset it
        try:
            await self._qmp.execute("system_reset")
        except (QMPError, QMPNotConnectedError) as e:
            self.logger.warning("system_reset after %s failed: %s", event.name, e)

    async def _on_guest_reset(self, event: ProtocolEvent) -> None:
        try:
            await self._qmp.execute("cont")
        except (QMPError, QMPNotConnectedError) as e:
            self.logger.warning("cont after %s failed: %s", event.name, e)
