# conftest.py
import asyncio
import json
from typing import Any, Callable, Optional

import pytest
from fastapi.testclient import TestClient

import settings
from implementations import VMRegistry
from qemu_supervisor import Process, ProcessLauncher, ProcessLaunchOptions, VmDefinition
from routes import vms
import main


GREETING = {
    "QMP": {
        "version": {
            "qemu": {"micro": 0, "minor": 2, "major": 8},
            "package": "",
        },
        "capabilities": ["oob"],
    }
}


# ----------------------
# Test Utilities / Fakes
# ----------------------
class FakeStdin:
    def __init__(self, on_write: Callable[[bytes], None]):
        self.data = bytearray()
        self.closed = False
        self._on_write = on_write

    def write(self, data: bytes) -> None:
        self.data.extend(data)
        self._on_write(data)

    def is_closing(self) -> bool:
        return self.closed

    def close(self) -> None:
        self.closed = True


class FakeProcess(Process):
    """
    Scripted QEMU. Greets right after spawn and answers every QMP command with
    ``{"return": {}}`` unless ``responses`` says otherwise (None = no answer).
    """

    def __init__(
        self,
        command: str,
        options: Optional[ProcessLaunchOptions],
        responses: dict[str, Any],
        exit_on_kill: Optional[int],
        greet: bool,
    ):
        super().__init__()
        self.command = command
        self.options = options
        self.responses = responses
        self.exit_on_kill = exit_on_kill
        self.greet = greet
        self.commands: list[dict] = []
        self.signals: list[Any] = []
        self.exited: Optional[int] = None
        self._line = bytearray()

        self.stdout = asyncio.StreamReader()
        self.stderr = asyncio.StreamReader()
        self.stdin = FakeStdin(self._on_stdin)
        asyncio.get_running_loop().call_soon(self._spawn)

    def _spawn(self) -> None:
        self.emit("spawn")
        if self.greet:
            self.send(GREETING)

    def send(self, message: dict) -> None:
        self.stdout.feed_data(json.dumps(message).encode("utf-8") + b"\r\n")

    def send_raw(self, data: bytes) -> None:
        self.stdout.feed_data(data)

    def _on_stdin(self, data: bytes) -> None:
        self._line.extend(data)
        while b"\n" in self._line:
            end = self._line.index(b"\n")
            cmd = json.loads(bytes(self._line[:end]))
            del self._line[: end + 1]
            self.commands.append(cmd)
            reply = self.responses.get(cmd["execute"], {"return": {}})
            if reply is not None:
                self.send(reply)

    def command_names(self) -> list[str]:
        return [c["execute"] for c in self.commands]

    def exit(self, code: Optional[int]) -> None:
        self.exited = code
        self.stdout.feed_eof()
        self.stderr.feed_eof()
        self.stdin.close()
        self.emit("exit", code)

    def kill(self, sig=None) -> bool:
        self.signals.append(sig)
        if self.exit_on_kill is not None:
            asyncio.get_running_loop().call_soon(self.exit, self.exit_on_kill)
        return True


class FakeLauncher(ProcessLauncher):
    def __init__(self):
        self.launched: list[FakeProcess] = []
        self.responses: dict[str, Any] = {}
        # QEMU exits 0 on SIGTERM
        self.exit_on_kill: Optional[int] = 0
        self.greet = True

    def launch(self, command, options=None) -> FakeProcess:
        proc = FakeProcess(
            command,
            options,
            responses=self.responses,
            exit_on_kill=self.exit_on_kill,
            greet=self.greet,
        )
        self.launched.append(proc)
        return proc

    @property
    def last(self) -> FakeProcess:
        return self.launched[-1]


class RecordingWriter:
    def __init__(self):
        self.chunks: list[bytes] = []

    def write_some(self, data: bytes) -> None:
        self.chunks.append(data)

    @property
    def messages(self) -> list[dict]:
        return [json.loads(c) for c in self.chunks]


async def _eventually(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.001)


# ----------------------
# Shared Fixtures
# ----------------------
@pytest.fixture
def fake_launcher() -> FakeLauncher:
    return FakeLauncher()


@pytest.fixture
def recording_writer() -> RecordingWriter:
    return RecordingWriter()


@pytest.fixture
def eventually():
    """Await until a predicate holds, polling the event loop."""
    return _eventually


@pytest.fixture
def vm_definition() -> VmDefinition:
    return VmDefinition(
        id="testvm", command="qemu-system-x86_64 -m 512", snapshot=True
    )


@pytest.fixture(autouse=True)
def patch_settings(monkeypatch, tmp_path):
    """Keep sockets and auth isolated per test."""
    monkeypatch.setattr(settings, "VM_TMP_DIR", str(tmp_path), raising=False)
    monkeypatch.setattr(settings, "AUTH_TOKEN", "testtoken", raising=False)
    monkeypatch.setattr(settings, "VM_TIMEOUT_BOOT_S", 5, raising=False)


@pytest.fixture
def auth_header():
    return {"Authorization": "Bearer testtoken"}


@pytest.fixture
def registry(fake_launcher, tmp_path, monkeypatch) -> VMRegistry:
    test_registry = VMRegistry(fake_launcher, tmp_dir=str(tmp_path))
    test_registry.add(
        VmDefinition(id="vm1", command="qemu-system-x86_64 -m 512", snapshot=True)
    )
    monkeypatch.setattr(vms, "registry", test_registry, raising=False)
    return test_registry


@pytest.fixture
def client(registry):
    with TestClient(main.app) as test_client:
        yield test_client
