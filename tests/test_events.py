import asyncio
import logging

from qemu_supervisor import EventEmitter


def test_listeners_run_in_registration_order():
    emitter = EventEmitter()
    calls = []
    emitter.on("statechange", lambda s: calls.append(("a", s)))
    emitter.on("statechange", lambda s: calls.append(("b", s)))

    assert emitter.emit("statechange", 1) is True
    emitter.emit("statechange", 2)

    assert calls == [("a", 1), ("b", 1), ("a", 2), ("b", 2)]
    assert emitter.emit("nobody-listens") is False


def test_once_and_off():
    emitter = EventEmitter()
    calls = []
    listener = emitter.on("x", lambda: calls.append("on"))
    emitter.once("x", lambda: calls.append("once"))

    emitter.emit("x")
    emitter.off("x", listener)
    emitter.emit("x")

    assert calls == ["on", "once"]
    assert emitter.listener_count("x") == 0
    # removing twice is fine
    emitter.off("x", listener)


def test_listener_removing_itself_does_not_skip_others():
    emitter = EventEmitter()
    calls = []

    def first():
        calls.append("first")
        emitter.off("x", first)

    emitter.on("x", first)
    emitter.on("x", lambda: calls.append("second"))
    emitter.emit("x")

    assert calls == ["first", "second"]


def test_async_listener_is_scheduled_and_failures_logged(caplog):
    async def _run():
        emitter = EventEmitter()
        seen = []

        async def ok(value):
            seen.append(value)

        async def boom(value):
            raise RuntimeError("listener exploded")

        emitter.on("evt", ok)
        emitter.on("evt", boom)
        emitter.emit("evt", 42)
        assert seen == []
        await asyncio.sleep(0.01)
        assert seen == [42]

    with caplog.at_level(logging.ERROR, logger="qemu_supervisor.events"):
        asyncio.run(_run())
    assert "listener exploded" in caplog.text


def test_remove_all_listeners():
    emitter = EventEmitter()
    emitter.on("a", lambda: None)
    emitter.on("b", lambda: None)
    emitter.remove_all_listeners("a")
    assert emitter.listener_count("a") == 0
    assert emitter.listener_count("b") == 1
    emitter.remove_all_listeners()
    assert emitter.listener_count("b") == 0
