from __future__ import annotations

import logging

import pytest

from mbcli.core.events import EventEmitter


def test_on_once_and_off() -> None:
    emitter = EventEmitter()
    seen: list[tuple[str, int]] = []

    def always(value: int) -> None:
        seen.append(("always", value))

    emitter.on("tick", always)
    emitter.once("tick", lambda value: seen.append(("once", value)))

    assert emitter.emit("tick", 1) is True
    assert emitter.emit("tick", 2) is True
    emitter.off("tick", always)
    assert emitter.emit("tick", 3) is False

    assert seen == [("always", 1), ("once", 1), ("always", 2)]


def test_failing_handler_is_logged_and_others_still_run(caplog: pytest.LogCaptureFixture) -> None:
    emitter = EventEmitter()
    seen: list[str] = []

    def broken() -> None:
        raise RuntimeError("boom")

    emitter.on("close", broken)
    emitter.on("close", lambda: seen.append("second"))

    with caplog.at_level(logging.ERROR, logger="mbcli.core.events"):
        emitter.emit("close")

    assert seen == ["second"]
    assert "Handler for 'close' event failed" in caplog.text
