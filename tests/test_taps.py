from __future__ import annotations

import logging
from pathlib import Path
from types import SimpleNamespace

from mbcli.core.events import EventEmitter
from mbcli.core.taps import (
    CONNECTION_LOGGER,
    TRANSACTION_LOGGER,
    attach_connection_taps,
    attach_transaction_taps,
    configure_logging,
)
from mbcli.master.pdu import Response


def _stream_handlers(name: str) -> list[logging.Handler]:
    return [
        handler
        for handler in logging.getLogger(name).handlers
        if type(handler) is logging.StreamHandler
    ]


def test_console_routing() -> None:
    configure_logging(verbose=False, structured_output=False, log_file=None)
    assert _stream_handlers(CONNECTION_LOGGER) == []
    assert len(_stream_handlers(TRANSACTION_LOGGER)) == 1

    configure_logging(verbose=True, structured_output=False, log_file=None)
    assert len(_stream_handlers(CONNECTION_LOGGER)) == 1

    configure_logging(verbose=True, structured_output=True, log_file=None)
    assert _stream_handlers(CONNECTION_LOGGER) == []
    assert _stream_handlers(TRANSACTION_LOGGER) == []


def test_reconfiguring_does_not_duplicate_handlers(tmp_path: Path) -> None:
    for _ in range(3):
        configure_logging(verbose=True, structured_output=False, log_file=tmp_path / "mb.log")
    assert len(logging.getLogger(TRANSACTION_LOGGER).handlers) == 2
    assert logging.getLogger(TRANSACTION_LOGGER).propagate is False


def test_connection_traffic_is_logged_as_hex(tmp_path: Path) -> None:
    log_file = tmp_path / "mb.log"
    configure_logging(verbose=False, structured_output=True, log_file=log_file)
    connection = EventEmitter()
    attach_connection_taps(connection)

    connection.emit("open")
    connection.emit("write", b"\x01\x03")
    connection.emit("data", b"\x01\x83\x02")
    connection.emit("error", RuntimeError("line noise"))

    text = log_file.read_text(encoding="utf-8")
    assert "[connection#open]" in text
    assert "[TX] <01 03>" in text
    assert "[RX] <01 83 02>" in text
    assert "[connection#error] line noise" in text


def test_ascii_traffic_is_logged_as_text(tmp_path: Path) -> None:
    log_file = tmp_path / "mb.log"
    configure_logging(verbose=False, structured_output=True, log_file=log_file)
    connection = EventEmitter()
    attach_connection_taps(connection, as_text=True)

    connection.emit("write", b":010300000001FB\r\n")

    assert "[TX] :010300000001FB" in log_file.read_text(encoding="utf-8")


def test_transaction_events_are_logged(tmp_path: Path) -> None:
    log_file = tmp_path / "mb.log"
    configure_logging(verbose=False, structured_output=True, log_file=log_file)
    master = SimpleNamespace(transport=EventEmitter())
    attach_transaction_taps(master)

    transaction = EventEmitter()
    transaction.request = "read_holding_registers request [00 00 00 03]"
    master.transport.emit("request", transaction)
    transaction.emit("timeout")
    response = Response(0x03, bytes.fromhex("020001"), (1,))
    transaction.emit("response", response)
    transaction.emit("complete", None, response)
    # Each listener fires once per transaction.
    transaction.emit("complete", None, response)

    text = log_file.read_text(encoding="utf-8")
    assert "read_holding_registers request [00 00 00 03]" in text
    assert "[timeout]" in text
    assert "read_holding_registers response (1,)" in text
    assert text.count("[complete]") == 1
