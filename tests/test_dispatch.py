from __future__ import annotations

import asyncio

import pytest

from mbcli.core.dispatch import CommandDispatcher, parse_command
from mbcli.core.errors import ArgumentError, TransactionTimeoutError, UsageError
from mbcli.core.model import Action, Command
from mbcli.core.output import OutputController
from mbcli.master.pdu import Response

_OPERATIONS = {
    "read_coils",
    "read_discrete_inputs",
    "read_holding_registers",
    "read_input_registers",
    "report_slave_id",
    "read_fifo8",
    "read_object",
    "read_memory",
    "write_single_coil",
    "write_multiple_registers",
    "write_fifo8",
    "write_object",
    "write_memory",
    "command",
    "send_generic",
}


class RecordingMaster:
    def __init__(self, response: Response | None = None, error: Exception | None = None) -> None:
        self.calls: list[tuple[str, tuple]] = []
        self.response = response or Response(0x03, bytes.fromhex("020001"), (1,))
        self.error = error

    def __getattr__(self, name: str):
        if name not in _OPERATIONS:
            raise AttributeError(name)

        async def operation(*args):
            self.calls.append((name, args))
            if self.error is not None:
                raise self.error
            return self.response

        return operation


def _perform(tokens: list[str], master: RecordingMaster | None = None) -> RecordingMaster:
    master = master or RecordingMaster()
    dispatcher = CommandDispatcher(OutputController(echo=lambda *a, **k: None))
    asyncio.run(dispatcher.perform(parse_command(tokens), master))
    return master


def test_read_holding_parses_address_and_quantity() -> None:
    assert parse_command(["read", "holding", "0", "3"]) == Command(Action.READ, "holding", 0, 3)


@pytest.mark.parametrize(
    ("tokens", "address", "quantity"),
    [
        (["read", "coil"], 0, 1),
        (["read", "discrete", "0x10"], 16, 1),
        (["read", "input", "5", "0x7D"], 5, 125),
        (["read", "fifo"], 0, 250),
        (["read", "fifo", "2", "16"], 2, 16),
        (["read", "memory"], 0, 1),
        (["read", "memory", "0x10400", "8"], 0x10400, 8),
    ],
)
def test_read_defaults(tokens: list[str], address: int, quantity: int) -> None:
    command = parse_command(tokens)
    assert (command.address, command.quantity) == (address, quantity)


def test_write_memory_builds_bytes_and_calls_memory_write() -> None:
    master = _perform(["write", "memory", "0x400", "0x55", "0xAA"])
    assert master.calls == [("write_memory", (1024, b"\x55\xaa"))]


def test_write_holding_needs_two_words() -> None:
    with pytest.raises(ArgumentError, match="at least two words"):
        parse_command(["write", "holding", "0", "0x100"])

    master = _perform(["write", "holding", "0x10", "0x100", "32", "23"])
    assert master.calls == [("write_multiple_registers", (16, (256, 32, 23)))]


def test_write_coil_fifo_and_object() -> None:
    assert _perform(["write", "coil", "7", "0"]).calls == [("write_single_coil", (7, False))]
    assert _perform(["write", "coil", "7"]).calls == [("write_single_coil", (7, True))]
    assert _perform(["write", "fifo", "1", "0x41"]).calls == [("write_fifo8", (1, b"\x41"))]
    assert _perform(["write", "object", "3", "0:2", "9"]).calls == [("write_object", (3, b"\x00\x00\x09"))]


def test_read_operations_reach_the_master() -> None:
    assert _perform(["read", "slave"]).calls == [("report_slave_id", ())]
    assert _perform(["read", "object", "4"]).calls == [("read_object", (4,))]
    assert _perform(["read", "coil", "1", "8"]).calls == [("read_coils", (1, 8))]


def test_command_and_generic() -> None:
    assert _perform(["command", "5", "1", "2"]).calls == [("command", (5, b"\x01\x02"))]
    assert _perform(["generic", "0x66", "0xFF:2"]).calls == [("send_generic", (0x66, b"\xff\xff"))]


@pytest.mark.parametrize(
    "tokens",
    [
        ["command"],
        ["generic"],
        ["generic", "0"],
        ["generic", "128"],
        ["read", "holding", "0", "126"],
        ["read", "coil", "0", "2001"],
        ["read", "holding", "0x10000"],
        ["write", "object", "1"],
        ["write", "fifo", "1", "256"],
        ["write", "coil", "1", "2"],
        ["read", "holding", "zero"],
    ],
)
def test_bad_arguments_are_rejected(tokens: list[str]) -> None:
    with pytest.raises(ArgumentError):
        parse_command(tokens)


@pytest.mark.parametrize("tokens", [["frob"], ["read", "widget"], ["write", "slave"], ["write"], []])
def test_unknown_action_or_type(tokens: list[str]) -> None:
    with pytest.raises(UsageError):
        parse_command(tokens)


def test_unknown_type_lists_the_valid_ones() -> None:
    with pytest.raises(UsageError, match="Choose one of: coil, holding, fifo, object, memory"):
        parse_command(["write", "discrete", "0"])


def test_dispatch_forwards_protocol_errors_to_output() -> None:
    printed: list[tuple[str, bool]] = []
    output = OutputController(echo=lambda message, err=False: printed.append((message, err)))
    master = RecordingMaster(error=TransactionTimeoutError("No response"))

    code = asyncio.run(CommandDispatcher(output).dispatch(parse_command(["read", "input"]), master))

    assert code == 1
    assert printed == [("Error: No response", True)]


def test_dispatch_success_returns_zero() -> None:
    output = OutputController(echo=lambda *a, **k: None)
    code = asyncio.run(CommandDispatcher(output).dispatch(parse_command(["read", "coil"]), RecordingMaster()))
    assert code == 0
