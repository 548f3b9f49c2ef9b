"""Command grammar and dispatch onto the protocol master."""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass

from mbcli.core.errors import ArgumentError, ProtocolError, UsageError
from mbcli.core.lexer import BYTE_MAX, WORD_MAX, parse_bounded, parse_byte_sequence, parse_word_sequence
from mbcli.core.model import Action, Command
from mbcli.core.output import OutputController
from mbcli.core.protocols import ProtocolMaster
from mbcli.master.pdu import Response

MAX_READ_BITS = 2000
MAX_READ_REGISTERS = 125
MAX_WRITE_REGISTERS = 123
MAX_BYTES = 250
# Memory addresses carry a page byte above the 16-bit offset.
MEMORY_ADDRESS_MAX = 0xFFFFFF

Parser = Callable[[Action, str | None, Sequence[str]], Command]
Performer = Callable[[ProtocolMaster, Command], Awaitable[Response]]


@dataclass(frozen=True)
class _Operation:
    parse: Parser
    perform: Performer


def _arg(args: Sequence[str], index: int) -> str | None:
    return args[index] if len(args) > index else None


def _address(args: Sequence[str], high: int = WORD_MAX) -> int:
    return parse_bounded(_arg(args, 0), 0, low=0, high=high, what="address")


def _id(args: Sequence[str], what: str) -> int:
    return parse_bounded(_arg(args, 0), 0, low=0, high=BYTE_MAX, what=what)


def _bytes(args: Sequence[str], *, minimum: int) -> bytes:
    values = parse_byte_sequence(args)
    if len(values) < minimum:
        raise ArgumentError("No values specified")
    if len(values) > MAX_BYTES:
        raise ArgumentError(f"Too many values: {len(values)} (at most {MAX_BYTES})")
    return values


def _ranged_read(limit: int) -> Parser:
    def parse(action: Action, kind: str | None, args: Sequence[str]) -> Command:
        quantity = parse_bounded(_arg(args, 1), 1, low=1, high=limit, what="quantity")
        return Command(action, kind, _address(args), quantity)

    return parse


def _parse_slave(action: Action, kind: str | None, args: Sequence[str]) -> Command:
    return Command(action, kind)


def _parse_read_fifo(action: Action, kind: str | None, args: Sequence[str]) -> Command:
    max_count = parse_bounded(_arg(args, 1), MAX_BYTES, low=1, high=MAX_BYTES, what="count")
    return Command(action, kind, _id(args, "FIFO id"), max_count)


def _parse_read_object(action: Action, kind: str | None, args: Sequence[str]) -> Command:
    return Command(action, kind, _id(args, "object id"))


def _parse_read_memory(action: Action, kind: str | None, args: Sequence[str]) -> Command:
    length = parse_bounded(_arg(args, 1), 1, low=1, high=MAX_BYTES, what="length")
    return Command(action, kind, _address(args, MEMORY_ADDRESS_MAX), length)


def _parse_write_coil(action: Action, kind: str | None, args: Sequence[str]) -> Command:
    state = parse_bounded(_arg(args, 1), 1, low=0, high=1, what="coil value")
    return Command(action, kind, _address(args), 1, bytes([state]))


def _parse_write_holding(action: Action, kind: str | None, args: Sequence[str]) -> Command:
    words = parse_word_sequence(args[1:])
    if len(words) < 2:
        raise ArgumentError("No values specified (write holding needs at least two words)")
    if len(words) > MAX_WRITE_REGISTERS:
        raise ArgumentError(f"Too many values: {len(words)} (at most {MAX_WRITE_REGISTERS})")
    return Command(action, kind, _address(args), len(words), words)


def _parse_write_fifo(action: Action, kind: str | None, args: Sequence[str]) -> Command:
    value = parse_bounded(_arg(args, 1), 0, low=0, high=BYTE_MAX, what="data value")
    return Command(action, kind, _id(args, "FIFO id"), 1, bytes([value]))


def _parse_write_object(action: Action, kind: str | None, args: Sequence[str]) -> Command:
    values = _bytes(args[1:], minimum=1)
    return Command(action, kind, _id(args, "object id"), len(values), values)


def _parse_write_memory(action: Action, kind: str | None, args: Sequence[str]) -> Command:
    values = _bytes(args[1:], minimum=1)
    return Command(action, kind, _address(args, MEMORY_ADDRESS_MAX), len(values), values)


def _parse_command(action: Action, kind: str | None, args: Sequence[str]) -> Command:
    if _arg(args, 0) is None:
        raise ArgumentError("Missing command id")
    values = _bytes(args[1:], minimum=0)
    return Command(action, kind, _id(args, "command id"), len(values), values)


def _parse_generic(action: Action, kind: str | None, args: Sequence[str]) -> Command:
    if _arg(args, 0) is None:
        raise ArgumentError("Missing function code")
    function_code = parse_bounded(args[0], 0, low=1, high=0x7F, what="function code")
    values = _bytes(args[1:], minimum=0)
    return Command(action, kind, function_code, len(values), values)


_OPERATIONS: dict[tuple[Action, str | None], _Operation] = {
    (Action.READ, "coil"): _Operation(
        _ranged_read(MAX_READ_BITS),
        lambda master, c: master.read_coils(c.address, c.quantity),
    ),
    (Action.READ, "discrete"): _Operation(
        _ranged_read(MAX_READ_BITS),
        lambda master, c: master.read_discrete_inputs(c.address, c.quantity),
    ),
    (Action.READ, "holding"): _Operation(
        _ranged_read(MAX_READ_REGISTERS),
        lambda master, c: master.read_holding_registers(c.address, c.quantity),
    ),
    (Action.READ, "input"): _Operation(
        _ranged_read(MAX_READ_REGISTERS),
        lambda master, c: master.read_input_registers(c.address, c.quantity),
    ),
    (Action.READ, "slave"): _Operation(
        _parse_slave,
        lambda master, c: master.report_slave_id(),
    ),
    (Action.READ, "fifo"): _Operation(
        _parse_read_fifo,
        lambda master, c: master.read_fifo8(c.address, c.quantity),
    ),
    (Action.READ, "object"): _Operation(
        _parse_read_object,
        lambda master, c: master.read_object(c.address),
    ),
    (Action.READ, "memory"): _Operation(
        _parse_read_memory,
        lambda master, c: master.read_memory(c.address, c.quantity),
    ),
    (Action.WRITE, "coil"): _Operation(
        _parse_write_coil,
        lambda master, c: master.write_single_coil(c.address, bool(c.values[0])),
    ),
    (Action.WRITE, "holding"): _Operation(
        _parse_write_holding,
        lambda master, c: master.write_multiple_registers(c.address, c.values),
    ),
    (Action.WRITE, "fifo"): _Operation(
        _parse_write_fifo,
        lambda master, c: master.write_fifo8(c.address, c.values),
    ),
    (Action.WRITE, "object"): _Operation(
        _parse_write_object,
        lambda master, c: master.write_object(c.address, c.values),
    ),
    (Action.WRITE, "memory"): _Operation(
        _parse_write_memory,
        lambda master, c: master.write_memory(c.address, c.values),
    ),
    (Action.COMMAND, None): _Operation(
        _parse_command,
        lambda master, c: master.command(c.address, c.values),
    ),
    (Action.GENERIC, None): _Operation(
        _parse_generic,
        lambda master, c: master.send_generic(c.address, c.values),
    ),
}


def types_for(action: Action) -> list[str]:
    return [kind for (each, kind) in _OPERATIONS if each is action and kind is not None]


def parse_action(token: str | None) -> Action:
    try:
        return Action((token or "").lower())
    except ValueError:
        raise UsageError(f"Unknown action: {token}") from None


def parse_command(tokens: Sequence[str]) -> Command:
    """Build a :class:`Command` from ``ACTION [TYPE] [ARGS]...`` tokens.

    ``command`` and ``generic`` take no type; their first argument is the
    command id or function code.
    """
    if not tokens:
        raise UsageError("No action given")
    action = parse_action(tokens[0])
    if action in {Action.COMMAND, Action.GENERIC}:
        kind, args = None, tokens[1:]
    else:
        kind = tokens[1].lower() if len(tokens) > 1 else None
        args = tokens[2:]

    operation = _OPERATIONS.get((action, kind))
    if operation is None:
        raise UsageError(
            f"Trying to {action.value} unknown item {kind or '<none>'}. "
            f"Choose one of: {', '.join(types_for(action))}"
        )
    return operation.parse(action, kind, args)


class CommandDispatcher:
    """Runs one command against the master and hands the result to output."""

    def __init__(self, output: OutputController) -> None:
        self.output = output

    async def perform(self, command: Command, master: ProtocolMaster) -> Response:
        operation = _OPERATIONS.get((command.action, command.type))
        if operation is None:
            raise UsageError(f"Trying to {command.action.value} unknown item {command.type}")
        return await operation.perform(master, command)

    async def dispatch(self, command: Command, master: ProtocolMaster) -> int | None:
        try:
            response = await self.perform(command, master)
        except ProtocolError as exc:
            return self.output.handle(exc, None)
        return self.output.handle(None, response)
