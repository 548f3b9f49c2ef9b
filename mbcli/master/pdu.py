"""MODBUS request builders and response decoding.

Besides the standard register/coil functions, the vendor functions
0x41-0x47 address FIFOs, objects, raw memory and device commands. Their
layouts:

=====  ===================  ======================================  ==========================
Code   Name                 Request data                            Response data
=====  ===================  ======================================  ==========================
0x41   read FIFO8           id, max                                 status, count, bytes
0x42   write FIFO8          id, count, bytes                        status
0x43   read object          id                                      count, bytes
0x44   write object         id, count, bytes                        status
0x45   read memory          type, page, address (u16), count        status, bytes
0x46   write memory         type, page, address (u16), count, bytes status
0x47   command              id, bytes                               id, bytes
=====  ===================  ======================================  ==========================
"""

from __future__ import annotations

import struct
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import IntEnum
from typing import Any

from mbcli.core.errors import FramingError

EXCEPTION_FLAG = 0x80


class FunctionCode(IntEnum):
    READ_COILS = 0x01
    READ_DISCRETE_INPUTS = 0x02
    READ_HOLDING_REGISTERS = 0x03
    READ_INPUT_REGISTERS = 0x04
    WRITE_SINGLE_COIL = 0x05
    WRITE_MULTIPLE_REGISTERS = 0x10
    REPORT_SLAVE_ID = 0x11
    READ_FIFO8 = 0x41
    WRITE_FIFO8 = 0x42
    READ_OBJECT = 0x43
    WRITE_OBJECT = 0x44
    READ_MEMORY = 0x45
    WRITE_MEMORY = 0x46
    COMMAND = 0x47


def function_name(function_code: int) -> str:
    try:
        return FunctionCode(function_code & ~EXCEPTION_FLAG).name.lower()
    except ValueError:
        return f"function_0x{function_code & ~EXCEPTION_FLAG:02x}"


@dataclass(frozen=True)
class Request:
    function_code: int
    data: bytes = b""
    # Number of items asked for; bit reads need it to trim padding.
    quantity: int = 0

    def to_bytes(self) -> bytes:
        return bytes([self.function_code]) + self.data

    def __str__(self) -> str:
        payload = self.data.hex(" ") or "-"
        return f"{function_name(self.function_code)} request [{payload}]"


@dataclass(frozen=True)
class Response:
    function_code: int
    data: bytes
    value: Any = None

    @property
    def is_exception(self) -> bool:
        return bool(self.function_code & EXCEPTION_FLAG)

    @property
    def exception_code(self) -> int | None:
        return self.data[0] if self.is_exception and self.data else None

    def to_bytes(self) -> bytes:
        """Raw PDU bytes, function code first."""
        return bytes([self.function_code]) + self.data

    def __str__(self) -> str:
        name = function_name(self.function_code)
        if self.is_exception:
            return f"{name} exception {self.exception_code}"
        value = self.value.hex(" ") if isinstance(self.value, (bytes, bytearray)) else self.value
        return f"{name} response {value}"


# --- request builders ------------------------------------------------------

def read_coils(address: int, quantity: int) -> Request:
    return Request(FunctionCode.READ_COILS, struct.pack(">HH", address, quantity), quantity)


def read_discrete_inputs(address: int, quantity: int) -> Request:
    return Request(FunctionCode.READ_DISCRETE_INPUTS, struct.pack(">HH", address, quantity), quantity)


def read_holding_registers(address: int, quantity: int) -> Request:
    return Request(FunctionCode.READ_HOLDING_REGISTERS, struct.pack(">HH", address, quantity), quantity)


def read_input_registers(address: int, quantity: int) -> Request:
    return Request(FunctionCode.READ_INPUT_REGISTERS, struct.pack(">HH", address, quantity), quantity)


def write_single_coil(address: int, state: bool) -> Request:
    return Request(FunctionCode.WRITE_SINGLE_COIL, struct.pack(">HH", address, 0xFF00 if state else 0x0000))


def write_multiple_registers(address: int, values: Sequence[int]) -> Request:
    count = len(values)
    data = struct.pack(f">HHB{count}H", address, count, count * 2, *values)
    return Request(FunctionCode.WRITE_MULTIPLE_REGISTERS, data, count)


def report_slave_id() -> Request:
    return Request(FunctionCode.REPORT_SLAVE_ID)


def read_fifo8(fifo_id: int, max_count: int) -> Request:
    return Request(FunctionCode.READ_FIFO8, bytes([fifo_id, max_count]), max_count)


def write_fifo8(fifo_id: int, values: bytes) -> Request:
    return Request(FunctionCode.WRITE_FIFO8, bytes([fifo_id, len(values)]) + values, len(values))


def read_object(object_id: int) -> Request:
    return Request(FunctionCode.READ_OBJECT, bytes([object_id]))


def write_object(object_id: int, values: bytes) -> Request:
    return Request(FunctionCode.WRITE_OBJECT, bytes([object_id, len(values)]) + values, len(values))


def _memory_header(address: int, count: int) -> bytes:
    # Addresses above 16 bits select the page.
    return struct.pack(">BBHB", 0, (address >> 16) & 0xFF, address & 0xFFFF, count)


def read_memory(address: int, count: int) -> Request:
    return Request(FunctionCode.READ_MEMORY, _memory_header(address, count), count)


def write_memory(address: int, values: bytes) -> Request:
    return Request(FunctionCode.WRITE_MEMORY, _memory_header(address, len(values)) + values, len(values))


def command(command_id: int, values: bytes) -> Request:
    return Request(FunctionCode.COMMAND, bytes([command_id]) + values)


def generic(function_code: int, values: bytes) -> Request:
    return Request(function_code, bytes(values))


# --- response decoding -----------------------------------------------------

def _decode_bits(request: Request, data: bytes) -> tuple[bool, ...]:
    count = data[0]
    if len(data) != count + 1 or request.quantity > count * 8:
        raise ValueError("byte count does not match payload")
    return tuple(bool((data[1 + i // 8] >> (i % 8)) & 1) for i in range(request.quantity))


def _decode_registers(request: Request, data: bytes) -> tuple[int, ...]:
    count = data[0]
    if count % 2 or len(data) != count + 1:
        raise ValueError("byte count does not match payload")
    return struct.unpack(f">{count // 2}H", data[1:])


def _decode_single_coil(request: Request, data: bytes) -> tuple[int, bool]:
    address, state = struct.unpack(">HH", data)
    return address, state == 0xFF00


def _decode_pair(request: Request, data: bytes) -> tuple[int, int]:
    return struct.unpack(">HH", data)


def _decode_counted(request: Request, data: bytes) -> bytes:
    count = data[0]
    if len(data) != count + 1:
        raise ValueError("byte count does not match payload")
    return bytes(data[1:])


def _decode_fifo(request: Request, data: bytes) -> bytes:
    count = data[1]
    if len(data) != count + 2:
        raise ValueError("byte count does not match payload")
    return bytes(data[2:])


def _decode_status(request: Request, data: bytes) -> int:
    if len(data) != 1:
        raise ValueError("expected a single status byte")
    return data[0]


def _decode_after_first(request: Request, data: bytes) -> bytes:
    if not data:
        raise ValueError("missing leading byte")
    return bytes(data[1:])


def _decode_raw(request: Request, data: bytes) -> bytes:
    return bytes(data)


_DECODERS: dict[int, Callable[[Request, bytes], Any]] = {
    FunctionCode.READ_COILS: _decode_bits,
    FunctionCode.READ_DISCRETE_INPUTS: _decode_bits,
    FunctionCode.READ_HOLDING_REGISTERS: _decode_registers,
    FunctionCode.READ_INPUT_REGISTERS: _decode_registers,
    FunctionCode.WRITE_SINGLE_COIL: _decode_single_coil,
    FunctionCode.WRITE_MULTIPLE_REGISTERS: _decode_pair,
    FunctionCode.REPORT_SLAVE_ID: _decode_counted,
    FunctionCode.READ_FIFO8: _decode_fifo,
    FunctionCode.WRITE_FIFO8: _decode_status,
    FunctionCode.READ_OBJECT: _decode_counted,
    FunctionCode.WRITE_OBJECT: _decode_status,
    FunctionCode.READ_MEMORY: _decode_after_first,
    FunctionCode.WRITE_MEMORY: _decode_status,
    FunctionCode.COMMAND: _decode_after_first,
}


def decode_response(request: Request, pdu: bytes) -> Response:
    """Turn a response PDU into a :class:`Response` for *request*."""
    if not pdu:
        raise FramingError("Empty response PDU")

    function_code, data = pdu[0], bytes(pdu[1:])
    if function_code == request.function_code | EXCEPTION_FLAG:
        if len(data) != 1:
            raise FramingError(f"Malformed exception response: {pdu.hex(' ')}")
        return Response(function_code, data, value=data[0])
    if function_code != request.function_code:
        raise FramingError(
            f"Response function 0x{function_code:02X} does not match "
            f"request function 0x{request.function_code:02X}"
        )

    decoder = _DECODERS.get(function_code, _decode_raw)
    try:
        value = decoder(request, data)
    except (IndexError, ValueError, struct.error) as exc:
        raise FramingError(
            f"Malformed {function_name(function_code)} response: {data.hex(' ') or '-'}"
        ) from exc
    return Response(function_code, data, value)
