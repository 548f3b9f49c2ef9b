"""Interfaces the core consumes from connections and the protocol master."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any, Protocol

from mbcli.core.events import EventHandler
from mbcli.master.pdu import Response


class ConnectionHandle(Protocol):
    """A live byte connection.

    Emits ``open``, ``close``, ``error`` (exception), ``data`` (bytes
    received) and ``write`` (bytes sent).
    """

    def on(self, event: str, handler: EventHandler) -> None: ...

    async def open(self) -> None: ...

    async def close(self) -> None: ...

    async def write(self, data: bytes) -> None: ...


class ProtocolMaster(Protocol):
    """Operation surface the dispatcher drives.

    Every operation completes with the decoded :class:`Response` or raises
    :class:`~mbcli.core.errors.ProtocolError`.
    """

    @property
    def connection(self) -> ConnectionHandle: ...

    @property
    def transport(self) -> Any: ...

    def on(self, event: str, handler: EventHandler) -> None: ...

    async def connect(self) -> None: ...

    async def destroy(self) -> None: ...

    async def read_coils(self, address: int, quantity: int) -> Response: ...

    async def read_discrete_inputs(self, address: int, quantity: int) -> Response: ...

    async def read_holding_registers(self, address: int, quantity: int) -> Response: ...

    async def read_input_registers(self, address: int, quantity: int) -> Response: ...

    async def report_slave_id(self) -> Response: ...

    async def read_fifo8(self, fifo_id: int, max_count: int) -> Response: ...

    async def read_object(self, object_id: int) -> Response: ...

    async def read_memory(self, address: int, count: int) -> Response: ...

    async def write_single_coil(self, address: int, state: bool) -> Response: ...

    async def write_multiple_registers(self, address: int, values: Sequence[int]) -> Response: ...

    async def write_fifo8(self, fifo_id: int, values: bytes) -> Response: ...

    async def write_object(self, object_id: int, values: bytes) -> Response: ...

    async def write_memory(self, address: int, values: bytes) -> Response: ...

    async def command(self, command_id: int, values: bytes) -> Response: ...

    async def send_generic(self, function_code: int, values: bytes) -> Response: ...
