"""MODBUS master driving one framed connection."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from mbcli.core.errors import ConfigError, ExceptionResponseError, ProtocolError
from mbcli.core.events import EventEmitter
from mbcli.core.model import EffectiveConfig, TransportKind
from mbcli.core.protocols import ConnectionHandle
from mbcli.master import pdu
from mbcli.master.framing import AsciiFramer, Framer, IpFramer, J1939Framer, RtuFramer
from mbcli.master.transport import Transaction, Transport

LOGGER = logging.getLogger(__name__)


class ModbusMaster(EventEmitter):
    """Emits ``connected`` once the connection is open and ``disconnected``
    when it closes afterwards."""

    def __init__(
        self,
        connection: ConnectionHandle,
        framer: Framer,
        *,
        unit: int = 1,
        timeout_ms: int = 2000,
        max_retries: int = 0,
        max_concurrent_requests: int = 1,
    ) -> None:
        super().__init__()
        self._connection = connection
        self._transport = Transport(
            framer,
            connection,
            max_concurrent_requests=max_concurrent_requests,
        )
        self.unit = unit
        self.timeout_s = timeout_ms / 1000
        self.max_retries = max_retries
        self._connected = False
        connection.on("close", self._on_connection_close)

    @property
    def connection(self) -> ConnectionHandle:
        return self._connection

    @property
    def transport(self) -> Transport:
        return self._transport

    async def connect(self) -> None:
        await self._connection.open()
        self._connected = True
        self.emit("connected")

    async def destroy(self) -> None:
        self._transport.close()
        await self._connection.close()

    def _on_connection_close(self) -> None:
        if self._connected:
            self._connected = False
            self.emit("disconnected")

    async def request(self, request: pdu.Request, *, unit: int | None = None) -> pdu.Response:
        """Run one transaction and return its decoded response."""
        transaction = Transaction(
            request,
            self.unit if unit is None else unit,
            timeout_s=self.timeout_s,
            max_retries=self.max_retries,
        )
        try:
            response_pdu = await self._transport.execute(transaction)
            response = pdu.decode_response(request, response_pdu)
        except ProtocolError as exc:
            transaction.emit("error", exc)
            transaction.emit("complete", exc, None)
            raise

        transaction.emit("response", response)
        if response.is_exception:
            error = ExceptionResponseError(request.function_code, response.exception_code)
            transaction.emit("complete", error, None)
            raise error
        transaction.emit("complete", None, response)
        return response

    async def read_coils(self, address: int, quantity: int) -> pdu.Response:
        return await self.request(pdu.read_coils(address, quantity))

    async def read_discrete_inputs(self, address: int, quantity: int) -> pdu.Response:
        return await self.request(pdu.read_discrete_inputs(address, quantity))

    async def read_holding_registers(self, address: int, quantity: int) -> pdu.Response:
        return await self.request(pdu.read_holding_registers(address, quantity))

    async def read_input_registers(self, address: int, quantity: int) -> pdu.Response:
        return await self.request(pdu.read_input_registers(address, quantity))

    async def report_slave_id(self) -> pdu.Response:
        return await self.request(pdu.report_slave_id())

    async def read_fifo8(self, fifo_id: int, max_count: int) -> pdu.Response:
        return await self.request(pdu.read_fifo8(fifo_id, max_count))

    async def read_object(self, object_id: int) -> pdu.Response:
        return await self.request(pdu.read_object(object_id))

    async def read_memory(self, address: int, count: int) -> pdu.Response:
        return await self.request(pdu.read_memory(address, count))

    async def write_single_coil(self, address: int, state: bool) -> pdu.Response:
        return await self.request(pdu.write_single_coil(address, state))

    async def write_multiple_registers(self, address: int, values: Sequence[int]) -> pdu.Response:
        return await self.request(pdu.write_multiple_registers(address, values))

    async def write_fifo8(self, fifo_id: int, values: bytes) -> pdu.Response:
        return await self.request(pdu.write_fifo8(fifo_id, values))

    async def write_object(self, object_id: int, values: bytes) -> pdu.Response:
        return await self.request(pdu.write_object(object_id, values))

    async def write_memory(self, address: int, values: bytes) -> pdu.Response:
        return await self.request(pdu.write_memory(address, values))

    async def command(self, command_id: int, values: bytes) -> pdu.Response:
        return await self.request(pdu.command(command_id, values))

    async def send_generic(self, function_code: int, values: bytes) -> pdu.Response:
        return await self.request(pdu.generic(function_code, values))


def create_framer(config: EffectiveConfig) -> Framer:
    transport = config.transport
    if transport is TransportKind.RTU:
        return RtuFramer(eof_timeout_s=config.eof_timeout_ms / 1000)
    if transport is TransportKind.ASCII:
        return AsciiFramer()
    if transport is TransportKind.IP:
        return IpFramer()
    if transport in {TransportKind.J1939, TransportKind.SOCKETCAND}:
        return J1939Framer()
    raise ConfigError(f"Transport '{transport.value}' is not supported")


def create_master(config: EffectiveConfig, connection: ConnectionHandle) -> ModbusMaster:
    """Build the master for an opened-or-openable *connection*."""
    framer = create_framer(config)
    LOGGER.debug("Using %s framing for unit %s", framer.name, config.unit)
    return ModbusMaster(
        connection,
        framer,
        unit=config.unit,
        timeout_ms=config.timeout_ms,
        max_retries=config.max_retries,
        max_concurrent_requests=config.max_concurrent_requests,
    )
