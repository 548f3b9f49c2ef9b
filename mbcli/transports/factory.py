"""Connection selection by connection kind."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace

from mbcli.core.config import is_hardware_address
from mbcli.core.errors import ConfigError
from mbcli.core.model import ConnectionKind, EffectiveConfig, PortInfo, TransportKind
from mbcli.core.protocols import ConnectionHandle
from mbcli.transports import ble_gatt, can_j1939, serial_port, websocket

PortCallback = Callable[[PortInfo], None]


@dataclass(frozen=True)
class OpenedConnection:
    """A connection ready to be opened, plus the configuration it implies."""

    connection: ConnectionHandle
    config: EffectiveConfig


@dataclass(frozen=True)
class ConnectionStrategy:
    connect: Callable[[EffectiveConfig], Awaitable[OpenedConnection]]
    enumerate: Callable[[EffectiveConfig, PortCallback], Awaitable[None]]


async def _connect_serial(config: EffectiveConfig) -> OpenedConnection:
    return OpenedConnection(serial_port.open_serial(config.port, config.baud_rate), config)


async def _list_serial(config: EffectiveConfig, on_found: PortCallback) -> None:
    serial_port.list_serial_ports(on_found)


async def _connect_websocket(config: EffectiveConfig) -> OpenedConnection:
    return OpenedConnection(websocket.open_websocket(config.websocket), config)


async def _list_websocket(config: EffectiveConfig, on_found: PortCallback) -> None:
    websocket.list_websocket(config.websocket, on_found)


async def _connect_ble(config: EffectiveConfig) -> OpenedConnection:
    address = config.port if is_hardware_address(config.port) else None
    connection = await ble_gatt.open_ble(address, config.ble)
    bound = replace(config, connection=ConnectionKind.GENERIC, transport=TransportKind.IP)
    return OpenedConnection(connection, bound)


async def _list_ble(config: EffectiveConfig, on_found: PortCallback) -> None:
    await ble_gatt.scan_peripherals(on_found)


async def _connect_can_usb_com(config: EffectiveConfig) -> OpenedConnection:
    connection = can_j1939.open_can_usb_com(config.port, config.can_rate, config.can_id, config.can)
    return OpenedConnection(connection, replace(config, connection=ConnectionKind.GENERIC))


async def _connect_can(config: EffectiveConfig) -> OpenedConnection:
    if config.transport is TransportKind.SOCKETCAND:
        opener = can_j1939.open_socketcand
    else:
        opener = can_j1939.open_can
    connection = opener(config.port, config.can_rate, config.can_id, config.can)
    return OpenedConnection(connection, replace(config, connection=ConnectionKind.GENERIC))


async def _list_can(config: EffectiveConfig, on_found: PortCallback) -> None:
    can_j1939.list_can_channels(config.can, on_found)


_STRATEGIES: dict[ConnectionKind, ConnectionStrategy] = {
    ConnectionKind.SERIAL: ConnectionStrategy(_connect_serial, _list_serial),
    ConnectionKind.WEBSOCKET: ConnectionStrategy(_connect_websocket, _list_websocket),
    ConnectionKind.BLE: ConnectionStrategy(_connect_ble, _list_ble),
    # The adapter enumerates as a serial port.
    ConnectionKind.CAN_USB_COM: ConnectionStrategy(_connect_can_usb_com, _list_serial),
    ConnectionKind.CAN: ConnectionStrategy(_connect_can, _list_can),
}


def _strategy(kind: ConnectionKind) -> ConnectionStrategy:
    try:
        return _STRATEGIES[kind]
    except KeyError:
        raise ConfigError(f"Connection '{kind.value}' cannot be selected directly") from None


async def connect(config: EffectiveConfig) -> OpenedConnection:
    """Build the connection for ``config.connection``; BLE scans here."""
    return await _strategy(config.connection).connect(config)


async def enumerate_ports(config: EffectiveConfig, on_found: PortCallback) -> None:
    await _strategy(config.connection).enumerate(config, on_found)
