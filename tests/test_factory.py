from __future__ import annotations

import asyncio
from dataclasses import replace
from types import SimpleNamespace

import pytest

from mbcli.core.errors import ConfigError, DeviceConnectionError
from mbcli.core.model import DEFAULT_CONFIG, BleOptions, ConnectionKind, PortInfo, TransportKind
from mbcli.transports import ble_gatt, factory, serial_port
from mbcli.transports.can_j1939 import J1939Connection
from mbcli.transports.serial_port import SerialConnection
from mbcli.transports.websocket import WebsocketConnection


class FakeBleakError(Exception):
    pass


class FakeScanner:
    """Replays advertisements as soon as scanning starts."""

    advertisements: list[SimpleNamespace] = []

    def __init__(self, detection_callback) -> None:
        self.detection_callback = detection_callback

    async def __aenter__(self) -> FakeScanner:
        for device in self.advertisements:
            self.detection_callback(device, SimpleNamespace(local_name=device.name))
        return self

    async def __aexit__(self, *exc_info) -> None:
        return None


def _fake_bleak(devices: list[SimpleNamespace]) -> SimpleNamespace:
    scanner = type("Scanner", (FakeScanner,), {"advertisements": devices})
    return SimpleNamespace(BleakScanner=scanner, exc=SimpleNamespace(BleakError=FakeBleakError))


def _device(address: str, name: str = "") -> SimpleNamespace:
    return SimpleNamespace(address=address, name=name)


def test_serial_connection_needs_a_port() -> None:
    with pytest.raises(DeviceConnectionError, match="--port"):
        asyncio.run(factory.connect(DEFAULT_CONFIG))


def test_serial_connection_keeps_config() -> None:
    config = replace(DEFAULT_CONFIG, port="/dev/ttyUSB0", baud_rate=9600)
    opened = asyncio.run(factory.connect(config))
    assert isinstance(opened.connection, SerialConnection)
    assert (opened.connection.port, opened.connection.baud_rate) == ("/dev/ttyUSB0", 9600)
    assert opened.config == config


def test_websocket_connection_uses_configured_url() -> None:
    config = replace(DEFAULT_CONFIG, connection=ConnectionKind.WEBSOCKET, transport=TransportKind.IP)
    opened = asyncio.run(factory.connect(config))
    assert isinstance(opened.connection, WebsocketConnection)
    assert opened.connection.options.url == "http://127.0.0.1:8080"


def test_ble_connection_binds_generic_ip(monkeypatch: pytest.MonkeyPatch) -> None:
    devices = [_device("11:22:33:44:55:66", "other"), _device("AA:BB:CC:DD:EE:FF", "target")]
    monkeypatch.setattr(ble_gatt, "_load_bleak", lambda: _fake_bleak(devices))
    config = replace(
        DEFAULT_CONFIG,
        connection=ConnectionKind.BLE,
        transport=TransportKind.IP,
        port="aa:bb:cc:dd:ee:ff",
    )

    opened = asyncio.run(factory.connect(config))

    assert opened.connection.device.name == "target"
    assert opened.config.connection is ConnectionKind.GENERIC
    assert opened.config.transport is TransportKind.IP


def test_ble_first_discovery_wins_without_address(monkeypatch: pytest.MonkeyPatch) -> None:
    devices = [_device("11:22:33:44:55:66", "first"), _device("AA:BB:CC:DD:EE:FF", "second")]
    monkeypatch.setattr(ble_gatt, "_load_bleak", lambda: _fake_bleak(devices))

    device = asyncio.run(ble_gatt.find_peripheral(None, BleOptions()))
    assert device.name == "first"


def test_ble_scan_timeout(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(ble_gatt, "_load_bleak", lambda: _fake_bleak([]))

    with pytest.raises(DeviceConnectionError, match="scan timed out"):
        asyncio.run(ble_gatt.find_peripheral("AA:BB:CC:DD:EE:FF", BleOptions(scan_timeout_ms=10)))


def test_ble_listing_reports_each_address_once(monkeypatch: pytest.MonkeyPatch) -> None:
    devices = [_device("AA:BB:CC:DD:EE:FF", "pump"), _device("AA:BB:CC:DD:EE:FF", "pump"), _device("11:22:33:44:55:66")]
    monkeypatch.setattr(ble_gatt, "_load_bleak", lambda: _fake_bleak(devices))
    found: list[PortInfo] = []
    config = replace(DEFAULT_CONFIG, connection=ConnectionKind.BLE)

    async def scenario() -> None:
        # Scanning only stops when interrupted.
        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(factory.enumerate_ports(config, found.append), 0.05)

    asyncio.run(scenario())
    assert found == [PortInfo("AA:BB:CC:DD:EE:FF", "pump"), PortInfo("11:22:33:44:55:66", "")]


@pytest.mark.parametrize(
    ("transport", "expected"),
    [
        (TransportKind.J1939, {"interface": "socketcan", "channel": "can0", "bitrate": 500000}),
        (
            TransportKind.SOCKETCAND,
            {"interface": "socketcand", "host": "127.0.0.1", "port": 29536, "channel": "can0"},
        ),
    ],
)
def test_can_connection(transport: TransportKind, expected: dict) -> None:
    config = replace(
        DEFAULT_CONFIG,
        connection=ConnectionKind.CAN,
        transport=transport,
        port="can0",
        can_rate=500000,
        can_id=0x80,
    )
    opened = asyncio.run(factory.connect(config))
    assert isinstance(opened.connection, J1939Connection)
    assert opened.connection.bus_kwargs == expected
    assert opened.connection.preferred_address == 0x80
    assert opened.config.connection is ConnectionKind.GENERIC
    assert opened.config.transport is transport


def test_can_usb_com_uses_slcan_link() -> None:
    config = replace(
        DEFAULT_CONFIG,
        connection=ConnectionKind.CAN_USB_COM,
        transport=TransportKind.J1939,
        port="/dev/ttyACM0",
    )
    opened = asyncio.run(factory.connect(config))
    assert opened.connection.bus_kwargs == {
        "interface": "slcan",
        "channel": "/dev/ttyACM0",
        "bitrate": 250000,
        "tty_baudrate": 480800,
    }


def test_generic_connection_has_no_strategy() -> None:
    with pytest.raises(ConfigError):
        asyncio.run(factory.connect(replace(DEFAULT_CONFIG, connection=ConnectionKind.GENERIC)))


def test_serial_listing(monkeypatch: pytest.MonkeyPatch) -> None:
    ports = [
        SimpleNamespace(device="/dev/ttyUSB1", description="CP2102", manufacturer="Silicon Labs"),
        SimpleNamespace(device="/dev/ttyUSB0", description=None, manufacturer=None),
    ]
    fake_serial = SimpleNamespace(tools=SimpleNamespace(list_ports=SimpleNamespace(comports=lambda: ports)))
    monkeypatch.setattr(serial_port, "_load_serial", lambda: fake_serial)
    found: list[PortInfo] = []

    asyncio.run(factory.enumerate_ports(DEFAULT_CONFIG, found.append))

    assert found == [
        PortInfo("/dev/ttyUSB0", "", ""),
        PortInfo("/dev/ttyUSB1", "CP2102", "Silicon Labs"),
    ]


def test_websocket_listing_reports_url() -> None:
    found: list[PortInfo] = []
    config = replace(DEFAULT_CONFIG, connection=ConnectionKind.WEBSOCKET)
    asyncio.run(factory.enumerate_ports(config, found.append))
    assert [port.name for port in found] == ["http://127.0.0.1:8080"]
