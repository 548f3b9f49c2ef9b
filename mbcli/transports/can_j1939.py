"""CAN connections carrying MODBUS PDUs as J1939 proprietary-A messages."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from mbcli.core.errors import DeviceConnectionError
from mbcli.core.model import CanOptions, PortInfo
from mbcli.transports.base import BaseConnection

LOGGER = logging.getLogger(__name__)

# Proprietary A, peer to peer; the low byte of the PGN is the destination.
PROPRIETARY_A_PF = 0xEF
PROPRIETARY_A_PGN = 0xEF00
MESSAGE_PRIORITY = 6
ADDRESS_CLAIM_TIMEOUT_S = 2.0


def _load_j1939() -> Any:
    try:
        import j1939  # type: ignore
    except Exception as exc:  # pragma: no cover - import failure path
        raise DeviceConnectionError(
            "CAN connections require 'can-j1939'. Install dependency and retry."
        ) from exc
    return j1939


def _load_can() -> Any:
    try:
        import can  # type: ignore
    except Exception as exc:  # pragma: no cover - import failure path
        raise DeviceConnectionError(
            "CAN connections require 'python-can'. Install dependency and retry."
        ) from exc
    return can


def _node_name(j1939: Any) -> Any:
    return j1939.Name(
        arbitrary_address_capable=0,
        industry_group=j1939.Name.IndustryGroup.Industrial,
        vehicle_system_instance=0,
        vehicle_system=0,
        function=0,
        function_instance=0,
        ecu_instance=0,
        manufacturer_code=0,
        identity_number=0,
    )


class J1939Connection(BaseConnection):
    """Received messages are reported as ``source address + payload``;
    written data starts with the destination address."""

    def __init__(self, bus_kwargs: dict[str, Any], *, preferred_address: int, description: str) -> None:
        super().__init__(description)
        self.bus_kwargs = bus_kwargs
        self.preferred_address = preferred_address
        self._ecu: Any = None
        self._ca: Any = None
        self._loop: asyncio.AbstractEventLoop | None = None

    async def _open(self) -> None:
        j1939 = _load_j1939()
        can = _load_can()
        self._loop = asyncio.get_running_loop()
        ecu = j1939.ElectronicControlUnit()
        try:
            await self._loop.run_in_executor(None, lambda: ecu.connect(**self.bus_kwargs))
        except (can.CanError, OSError, ValueError) as exc:
            raise DeviceConnectionError(f"Could not open {self.description}: {exc}") from exc

        ca = j1939.ControllerApplication(_node_name(j1939), self.preferred_address)
        ecu.add_ca(controller_application=ca)
        ca.subscribe(self._on_message)
        ca.start()
        self._ecu, self._ca = ecu, ca

        deadline = self._loop.time() + ADDRESS_CLAIM_TIMEOUT_S
        while ca.state != j1939.ControllerApplication.State.NORMAL:
            if self._loop.time() > deadline:
                await self._close()
                raise DeviceConnectionError(
                    f"Could not claim J1939 address {self.preferred_address} on {self.description}"
                )
            await asyncio.sleep(0.05)

    def _on_message(self, priority: int, pgn: int, source: int, timestamp: float, data: Any) -> None:
        if pgn & 0x3FF00 != PROPRIETARY_A_PGN or data is None:
            return
        # Called from the bus notifier thread.
        if self._loop is None:
            return
        self._loop.call_soon_threadsafe(self._received, bytes([source]) + bytes(data))

    async def _close(self) -> None:
        ca, ecu = self._ca, self._ecu
        self._ca = self._ecu = None
        if ca is not None:
            ca.stop()
        if ecu is not None:
            ecu.disconnect()

    async def _write(self, data: bytes) -> None:
        if len(data) < 2:
            raise DeviceConnectionError("J1939 message needs a destination and a payload")
        can = _load_can()
        destination, payload = data[0], list(data[1:])
        try:
            sent = self._ca.send_pgn(0, PROPRIETARY_A_PF, destination, MESSAGE_PRIORITY, payload)
        except (can.CanError, OSError) as exc:
            raise DeviceConnectionError(f"CAN send failed: {exc}") from exc
        if sent is False:
            raise DeviceConnectionError("CAN send rejected; address not claimed")


def open_can(port: str | None, can_rate: int, can_id: int, options: CanOptions) -> J1939Connection:
    """Open a python-can interface channel directly."""
    if not port:
        raise DeviceConnectionError("No CAN channel given. Pass --port or run 'mb --list'.")
    bus_kwargs = {"interface": options.interface, "channel": port, "bitrate": can_rate}
    return J1939Connection(
        bus_kwargs,
        preferred_address=can_id,
        description=f"can {options.interface}:{port} @ {can_rate}",
    )


def open_socketcand(port: str | None, can_rate: int, can_id: int, options: CanOptions) -> J1939Connection:
    """Reach a remote CAN channel through a socketcand daemon."""
    if not port:
        raise DeviceConnectionError("No CAN channel given. Pass --port with the remote channel name.")
    bus_kwargs = {
        "interface": "socketcand",
        "host": options.socketcand_host,
        "port": options.socketcand_port,
        "channel": port,
    }
    return J1939Connection(
        bus_kwargs,
        preferred_address=can_id,
        description=f"socketcand {options.socketcand_host}:{options.socketcand_port}/{port}",
    )


def open_can_usb_com(port: str | None, can_rate: int, can_id: int, options: CanOptions) -> J1939Connection:
    """USB-to-CAN adapter driven through its serial-line (SLCAN) protocol."""
    if not port:
        raise DeviceConnectionError("No adapter port given. Pass --port or run 'mb --list'.")
    bus_kwargs = {
        "interface": "slcan",
        "channel": port,
        "bitrate": can_rate,
        "tty_baudrate": options.usb_baud_rate,
    }
    return J1939Connection(
        bus_kwargs,
        preferred_address=can_id,
        description=f"can-usb-com {port} @ {can_rate}",
    )


def list_can_channels(options: CanOptions, on_found: Callable[[PortInfo], None]) -> None:
    can = _load_can()
    try:
        configs = can.detect_available_configs(interfaces=[options.interface])
    except (can.CanError, OSError) as exc:
        raise DeviceConnectionError(f"Could not list CAN channels: {exc}") from exc
    for config in configs:
        on_found(PortInfo(name=str(config.get("channel", "")), description=str(config.get("interface", ""))))
