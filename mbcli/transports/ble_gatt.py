"""BLE GATT connection over a UART-style service using bleak."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from mbcli.core.errors import DeviceConnectionError
from mbcli.core.model import BleOptions, PortInfo
from mbcli.transports.base import BaseConnection

CONNECTION_LOG = logging.getLogger("mbcli.connection")


def _load_bleak() -> Any:
    try:
        import bleak  # type: ignore
        import bleak.exc  # type: ignore
    except Exception as exc:  # pragma: no cover - import failure path
        raise DeviceConnectionError(
            "BLE connections require 'bleak'. Install dependency and retry."
        ) from exc
    return bleak


class BleConnection(BaseConnection):
    def __init__(self, device: Any, options: BleOptions) -> None:
        super().__init__(f"ble {device.address}")
        self.device = device
        self.options = options
        self._client: Any = None

    async def _open(self) -> None:
        bleak = _load_bleak()
        client = bleak.BleakClient(self.device, disconnected_callback=self._on_disconnect)
        try:
            await client.connect()
            await client.start_notify(self.options.notify_char_uuid, self._on_notify)
        except (bleak.exc.BleakError, asyncio.TimeoutError, OSError) as exc:
            if client.is_connected:
                await client.disconnect()
            raise DeviceConnectionError(f"BLE connect failed for {self.device.address}: {exc}") from exc
        self._client = client

    def _on_notify(self, _: Any, data: bytearray) -> None:
        self._received(bytes(data))

    def _on_disconnect(self, _: Any) -> None:
        self._lost()

    async def _close(self) -> None:
        bleak = _load_bleak()
        client, self._client = self._client, None
        if client is None:
            return
        try:
            await client.stop_notify(self.options.notify_char_uuid)
        except bleak.exc.BleakError:
            pass
        await client.disconnect()

    async def _write(self, data: bytes) -> None:
        bleak = _load_bleak()
        try:
            await self._client.write_gatt_char(self.options.write_char_uuid, data, response=False)
        except (bleak.exc.BleakError, OSError) as exc:
            raise DeviceConnectionError(f"BLE write failed: {exc}") from exc


def _matches(device: Any, address: str | None) -> bool:
    return not address or device.address.upper() == address.upper()


async def find_peripheral(address: str | None, options: BleOptions) -> Any:
    """Scan until the first peripheral (or the one at *address*) shows up."""
    bleak = _load_bleak()
    loop = asyncio.get_running_loop()
    found: asyncio.Future[Any] = loop.create_future()

    def _on_detect(device: Any, _: Any) -> None:
        if _matches(device, address) and not found.done():
            found.set_result(device)

    timeout_s = options.scan_timeout_ms / 1000
    CONNECTION_LOG.info("[connection#scanning]")
    try:
        async with bleak.BleakScanner(detection_callback=_on_detect):
            return await asyncio.wait_for(found, timeout_s)
    except asyncio.TimeoutError as exc:
        target = address or "any peripheral"
        raise DeviceConnectionError(f"BLE scan timed out after {timeout_s:g}s looking for {target}") from exc
    except (bleak.exc.BleakError, OSError) as exc:
        raise DeviceConnectionError(f"Bluetooth adapter is not available: {exc}") from exc
    finally:
        CONNECTION_LOG.info("[connection#stopped]")


async def open_ble(address: str | None, options: BleOptions) -> BleConnection:
    device = await find_peripheral(address, options)
    return BleConnection(device, options)


async def scan_peripherals(on_found: Callable[[PortInfo], None]) -> None:
    """Report every peripheral once; runs until cancelled."""
    bleak = _load_bleak()
    seen: set[str] = set()

    def _on_detect(device: Any, advertisement: Any) -> None:
        if device.address in seen:
            return
        seen.add(device.address)
        name = getattr(advertisement, "local_name", None) or device.name or ""
        on_found(PortInfo(name=device.address, description=name))

    CONNECTION_LOG.info("[connection#scanning]")
    try:
        async with bleak.BleakScanner(detection_callback=_on_detect):
            await asyncio.Event().wait()
    except (bleak.exc.BleakError, OSError) as exc:
        raise DeviceConnectionError(f"Bluetooth adapter is not available: {exc}") from exc
    finally:
        CONNECTION_LOG.info("[connection#stopped]")
