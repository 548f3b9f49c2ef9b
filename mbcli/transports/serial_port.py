"""Serial port connection using pyserial."""

from __future__ import annotations

import asyncio
import threading
from collections.abc import Callable
from typing import Any

from mbcli.core.errors import DeviceConnectionError
from mbcli.core.model import PortInfo
from mbcli.transports.base import BaseConnection


def _load_serial() -> Any:
    try:
        import serial  # type: ignore
        import serial.tools.list_ports  # type: ignore
    except Exception as exc:  # pragma: no cover - import failure path
        raise DeviceConnectionError(
            "Serial connections require 'pyserial'. Install dependency and retry."
        ) from exc
    return serial


class SerialConnection(BaseConnection):
    def __init__(self, port: str, baud_rate: int, *, read_timeout_s: float = 0.05) -> None:
        super().__init__(f"serial {port} @ {baud_rate}")
        self.port = port
        self.baud_rate = baud_rate
        self.read_timeout_s = read_timeout_s
        self._serial: Any = None
        self._reader: threading.Thread | None = None
        self._stopping = threading.Event()
        self._loop: asyncio.AbstractEventLoop | None = None

    async def _open(self) -> None:
        serial = _load_serial()
        self._loop = asyncio.get_running_loop()
        try:
            self._serial = await self._loop.run_in_executor(
                None,
                lambda: serial.Serial(
                    port=self.port,
                    baudrate=self.baud_rate,
                    timeout=self.read_timeout_s,
                ),
            )
        except (serial.SerialException, OSError, ValueError) as exc:
            raise DeviceConnectionError(f"Could not open serial port {self.port}: {exc}") from exc

        self._stopping.clear()
        self._reader = threading.Thread(
            target=self._read_forever,
            name=f"mbcli-serial-{self.port}",
            daemon=True,
        )
        self._reader.start()

    def _read_forever(self) -> None:
        serial = _load_serial()
        loop = self._loop
        if loop is None:
            return
        while not self._stopping.is_set():
            try:
                data = self._serial.read(self._serial.in_waiting or 1)
            except (serial.SerialException, OSError) as exc:
                if self._stopping.is_set():
                    return
                error = DeviceConnectionError(f"Serial read failed on {self.port}: {exc}")
                loop.call_soon_threadsafe(self._failed, error)
                loop.call_soon_threadsafe(self._lost)
                return
            if data:
                loop.call_soon_threadsafe(self._received, data)

    async def _close(self) -> None:
        self._stopping.set()
        if self._serial is not None:
            self._serial.close()
        if self._reader is not None:
            await asyncio.get_running_loop().run_in_executor(None, self._reader.join, 1.0)
            self._reader = None

    async def _write(self, data: bytes) -> None:
        serial = _load_serial()
        try:
            self._serial.write(data)
            self._serial.flush()
        except (serial.SerialException, OSError) as exc:
            raise DeviceConnectionError(f"Serial write failed on {self.port}: {exc}") from exc


def open_serial(port: str | None, baud_rate: int) -> SerialConnection:
    if not port:
        raise DeviceConnectionError("No serial port given. Pass --port or run 'mb --list'.")
    return SerialConnection(port, baud_rate)


def list_serial_ports(on_found: Callable[[PortInfo], None]) -> None:
    serial = _load_serial()
    for port in sorted(serial.tools.list_ports.comports(), key=lambda item: item.device):
        on_found(
            PortInfo(
                name=port.device,
                description=port.description or "",
                manufacturer=port.manufacturer or "",
            )
        )
