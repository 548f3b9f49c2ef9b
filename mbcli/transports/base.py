"""Common behaviour of byte connections."""

from __future__ import annotations

from mbcli.core.errors import DeviceConnectionError
from mbcli.core.events import EventEmitter


class BaseConnection(EventEmitter):
    """Event-emitting connection; subclasses implement ``_open``, ``_close``
    and ``_write`` and report received bytes through ``_received``."""

    def __init__(self, description: str) -> None:
        super().__init__()
        self.description = description
        self.is_open = False

    def __str__(self) -> str:
        return self.description

    async def open(self) -> None:
        await self._open()
        self.is_open = True
        self.emit("open")

    async def close(self) -> None:
        if not self.is_open:
            return
        self.is_open = False
        try:
            await self._close()
        finally:
            self.emit("close")

    async def write(self, data: bytes) -> None:
        if not self.is_open:
            raise DeviceConnectionError(f"{self} is not open")
        try:
            await self._write(data)
        except DeviceConnectionError as exc:
            self.emit("error", exc)
            raise
        self.emit("write", data)

    async def _open(self) -> None:
        raise NotImplementedError

    async def _close(self) -> None:
        raise NotImplementedError

    async def _write(self, data: bytes) -> None:
        raise NotImplementedError

    def _received(self, data: bytes) -> None:
        self.emit("data", bytes(data))

    def _failed(self, exc: Exception) -> None:
        self.emit("error", exc)

    def _lost(self) -> None:
        if self.is_open:
            self.is_open = False
            self.emit("close")
