"""Socket.IO tunnel connection."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from mbcli.core.errors import DeviceConnectionError
from mbcli.core.model import PortInfo, WebsocketOptions
from mbcli.transports.base import BaseConnection

DATA_EVENT = "data"
CONNECTION_LOG = logging.getLogger("mbcli.connection")


def _load_socketio() -> Any:
    try:
        import socketio  # type: ignore
    except Exception as exc:  # pragma: no cover - import failure path
        raise DeviceConnectionError(
            "Websocket connections require 'python-socketio'. Install dependency and retry."
        ) from exc
    return socketio


class WebsocketConnection(BaseConnection):
    def __init__(self, options: WebsocketOptions) -> None:
        super().__init__(f"websocket {options.url}")
        self.options = options
        self._client: Any = None
        self._connects = 0

    async def _open(self) -> None:
        socketio = _load_socketio()
        options = self.options
        client = socketio.AsyncClient(
            reconnection=options.reconnection,
            reconnection_attempts=options.reconnection_attempts,
            reconnection_delay=options.reconnection_delay_ms / 1000,
            reconnection_delay_max=options.reconnection_delay_max_ms / 1000,
            # Reconnection attempts, give-ups and ping/pong traffic are logged
            # by the client libraries themselves.
            logger=CONNECTION_LOG,
            engineio_logger=CONNECTION_LOG,
        )
        client.on("connect", self._on_connect)
        client.on(DATA_EVENT, self._on_data)
        client.on("connect_error", self._on_connect_error)
        client.on("disconnect", self._on_disconnect)

        try:
            await client.connect(options.url, wait_timeout=options.timeout_ms / 1000)
        except socketio.exceptions.ConnectionError as exc:
            raise DeviceConnectionError(f"Could not connect to {options.url}: {exc}") from exc
        self._client = client

    def _on_data(self, data: Any) -> None:
        if isinstance(data, str):
            data = data.encode("latin-1")
        self._received(bytes(data))

    def _on_connect(self) -> None:
        self._connects += 1
        if self._connects > 1:
            CONNECTION_LOG.info("[connection#reconnect] attempt succeeded on %s", self.options.url)

    def _on_connect_error(self, data: Any = None) -> None:
        self._failed(DeviceConnectionError(f"Websocket connect error: {data}"))

    def _on_disconnect(self, *args: Any) -> None:
        CONNECTION_LOG.info("[connection#disconnect] %s", self.options.url)
        # Reconnection, when enabled, is handled inside the client.
        if not self.options.reconnection:
            self._lost()

    async def _close(self) -> None:
        if self._client is not None:
            await self._client.disconnect()
            self._client = None

    async def _write(self, data: bytes) -> None:
        socketio = _load_socketio()
        try:
            await self._client.emit(DATA_EVENT, bytes(data))
        except socketio.exceptions.SocketIOError as exc:
            raise DeviceConnectionError(f"Websocket send failed: {exc}") from exc


def open_websocket(options: WebsocketOptions) -> WebsocketConnection:
    return WebsocketConnection(options)


def list_websocket(options: WebsocketOptions, on_found: Callable[[PortInfo], None]) -> None:
    on_found(PortInfo(name=options.url, description="socket.io tunnel"))
