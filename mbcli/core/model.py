"""Core data models used across config, dispatch, transports and CLI."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any

from mbcli.core.errors import ConfigError


class ConnectionKind(str, Enum):
    SERIAL = "serial"
    WEBSOCKET = "websocket"
    BLE = "ble"
    CAN_USB_COM = "can-usb-com"
    CAN = "can"
    GENERIC = "generic"


class TransportKind(str, Enum):
    RTU = "rtu"
    ASCII = "ascii"
    IP = "ip"
    J1939 = "j1939"
    TUNNEL = "tunnel"
    SOCKETCAND = "socketcand"


class Action(str, Enum):
    READ = "read"
    WRITE = "write"
    COMMAND = "command"
    GENERIC = "generic"


@dataclass(frozen=True)
class WebsocketOptions:
    url: str = "http://127.0.0.1:8080"
    reconnection: bool = True
    reconnection_attempts: int = 3
    reconnection_delay_ms: int = 1000
    reconnection_delay_max_ms: int = 5000
    timeout_ms: int = 5000


@dataclass(frozen=True)
class BleOptions:
    # Nordic UART service: the central writes to RX and listens on TX.
    write_char_uuid: str = "6e400002-b5a3-f393-e0a9-e50e24dcca9e"
    notify_char_uuid: str = "6e400003-b5a3-f393-e0a9-e50e24dcca9e"
    scan_timeout_ms: int = 10000


@dataclass(frozen=True)
class CanOptions:
    interface: str = "socketcan"
    usb_baud_rate: int = 480800
    socketcand_host: str = "127.0.0.1"
    socketcand_port: int = 29536


@dataclass(frozen=True)
class EffectiveConfig:
    """Single source of truth for one invocation.

    Built once by the config resolver and never mutated afterwards; rewrites
    (for example BLE binding the connection to ``generic``) produce a new
    value with :func:`dataclasses.replace`.
    """

    connection: ConnectionKind = ConnectionKind.SERIAL
    transport: TransportKind = TransportKind.RTU
    port: str | None = None
    baud_rate: int = 115200
    can_rate: int = 250000
    can_id: int = 254
    unit: int = 1
    max_retries: int = 0
    timeout_ms: int = 2000
    max_concurrent_requests: int = 2
    eof_timeout_ms: int = 40
    websocket: WebsocketOptions = field(default_factory=WebsocketOptions)
    ble: BleOptions = field(default_factory=BleOptions)
    can: CanOptions = field(default_factory=CanOptions)

    def to_document(self) -> dict[str, Any]:
        """Return a JSON-compatible mapping of every field."""
        document = asdict(self)
        document["connection"] = self.connection.value
        document["transport"] = self.transport.value
        return document

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> EffectiveConfig:
        try:
            connection = ConnectionKind(document["connection"])
        except ValueError:
            choices = ", ".join(kind.value for kind in ConnectionKind)
            raise ConfigError(
                f"Unknown connection '{document['connection']}'. Choose one of: {choices}"
            ) from None
        try:
            transport = TransportKind(document["transport"])
        except ValueError:
            choices = ", ".join(kind.value for kind in TransportKind)
            raise ConfigError(
                f"Unknown transport '{document['transport']}'. Choose one of: {choices}"
            ) from None

        scalars = {
            key: value
            for key, value in document.items()
            if key not in {"connection", "transport", "websocket", "ble", "can"}
        }
        return cls(
            connection=connection,
            transport=transport,
            websocket=WebsocketOptions(**document.get("websocket", {})),
            ble=BleOptions(**document.get("ble", {})),
            can=CanOptions(**document.get("can", {})),
            **scalars,
        )


DEFAULT_CONFIG = EffectiveConfig()


@dataclass(frozen=True)
class Command:
    """One parsed user request.

    ``address`` holds the register/coil address, the FIFO/object id, the
    command id or the function code, depending on ``action`` and ``type``.
    """

    action: Action
    type: str | None
    address: int = 0
    quantity: int = 1
    values: bytes | tuple[int, ...] = b""


@dataclass(frozen=True)
class PortInfo:
    name: str
    description: str = ""
    manufacturer: str = ""
