"""Layered configuration resolution and the saved-defaults file."""

from __future__ import annotations

import json
import logging
import os
import re
import sys
from collections.abc import Mapping
from dataclasses import dataclass, replace
from importlib import resources
from pathlib import Path
from typing import Any

from jsonschema import ValidationError, validators

from mbcli.core.errors import ArgumentError, ConfigError, DefaultsFileError
from mbcli.core.lexer import parse_bounded
from mbcli.core.model import DEFAULT_CONFIG, ConnectionKind, EffectiveConfig, TransportKind

CONFIG_FILE_NAME = ".mbcli.json"
LOGGER = logging.getLogger(__name__)

# Six colon- or hyphen-separated hex pairs, e.g. AA:BB:CC:DD:EE:FF.
_MAC_RE = re.compile(r"^([0-9A-F]{2}[:-]){5}[0-9A-F]{2}$", re.IGNORECASE)

_COMPATIBLE_TRANSPORTS: dict[ConnectionKind, tuple[TransportKind, ...]] = {
    ConnectionKind.SERIAL: (TransportKind.RTU, TransportKind.ASCII),
    ConnectionKind.WEBSOCKET: (TransportKind.RTU, TransportKind.ASCII, TransportKind.IP),
    ConnectionKind.BLE: (TransportKind.IP,),
    ConnectionKind.CAN_USB_COM: (TransportKind.J1939,),
    ConnectionKind.CAN: (TransportKind.J1939, TransportKind.SOCKETCAND),
}


@dataclass(frozen=True)
class CliOverrides:
    """Raw flag values from the command line; ``None`` means not given."""

    connection: str | None = None
    transport: str | None = None
    port: str | None = None
    baud_rate: str | None = None
    unit: str | None = None
    can_rate: str | None = None
    can_id: str | None = None


@dataclass(frozen=True)
class _Setting:
    field: str
    flag: str
    env: str
    bounds: tuple[int, int] | None = None


_SETTINGS = (
    _Setting("connection", "--connection", "MODBUS_CONNECTION"),
    _Setting("transport", "--transport", "MODBUS_TRANSPORT"),
    _Setting("port", "--port", "MODBUS_PORT"),
    _Setting("baud_rate", "--baudrate", "MODBUS_BAUDRATE", bounds=(1, 10_000_000)),
    _Setting("unit", "--unit", "MODBUS_SLAVE", bounds=(0, 255)),
    _Setting("can_rate", "--canrate", "MODBUS_CANRATE", bounds=(1, 10_000_000)),
    _Setting("can_id", "--canid", "MODBUS_CANID", bounds=(0, 255)),
)


def default_config_path() -> Path:
    """Location of the saved-defaults file for this platform."""
    appdata = os.environ.get("APPDATA")
    if appdata:
        folder = Path(appdata)
    elif sys.platform == "darwin":
        folder = Path.home() / "Library" / "Preferences"
    else:
        folder = Path(os.environ.get("HOME") or Path.home())
    return folder / CONFIG_FILE_NAME


def is_hardware_address(value: str | None) -> bool:
    return bool(value) and _MAC_RE.match(value) is not None


def _load_schema_validator() -> Any:
    schema_text = resources.files("mbcli.schemas").joinpath("config.schema.json").read_text(
        encoding="utf-8"
    )
    schema = json.loads(schema_text)
    validator_cls = validators.validator_for(schema)
    validator_cls.check_schema(schema)
    return validator_cls(schema)


def _read_defaults(path: Path) -> dict[str, Any]:
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise DefaultsFileError(f"Could not read defaults file {path}: {exc}") from exc
    except UnicodeDecodeError as exc:
        raise DefaultsFileError(f"Defaults file {path} is not UTF-8 text: {exc}") from exc

    try:
        document = json.loads(content)
    except json.JSONDecodeError as exc:
        raise DefaultsFileError(f"Invalid JSON in {path}: {exc}") from exc

    try:
        _load_schema_validator().validate(document)
    except ValidationError as exc:
        location = ".".join(str(p) for p in exc.path)
        where = f" ({location})" if location else ""
        raise DefaultsFileError(f"Defaults file {path} is not valid{where}: {exc.message}") from exc
    return document


def load_persisted(path: Path) -> dict[str, Any] | None:
    """Return the saved defaults document, or ``None`` when absent or unusable."""
    if not path.exists():
        return None
    try:
        return _read_defaults(path)
    except DefaultsFileError as exc:
        LOGGER.warning("%s; using built-in defaults", exc)
        return None


def save_config(config: EffectiveConfig, path: Path) -> None:
    try:
        path.write_text(json.dumps(config.to_document(), indent=4) + "\n", encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"Could not write configuration file {path}: {exc}") from exc


def _merge(base: dict[str, Any], overlay: Mapping[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in overlay.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _coerce(setting: _Setting, raw: str, source: str) -> str | int:
    if setting.field in {"connection", "transport"}:
        return raw.strip().lower()
    if setting.bounds is None:
        return raw
    low, high = setting.bounds
    try:
        return parse_bounded(raw, 0, low=low, high=high, what=setting.field)
    except ArgumentError as exc:
        raise ConfigError(f"Invalid value for {source}: {exc}") from None


def resolve_config(
    cli: CliOverrides,
    env: Mapping[str, str],
    persisted: Mapping[str, Any] | None,
    builtins: EffectiveConfig = DEFAULT_CONFIG,
    *,
    list_mode: bool = False,
) -> EffectiveConfig:
    """Merge the four configuration layers into one effective configuration.

    For every recognised key the first of these wins: the command-line flag,
    a non-empty environment variable, the saved defaults document, the
    built-in default. Unless listing, a port that looks like a Bluetooth
    hardware address switches the connection to BLE, and a BLE connection
    always carries IP framing.
    """
    document = builtins.to_document()
    if persisted:
        document = _merge(document, persisted)

    for setting in _SETTINGS:
        flag_value = getattr(cli, setting.field)
        env_value = (env.get(setting.env) or "").strip()
        if flag_value is not None:
            document[setting.field] = _coerce(setting, flag_value, setting.flag)
        elif env_value:
            document[setting.field] = _coerce(setting, env_value, setting.env)

    config = EffectiveConfig.from_document(document)

    if not list_mode:
        if is_hardware_address(config.port):
            config = replace(config, connection=ConnectionKind.BLE)
        if config.connection is ConnectionKind.BLE:
            config = replace(config, transport=TransportKind.IP)
    return config


def validate_config(config: EffectiveConfig) -> None:
    """Reject connection/transport pairs that cannot work before connecting."""
    allowed = _COMPATIBLE_TRANSPORTS.get(config.connection)
    if allowed is None:
        choices = ", ".join(kind.value for kind in _COMPATIBLE_TRANSPORTS)
        raise ConfigError(
            f"Connection '{config.connection.value}' cannot be selected directly. "
            f"Choose one of: {choices}"
        )
    if config.transport not in allowed:
        supported = ", ".join(kind.value for kind in allowed)
        raise ConfigError(
            f"Transport '{config.transport.value}' cannot be used over a "
            f"'{config.connection.value}' connection (supported: {supported})"
        )
