"""Stable public API for building tooling on top of mbcli.

This module is the supported integration surface for third-party callers.
Avoid importing from private/internal modules unless intentionally depending on
non-stable internals.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence

from mbcli.core.config import CliOverrides, default_config_path, load_persisted, resolve_config, validate_config
from mbcli.core.dispatch import CommandDispatcher, parse_command
from mbcli.core.errors import (
    ArgumentError,
    ConfigError,
    DefaultsFileError,
    DeviceConnectionError,
    ExceptionResponseError,
    FramingError,
    MbcliError,
    ProtocolError,
    TransactionTimeoutError,
    UsageError,
)
from mbcli.core.lexer import parse_byte_sequence, parse_number, parse_word_sequence
from mbcli.core.lifecycle import Connector, MasterFactory
from mbcli.core.model import (
    DEFAULT_CONFIG,
    Action,
    BleOptions,
    CanOptions,
    Command,
    ConnectionKind,
    EffectiveConfig,
    PortInfo,
    TransportKind,
    WebsocketOptions,
)
from mbcli.core.output import OutputController
from mbcli.master.master import create_master
from mbcli.master.pdu import Response
from mbcli.transports import factory

__all__ = [
    "MbcliError",
    "ConfigError",
    "DefaultsFileError",
    "ArgumentError",
    "UsageError",
    "DeviceConnectionError",
    "ProtocolError",
    "TransactionTimeoutError",
    "ExceptionResponseError",
    "FramingError",
    "Action",
    "BleOptions",
    "CanOptions",
    "Command",
    "ConnectionKind",
    "DEFAULT_CONFIG",
    "EffectiveConfig",
    "PortInfo",
    "Response",
    "TransportKind",
    "WebsocketOptions",
    "CliOverrides",
    "parse_byte_sequence",
    "parse_command",
    "parse_number",
    "parse_word_sequence",
    "resolve_config",
    "Client",
]


class Client:
    """Run single MODBUS commands from Python.

    Each :meth:`execute` call opens the configured connection, performs one
    command and closes again.
    """

    def __init__(
        self,
        config: EffectiveConfig = DEFAULT_CONFIG,
        *,
        connect: Connector | None = None,
        master_factory: MasterFactory | None = None,
    ) -> None:
        validate_config(config)
        self.config = config
        self._connect = connect or factory.connect
        self._master_factory = master_factory or create_master

    @classmethod
    def from_environment(cls, overrides: CliOverrides | None = None, env: dict[str, str] | None = None) -> Client:
        """Resolve configuration the way the ``mb`` command does."""
        persisted = load_persisted(default_config_path())
        return cls(resolve_config(overrides or CliOverrides(), env or {}, persisted))

    async def execute_async(self, tokens: Sequence[str]) -> Response:
        command = parse_command(tokens)
        opened = await self._connect(self.config)
        master = self._master_factory(opened.config, opened.connection)
        try:
            await master.connect()
            return await CommandDispatcher(OutputController()).perform(command, master)
        finally:
            await master.destroy()

    def execute(self, tokens: Sequence[str]) -> Response:
        return asyncio.run(self.execute_async(tokens))
